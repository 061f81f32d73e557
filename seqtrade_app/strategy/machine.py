"""
1-3-2-6 stake progression and loss recovery state machine.

StakeStrategy decides before each trade whether to trade and at what
stake, and records each settled outcome. Decisions only read state;
``update_state`` and the explicit setters are the only mutators.
"""

import math
from datetime import datetime
from typing import Any, Callable, Optional

from ..config.validation import is_valid_sequence
from ..errors import StrategyStateError
from ..logging.config import get_strategy_logger, log_state_transition
from ..utils.time import utc_now
from .models import (
    SequenceHistoryEntry,
    SequenceVariant,
    StrategyConfig,
    StrategyState,
    TradeDecision,
    TradeResult,
)

# Recent-trade counts used by the read-only analysis helpers
_MARKET_ANALYSIS_WINDOW = 10
_SAFE_INCREASE_WIN_STREAK = 2


def _require_finite(value: Any, operation: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise StrategyStateError(
            f"{operation} requires a finite number, got {value!r}",
            operation=operation,
            value=value
        )
    return float(value)


class StakeStrategy:
    """
    Stake progression state machine for one trading session.

    Args:
        config: Validated strategy configuration, defaults when omitted
        clock: Returns the current aware UTC datetime; drives the
            trading-hours guard and daily counter rollover
    """

    def __init__(self, config: Optional[StrategyConfig] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self._config = config or StrategyConfig()
        self._clock = clock or utc_now
        self._state = StrategyState(trading_day=self._today())
        self._history: list[SequenceHistoryEntry] = []
        self.logger = get_strategy_logger(__name__)

    @property
    def config(self) -> StrategyConfig:
        return self._config

    @property
    def sequence_history(self) -> tuple[SequenceHistoryEntry, ...]:
        return tuple(self._history)

    @staticmethod
    def validate_sequence(sequence: Any) -> bool:
        """Return True for a length-4 positive integer sequence starting with 1."""
        return is_valid_sequence(sequence)

    def update_config(self, **changes: Any) -> StrategyConfig:
        """
        Atomically replace the configuration.

        The new config is validated in full before it is swapped in; on
        failure the current config stays in place.

        Raises:
            SessionValidationError: If the changed config is invalid
        """
        new_config = self._config.with_changes(**changes)
        self._config = new_config
        self.logger.info("Strategy config updated", changes=sorted(changes))
        return new_config

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def prepare_for_next_trade(self, last_won: Optional[bool] = None,
                               last_profit: Optional[float] = None) -> TradeDecision:
        """
        Decide whether to place the next trade and at what stake.

        Guards are checked in a fixed order and the first failing guard
        names the reason. The last outcome arguments only add logging
        context; record outcomes with ``update_state``.

        Args:
            last_won: Outcome of the previous trade, if any
            last_profit: Signed profit of the previous trade, if any

        Returns:
            TradeDecision with an amount when trading, a reason otherwise
        """
        self._roll_trading_day()
        self._normalize_position()

        reason = self._blocking_reason()
        if reason is not None:
            self.logger.warning(
                "Trade blocked",
                reason=reason,
                last_won=last_won,
                last_profit=last_profit,
                total_profit=self._state.total_profit,
                consecutive_losses=self._state.consecutive_losses
            )
            return TradeDecision.hold(reason)

        state = self._state
        if state.in_recovery:
            self.log_recovery_attempt()
            amount = self.validate_stake(self.calculate_recovery_stake())
            return TradeDecision.trade(
                amount,
                in_recovery=True,
                consecutive_losses=state.consecutive_losses
            )

        sequence = self.select_optimal_sequence()
        base_stake = self._config.initial_stake * sequence[state.sequence_position]
        amount = self.validate_stake(self.get_volatility_adjusted_stake(base_stake))

        self.logger.debug(
            "Sequence stake computed",
            sequence=list(sequence),
            sequence_position=state.sequence_position,
            base_stake=base_stake,
            amount=amount,
            last_won=last_won,
            last_profit=last_profit
        )
        return TradeDecision.trade(
            amount,
            in_recovery=False,
            sequence=list(sequence),
            sequence_position=state.sequence_position
        )

    def _blocking_reason(self) -> Optional[str]:
        state = self._state
        config = self._config

        if not state.active:
            return "Strategy is inactive"

        if state.trades_today >= config.max_daily_trades:
            return f"Daily trade limit reached ({config.max_daily_trades})"

        effective_threshold = self.get_effective_loss_threshold()
        if state.total_profit <= -effective_threshold:
            return f"Loss limit reached ({state.total_profit:.2f} <= -{effective_threshold:.2f})"

        if state.total_profit >= config.profit_lock_ratio * config.profit_threshold:
            return f"Profit lock engaged (total profit {state.total_profit:.2f})"

        if state.sequence_profit >= config.initial_stake * config.sequence_profit_lock_multiplier:
            return f"Profit lock engaged (sequence profit {state.sequence_profit:.2f})"

        if state.in_recovery and -state.total_profit > config.deep_recovery_ratio * config.loss_threshold:
            return (
                f"Deep recovery: losses exceed {config.deep_recovery_ratio:.0%} "
                "of loss threshold"
            )

        recent = self._history[-config.failed_sequence_window:]
        failed = sum(1 for entry in recent if not entry.won)
        if failed >= config.failed_sequence_limit:
            return f"Too many failed sequences ({failed} of last {len(recent)})"

        if not self._within_trading_hours():
            return (
                f"Outside trading hours ({config.trading_hours_start:02d}:00-"
                f"{config.trading_hours_end:02d}:00 UTC)"
            )

        loss_rate = self._loss_rate(config.volatility_check_window, require_full=True)
        if loss_rate is not None and loss_rate > config.max_loss_rate:
            return f"Volatility too high (loss rate {loss_rate:.2f})"

        return None

    def _within_trading_hours(self) -> bool:
        config = self._config
        if not config.trading_hours_enabled:
            return True

        hour = self._clock().hour
        start, end = config.trading_hours_start, config.trading_hours_end
        if start <= end:
            return start <= hour <= end
        # Window wraps past midnight
        return hour >= start or hour <= end

    # ------------------------------------------------------------------
    # Stake rules
    # ------------------------------------------------------------------

    def get_effective_loss_threshold(self) -> float:
        """Loss threshold shrunk by each consecutive loss, floored at a share of the configured one."""
        config = self._config
        factor = max(
            1 - config.loss_threshold_step * self._state.consecutive_losses,
            config.loss_threshold_floor
        )
        return config.loss_threshold * factor

    def select_optimal_sequence(self) -> tuple:
        """
        Pick the multiplier sequence for the next stake.

        Recovery keeps the reference sequence; a loss streak outside
        recovery switches to the conservative one.
        """
        if self._state.in_recovery:
            return self._config.sequence_for(SequenceVariant.REFERENCE)
        if self._state.consecutive_losses >= 2:
            return self._config.sequence_for(SequenceVariant.CONSERVATIVE)
        return self._config.sequence_for(SequenceVariant.REFERENCE)

    def validate_stake(self, amount: float) -> float:
        """
        Clamp a stake to ``[initial_stake, max_stake_ratio * loss_threshold]``.

        When the configured ceiling is below the initial stake the
        initial stake wins.
        """
        config = self._config
        floor = config.initial_stake
        ceiling = max(config.max_stake_ratio * config.loss_threshold, floor)
        return round(min(max(amount, floor), ceiling), 2)

    def calculate_recovery_stake(self) -> float:
        """Stake for a recovery trade: grows with consecutive losses, capped by the recovery ceiling."""
        config = self._config
        raw = config.initial_stake * config.recovery_multiplier ** self._state.consecutive_losses
        cap = max(config.recovery_stake_cap_ratio * config.loss_threshold, config.initial_stake)
        return round(min(max(raw, config.initial_stake), cap), 2)

    def get_volatility_adjusted_stake(self, base_stake: float) -> float:
        """
        Reduce a stake by the recent loss rate.

        The reduction is ``loss_rate * volatility_reduction_factor``,
        capped at ``max_volatility_reduction``. Without history the base
        stake is returned unchanged.
        """
        config = self._config
        loss_rate = self._loss_rate(config.stake_volatility_window)
        if loss_rate is None:
            return base_stake

        reduction = min(loss_rate * config.volatility_reduction_factor,
                        config.max_volatility_reduction)
        return round(base_stake * (1 - reduction), 2)

    def _loss_rate(self, window: int, require_full: bool = False) -> Optional[float]:
        recent = self._history[-window:]
        if not recent or (require_full and len(recent) < window):
            return None
        return sum(1 for entry in recent if not entry.won) / len(recent)

    # ------------------------------------------------------------------
    # State updates
    # ------------------------------------------------------------------

    def update_state(self, won: bool, profit: float) -> StrategyState:
        """
        Record a settled trade.

        Args:
            won: Whether the contract won
            profit: Signed profit of the trade

        Returns:
            The new state snapshot

        Raises:
            StrategyStateError: If profit is not a finite number
        """
        profit = _require_finite(profit, "update_state")
        self._roll_trading_day()
        self._normalize_position()

        state = self._state
        config = self._config
        sequence = self.select_optimal_sequence()
        position = state.sequence_position

        raw_total = state.raw_total_profit + profit
        changes: dict[str, Any] = {
            "trades_today": state.trades_today + 1,
            "daily_profit_loss": state.daily_profit_loss + profit,
            "raw_total_profit": raw_total,
            "total_profit": min(raw_total, config.profit_threshold),
        }
        sequence_profit = state.sequence_profit + profit

        if won:
            consecutive_wins = state.consecutive_wins + 1
            changes.update(
                consecutive_wins=consecutive_wins,
                consecutive_losses=0,
                loss_streak_profit=0.0,
                total_wins=state.total_wins + 1,
                max_win_streak=max(state.max_win_streak, consecutive_wins),
            )
            next_position = position + 1
            if next_position >= len(sequence):
                changes.update(
                    sequences_completed=state.sequences_completed + 1,
                    best_sequence_profit=max(state.best_sequence_profit, sequence_profit),
                )
                self.logger.info(
                    "Sequence completed",
                    sequence=list(sequence),
                    sequence_profit=sequence_profit,
                    sequences_completed=state.sequences_completed + 1
                )
                next_position = 0
                sequence_profit = 0.0
        else:
            consecutive_losses = state.consecutive_losses + 1
            changes.update(
                consecutive_losses=consecutive_losses,
                consecutive_wins=0,
                loss_streak_profit=state.loss_streak_profit + profit,
                total_losses=state.total_losses + 1,
                max_loss_streak=max(state.max_loss_streak, consecutive_losses),
                worst_sequence_loss=min(state.worst_sequence_loss, sequence_profit),
            )
            # A loss breaks the sequence
            next_position = 0
            sequence_profit = 0.0

        changes.update(sequence_position=next_position, sequence_profit=sequence_profit)
        changes.update(self._recovery_changes(state, changes, won, profit))

        self._history.append(SequenceHistoryEntry(
            sequence=tuple(sequence),
            outcome=TradeResult.WIN if won else TradeResult.LOSS,
            profit=profit,
            sequence_position=position,
            in_recovery=state.in_recovery,
            timestamp=self._clock(),
        ))
        self._state = state.with_changes(**changes)

        self.logger.info(
            "Trade outcome recorded",
            won=won,
            profit=profit,
            total_profit=self._state.total_profit,
            sequence_position=self._state.sequence_position,
            consecutive_losses=self._state.consecutive_losses,
            in_recovery=self._state.in_recovery
        )
        return self._state

    def _recovery_changes(self, state: StrategyState, changes: dict[str, Any],
                          won: bool, profit: float) -> dict[str, Any]:
        config = self._config

        if state.in_recovery:
            recovery_profit = state.recovery_profit + profit
            recovery_attempts = state.recovery_attempts + (0 if won else 1)

            if recovery_profit > 0:
                log_state_transition(
                    self.logger, "stake_strategy", "recovery", "sequence",
                    "recovery_profit_positive",
                    {"recovery_profit": recovery_profit, "recovery_attempts": recovery_attempts}
                )
                return {"in_recovery": False, "recovery_profit": 0.0, "recovery_attempts": 0}

            if recovery_attempts >= config.max_recovery_attempts:
                log_state_transition(
                    self.logger, "stake_strategy", "recovery", "sequence",
                    "recovery_attempts_exhausted",
                    {"recovery_profit": recovery_profit, "recovery_attempts": recovery_attempts}
                )
                return {
                    "in_recovery": False,
                    "recovery_profit": 0.0,
                    "recovery_attempts": 0,
                    "sequence_position": 0,
                    "sequence_profit": 0.0,
                }

            return {"recovery_profit": recovery_profit, "recovery_attempts": recovery_attempts}

        if not won and changes["consecutive_losses"] >= 2:
            log_state_transition(
                self.logger, "stake_strategy", "sequence", "recovery",
                "consecutive_losses",
                {"consecutive_losses": changes["consecutive_losses"],
                 "loss_streak_profit": changes["loss_streak_profit"]}
            )
            return {
                "in_recovery": True,
                "recovery_profit": changes["loss_streak_profit"],
                "recovery_attempts": 0,
            }

        return {}

    def reset_strategy(self) -> None:
        """Clear all counters and history and reactivate the strategy."""
        self._state = StrategyState(trading_day=self._today())
        self._history = []
        self.logger.info("Strategy reset")

    def pause_strategy(self) -> None:
        if self._state.active:
            self._state = self._state.with_changes(active=False)
            self.logger.warning("Strategy paused")

    def resume_strategy(self) -> None:
        if not self._state.active:
            self._state = self._state.with_changes(active=True)
            self.logger.info("Strategy resumed")

    # Explicit setters for recovery bookkeeping

    def set_sequence_position(self, position: int) -> None:
        """Set the sequence position; out-of-range values are reset to 0 on the next read."""
        self._state = self._state.with_changes(sequence_position=int(position))

    def set_sequence_profit(self, profit: float) -> None:
        self._state = self._state.with_changes(
            sequence_profit=_require_finite(profit, "set_sequence_profit"))

    def set_total_profit(self, profit: float) -> None:
        raw = _require_finite(profit, "set_total_profit")
        self._state = self._state.with_changes(
            raw_total_profit=raw,
            total_profit=min(raw, self._config.profit_threshold)
        )

    def set_trades_today(self, trades: int) -> None:
        if trades < 0:
            raise StrategyStateError("trades_today cannot be negative",
                                     operation="set_trades_today", value=trades)
        self._state = self._state.with_changes(trades_today=int(trades))

    def set_daily_profit_loss(self, profit_loss: float) -> None:
        self._state = self._state.with_changes(
            daily_profit_loss=_require_finite(profit_loss, "set_daily_profit_loss"))

    def set_consecutive_losses(self, losses: int) -> None:
        if losses < 0:
            raise StrategyStateError("consecutive_losses cannot be negative",
                                     operation="set_consecutive_losses", value=losses)
        self._state = self._state.with_changes(consecutive_losses=int(losses))

    def set_in_recovery(self, in_recovery: bool) -> None:
        self._state = self._state.with_changes(in_recovery=bool(in_recovery))

    # ------------------------------------------------------------------
    # Read-only projections
    # ------------------------------------------------------------------

    def get_current_state(self) -> StrategyState:
        return self._state

    def get_statistics(self) -> dict[str, Any]:
        state = self._state
        return {
            "total_wins": state.total_wins,
            "total_losses": state.total_losses,
            "total_trades": state.total_wins + state.total_losses,
            "sequences_completed": state.sequences_completed,
            "max_win_streak": state.max_win_streak,
            "max_loss_streak": state.max_loss_streak,
            "best_sequence_profit": state.best_sequence_profit,
            "worst_sequence_loss": state.worst_sequence_loss,
            "total_profit": state.total_profit,
            "daily_profit_loss": state.daily_profit_loss,
            "sequence_position": state.sequence_position,
        }

    def get_performance_metrics(self) -> dict[str, Any]:
        state = self._state
        return {
            "sequence_history": [entry.to_dict() for entry in self._history],
            "daily_performance": {
                "trading_day": state.trading_day,
                "trades_today": state.trades_today,
                "daily_profit_loss": state.daily_profit_loss,
            },
            "streak_analysis": {
                "current_loss_streak": state.consecutive_losses,
                "current_win_streak": state.consecutive_wins,
                "max_win_streak": state.max_win_streak,
                "max_loss_streak": state.max_loss_streak,
            },
        }

    def get_enhanced_metrics(self) -> dict[str, Any]:
        """
        Win rate, recovery success rate and risk indicators.

        The recovery success rate is the share of trades placed while in
        recovery that were profitable.
        """
        state = self._state
        total_trades = state.total_wins + state.total_losses
        recovery_trades = [entry for entry in self._history if entry.in_recovery]
        recovered = sum(1 for entry in recovery_trades if entry.profit > 0)

        return {
            "win_rate": state.total_wins / total_trades if total_trades else 0.0,
            "recovery_success_rate": recovered / len(recovery_trades) if recovery_trades else 0.0,
            "recovery_trades": len(recovery_trades),
            "average_profit": (
                sum(entry.profit for entry in self._history) / len(self._history)
                if self._history else 0.0
            ),
            "current_loss_streak": state.consecutive_losses,
            "effective_loss_threshold": self.get_effective_loss_threshold(),
            "recommended_sequence": list(self.select_optimal_sequence()),
            "in_recovery": state.in_recovery,
            "recovery_attempts": state.recovery_attempts,
        }

    def analyze_sequence_performance(self) -> dict[str, Any]:
        if not self._history:
            return {
                "total_entries": 0,
                "win_rate": 0.0,
                "average_profit": 0.0,
                "best_trade": 0.0,
                "worst_trade": 0.0,
            }

        profits = [entry.profit for entry in self._history]
        wins = sum(1 for entry in self._history if entry.won)
        return {
            "total_entries": len(self._history),
            "win_rate": wins / len(self._history),
            "average_profit": sum(profits) / len(profits),
            "best_trade": max(profits),
            "worst_trade": min(profits),
        }

    def analyze_market_conditions(self) -> dict[str, Any]:
        """Trend and volatility read from the most recent trade outcomes."""
        recent = self._history[-_MARKET_ANALYSIS_WINDOW:]
        if not recent:
            return {"trend": "neutral", "volatility": "normal", "loss_rate": 0.0, "sample_size": 0}

        mean_profit = sum(entry.profit for entry in recent) / len(recent)
        loss_rate = sum(1 for entry in recent if not entry.won) / len(recent)

        if mean_profit > 0:
            trend = "bullish"
        elif mean_profit < 0:
            trend = "bearish"
        else:
            trend = "neutral"

        return {
            "trend": trend,
            "volatility": "high" if loss_rate > self._config.max_loss_rate else "normal",
            "loss_rate": loss_rate,
            "sample_size": len(recent),
        }

    def is_safe_to_increase_stake(self) -> bool:
        state = self._state
        return state.consecutive_wins >= _SAFE_INCREASE_WIN_STREAK and state.total_profit > 0

    def monitor_session(self) -> bool:
        """
        Pause an unattended losing session.

        Returns:
            True if this check paused the strategy
        """
        state = self._state
        if (state.active
                and state.trades_today >= self._config.health_check_trade_threshold
                and state.daily_profit_loss < 0):
            self.logger.warning(
                "Session health check paused strategy",
                trades_today=state.trades_today,
                daily_profit_loss=state.daily_profit_loss
            )
            self.pause_strategy()
            return True
        return False

    def log_recovery_attempt(self) -> None:
        state = self._state
        log = self.logger.warning if state.recovery_attempts > 1 else self.logger.info
        log(
            "Recovery attempt",
            recovery_attempts=state.recovery_attempts,
            max_recovery_attempts=self._config.max_recovery_attempts,
            consecutive_losses=state.consecutive_losses,
            recovery_profit=state.recovery_profit,
            recovery_stake=self.calculate_recovery_stake()
        )

    # ------------------------------------------------------------------

    def _today(self) -> str:
        return self._clock().date().isoformat()

    def _roll_trading_day(self) -> None:
        today = self._today()
        if self._state.trading_day != today:
            self.logger.info("New trading day", previous_day=self._state.trading_day, trading_day=today)
            self._state = self._state.with_changes(
                trading_day=today,
                trades_today=0,
                daily_profit_loss=0.0
            )

    def _normalize_position(self) -> None:
        position = self._state.sequence_position
        if not 0 <= position < len(self._config.sequence):
            self.logger.warning("Sequence position out of range, resetting", sequence_position=position)
            self._state = self._state.with_changes(sequence_position=0)
