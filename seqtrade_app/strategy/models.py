"""
Stake strategy data models.

This module defines the immutable configuration, state snapshot and
history records used by the 1-3-2-6 stake progression state machine.
"""

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..config.defaults import StrategyParams
from ..config.validation import ConfigValidator
from ..errors import SessionValidationError


class SequenceVariant(str, Enum):
    """Named stake multiplier sequences."""
    REFERENCE = "reference"
    CONSERVATIVE = "conservative"
    AGGRESSIVE = "aggressive"


class TradeResult(str, Enum):
    """Outcome of one settled trade as recorded in sequence history."""
    WIN = "win"
    LOSS = "loss"


@dataclass(frozen=True)
class StrategyConfig(StrategyParams):
    """
    Validated stake strategy configuration.

    Same fields as StrategyParams. Construction fails with
    SessionValidationError when any field is invalid, so an instance in
    hand is always usable.
    """

    def __post_init__(self) -> None:
        issues = ConfigValidator.validate_strategy_params(asdict(self))
        if issues:
            raise SessionValidationError(
                "Invalid strategy configuration: "
                + "; ".join(f"{issue.field}: {issue.message}" for issue in issues),
                issues=issues
            )

    @classmethod
    def from_dict(cls, params: dict[str, Any]) -> "StrategyConfig":
        """Build a config from a mapping, ignoring keys that are not config fields."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in params.items() if k in known}
        for key in ("sequence", "conservative_sequence", "aggressive_sequence"):
            if isinstance(values.get(key), list):
                values[key] = tuple(values[key])
        return cls(**values)

    def with_changes(self, **changes: Any) -> "StrategyConfig":
        """Return a validated copy with the given fields replaced."""
        for key in ("sequence", "conservative_sequence", "aggressive_sequence"):
            if isinstance(changes.get(key), list):
                changes[key] = tuple(changes[key])
        return replace(self, **changes)

    def sequence_for(self, variant: SequenceVariant) -> tuple:
        """Multipliers for a named sequence variant."""
        if variant == SequenceVariant.CONSERVATIVE:
            return self.conservative_sequence
        if variant == SequenceVariant.AGGRESSIVE:
            return self.aggressive_sequence
        return self.sequence


@dataclass(frozen=True)
class SequenceHistoryEntry:
    """One settled trade in the append-only sequence history."""
    sequence: tuple
    outcome: TradeResult
    profit: float
    sequence_position: int
    in_recovery: bool
    timestamp: datetime

    @property
    def won(self) -> bool:
        return self.outcome == TradeResult.WIN

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": list(self.sequence),
            "outcome": self.outcome.value,
            "profit": self.profit,
            "sequence_position": self.sequence_position,
            "in_recovery": self.in_recovery,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class StrategyState:
    """
    Snapshot of the stake strategy state.

    Owned by StakeStrategy, which replaces the snapshot on every update;
    callers only ever see immutable copies.
    """
    sequence_position: int = 0
    in_recovery: bool = False
    total_profit: float = 0.0
    raw_total_profit: float = 0.0
    consecutive_losses: int = 0
    consecutive_wins: int = 0
    recovery_attempts: int = 0
    recovery_profit: float = 0.0
    loss_streak_profit: float = 0.0
    trades_today: int = 0
    daily_profit_loss: float = 0.0
    sequence_profit: float = 0.0
    active: bool = True

    # Lifetime statistics
    total_wins: int = 0
    total_losses: int = 0
    sequences_completed: int = 0
    max_win_streak: int = 0
    max_loss_streak: int = 0
    best_sequence_profit: float = 0.0
    worst_sequence_loss: float = 0.0
    trading_day: Optional[str] = None

    def with_changes(self, **changes: Any) -> "StrategyState":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class TradeDecision:
    """Result of one pre-trade evaluation; produced fresh on every call."""
    should_trade: bool
    amount: Optional[float] = None
    reason: Optional[str] = None
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def trade(cls, amount: float, **context: Any) -> "TradeDecision":
        return cls(should_trade=True, amount=amount, context=context)

    @classmethod
    def hold(cls, reason: str, **context: Any) -> "TradeDecision":
        return cls(should_trade=False, reason=reason, context=context)
