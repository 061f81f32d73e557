"""
Trade execution orchestrator.

TradeOrchestrator drives one trading session: it asks the stake
strategy for a decision, buys the contract through the venue
connection, parses the settlement, feeds the outcome back into the
strategy and evaluates the session stop conditions. The session
duration timer and the telemetry interval run as asyncio tasks beside
the trade loop and are cancelled on every stop path.
"""

import asyncio
import random
from dataclasses import asdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from ..config.defaults import DefaultConfig
from ..config.loader import ConfigLoader
from ..data.contracts import build_contract_parameters
from ..data.models import TradeOutcome
from ..data.parsers import ResultParser
from ..delivery.base import BaseEventDelivery, DeliveryStatus
from ..errors import (
    DataQualityError,
    ErrorDisposition,
    PersistenceError,
    SessionStateError,
    SessionValidationError,
    classify_error,
)
from ..logging.config import get_session_logger, log_state_transition, log_trade_decision
from ..persistence.audit_store import AuditStore
from ..strategy.machine import StakeStrategy
from ..strategy.models import StrategyConfig
from ..utils.time import utc_now
from ..venue.connection import VenueConnection
from .models import (
    AuditRecord,
    SessionAggregates,
    SessionEvent,
    SessionEventKind,
    SessionParams,
    SessionResult,
    TradingMode,
)
from .telemetry import build_telemetry_payload, format_run_summary, format_telemetry_message
from .timing import compute_backoff_delay, compute_inter_trade_delay

StrategyFactory = Callable[[StrategyConfig], StakeStrategy]
SleepFunc = Callable[[float], Awaitable[Any]]

# Blocked decisions with these reasons end the session
TERMINAL_BLOCK_REASONS = ("Loss limit", "Profit lock")

INVALID_PARAMETERS_REASON = "Invalid parameters"


def is_terminal_block(reason: Optional[str]) -> bool:
    return bool(reason) and reason.startswith(TERMINAL_BLOCK_REASONS)


class TradeOrchestrator:
    """
    Control loop for one isolated trading session.

    Args:
        session_key: Key of the session, typically the chat user id
        connection: Venue connection owned by this session
        strategy_factory: Builds the stake strategy from its config
        delivery: Sink for session events, events are dropped when omitted
        audit_store: Store for per-run audit records
        config: Complete configuration; merged from ``config_loader``
            for the session's market when omitted
        sleep: Awaitable used for inter-trade delays and error backoff
        rng: Uniform [0, 1) source for delay jitter and contract choice
        clock: Returns the current aware UTC datetime
        config_loader: Loader for market overrides
    """

    def __init__(self, session_key: str,
                 connection: VenueConnection,
                 strategy_factory: Optional[StrategyFactory] = None,
                 delivery: Optional[BaseEventDelivery] = None,
                 audit_store: Optional[AuditStore] = None,
                 config: Optional[DefaultConfig] = None,
                 sleep: Optional[SleepFunc] = None,
                 rng: Optional[Callable[[], float]] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 config_loader: Optional[ConfigLoader] = None):
        self.session_key = session_key
        self.connection = connection
        self.delivery = delivery
        self.audit_store = audit_store
        self._explicit_config = config
        self._config_loader = config_loader
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.random
        self._clock = clock or utc_now
        self._strategy_factory = strategy_factory or (
            lambda strategy_config: StakeStrategy(strategy_config, clock=self._clock)
        )
        self.logger = get_session_logger(__name__, session_key)

        self.config: Optional[DefaultConfig] = config
        self.strategy: Optional[StakeStrategy] = None
        self.parser = ResultParser()
        self.aggregates: Optional[SessionAggregates] = None
        self.last_result: Optional[SessionResult] = None

        self._params: Optional[SessionParams] = None
        self._cached_session: Optional[SessionParams] = None
        self._records: list[AuditRecord] = []
        self._running = False
        self._stop_reason: Optional[str] = None
        self._emit_statistics = True
        self._error: Optional[BaseException] = None
        self._retry_attempt = 0
        self._needs_reconnect = False
        self._needs_authorization = False

        self._stopped = asyncio.Event()
        self._wake = asyncio.Event()
        self._confirmed = asyncio.Event()
        self._duration_task: Optional[asyncio.Task] = None
        self._telemetry_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def records(self) -> tuple[AuditRecord, ...]:
        return tuple(self._records)

    @property
    def currency(self) -> str:
        if self._params is not None and self._params.currency:
            return self._params.currency
        account_currency = self.connection.account.get("currency")
        if account_currency:
            return str(account_currency)
        return self.config.session.currency if self.config else "USD"

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def start_session(self, raw_params: dict[str, Any]) -> SessionResult:
        """
        Validate the parameters and run the session to its end.

        Returns:
            Final result with the stop reason, aggregates and audit records

        Raises:
            SessionValidationError: If the parameters are invalid; the
                session is not started
            SessionStateError: If this orchestrator is already running
            Exception: Any fatal error that stopped the session
        """
        if self._running:
            raise SessionStateError("Session is already running", session_key=self.session_key)

        try:
            params = SessionParams.from_dict(raw_params)
            self.config, strategy_config = self._resolve_config(params)
        except SessionValidationError as e:
            self.logger.error("Session parameters rejected", error=str(e))
            self._emit(
                SessionEventKind.SESSION_ERROR,
                f"{INVALID_PARAMETERS_REASON}: {e}",
                {"reason": INVALID_PARAMETERS_REASON,
                 "issues": [asdict(issue) for issue in e.issues]}
            )
            raise

        self._begin(params, strategy_config)
        try:
            await self._run_with_recovery()
        finally:
            if self._running:
                # Loop ended without a stop, e.g. the task was cancelled
                self.stop_session("Session cancelled", emit_statistics=False)
            result = self._finish()
            await self.connection.disconnect()

        if result.error is not None:
            raise result.error
        return result

    def _resolve_config(self, params: SessionParams) -> tuple[DefaultConfig, StrategyConfig]:
        session_limits = {
            "initial_stake": params.stake,
            "profit_threshold": params.take_profit,
            "loss_threshold": params.stop_loss,
        }
        if self._explicit_config is not None:
            config = self._explicit_config
            strategy_config = StrategyConfig.from_dict({**asdict(config.strategy), **session_limits})
            return config, strategy_config

        loader = self._config_loader or ConfigLoader.create()
        return loader.build_config(params.symbol), loader.strategy_config_for(params.symbol, params)

    def _begin(self, params: SessionParams, strategy_config: StrategyConfig) -> None:
        self._params = params
        self._cached_session = params
        self.strategy = self._strategy_factory(strategy_config)
        self.parser = ResultParser()
        self.aggregates = SessionAggregates(started_at=self._clock())
        self._records = []
        self._stop_reason = None
        self._emit_statistics = True
        self._error = None
        self._retry_attempt = 0
        self._needs_reconnect = False
        self._needs_authorization = params.account_token is not None
        self._stopped.clear()
        self._wake.clear()
        self._confirmed.clear()

        self._running = True
        self.connection.set_trading_active(True)
        log_state_transition(self.logger, self.session_key, "idle", "running", "start_session")

        loop = asyncio.get_running_loop()
        self._duration_task = loop.create_task(self._duration_timer(params.trade_duration_seconds))
        if self.config.telemetry.telemetry_enabled:
            self._telemetry_task = loop.create_task(
                self._telemetry_loop(params.update_frequency_seconds)
            )

        self.logger.info(
            "Session started",
            market=params.market,
            symbol=params.symbol,
            contract_kind=params.contract_kind.name,
            stake=params.stake,
            take_profit=params.take_profit,
            stop_loss=params.stop_loss,
            trading_mode=params.trading_mode.value
        )
        self._emit(
            SessionEventKind.SESSION_STARTED,
            f"Trading started on {params.market} with stake {params.stake:.2f}",
            {
                "market": params.market,
                "symbol": params.symbol,
                "contract_type": params.contract_kind.name,
                "stake": params.stake,
                "take_profit": params.take_profit,
                "stop_loss": params.stop_loss,
                "trade_duration": params.trade_duration,
                "trading_mode": params.trading_mode.value,
            }
        )

    def stop_session(self, reason: str, emit_statistics: bool = True) -> bool:
        """
        Stop the session.

        Cancels both timers and lets the trade loop exit once an in-flight
        purchase has settled. Final statistics and the stop notification
        are emitted when the loop has exited. Calling it again, or on a
        session that is not running, does nothing.

        Args:
            reason: Human-readable stop reason
            emit_statistics: Emit final telemetry and the run summary

        Returns:
            True if this call stopped the session
        """
        if not self._running:
            self.logger.debug("Stop ignored, session not running", reason=reason)
            return False

        self._running = False
        self._stop_reason = reason
        self._emit_statistics = emit_statistics
        self.connection.set_trading_active(False)
        self._cancel_timers()

        self._stopped.set()
        self._wake.set()
        self._confirmed.set()

        log_state_transition(self.logger, self.session_key, "running", "stopping", "stop_session",
                             {"reason": reason})
        return True

    def confirm_manual_trade(self) -> None:
        """Allow the next trade of a manual-mode session."""
        self._confirmed.set()

    def _cancel_timers(self) -> None:
        current = asyncio.current_task()
        for task in (self._duration_task, self._telemetry_task):
            if task is not None and not task.done() and task is not current:
                task.cancel()
        self._duration_task = None
        self._telemetry_task = None

    def _finish(self) -> SessionResult:
        reason = self._stop_reason or "Session ended"

        if self._emit_statistics and self.config.telemetry.emit_statistics:
            self._emit_telemetry()
            self._emit(
                SessionEventKind.RUN_SUMMARY,
                format_run_summary(self._records, self.currency),
                {"runs": [record.to_dict() for record in self._records],
                 "total_profit": round(self.aggregates.total_profit, 2)}
            )

        self._emit(SessionEventKind.SESSION_STOPPED, f"Trading stopped: {reason}", {"reason": reason})
        self.logger.info(
            "Session stopped",
            reason=reason,
            runs=self.aggregates.runs,
            total_profit=self.aggregates.total_profit,
            error=str(self._error) if self._error else None
        )

        result = SessionResult(
            session_key=self.session_key,
            reason=reason,
            aggregates=self.aggregates,
            records=tuple(self._records),
            error=self._error,
        )
        self.last_result = result

        # Session state is never carried into the next session
        self.strategy = None
        self._params = None
        self._cached_session = None
        log_state_transition(self.logger, self.session_key, "stopping", "idle", "session_finished")
        return result

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _duration_timer(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        self.logger.info("Session duration elapsed", seconds=seconds)
        self.stop_session("duration limit reached")

    async def _telemetry_loop(self, interval: float) -> None:
        while self._running:
            await asyncio.sleep(interval)
            if not self._running:
                return
            try:
                self._emit_telemetry()
                self._check_session_health()
            except Exception as e:
                self.logger.error("Telemetry tick failed", error=str(e),
                                  error_type=type(e).__name__)
            finally:
                self._wake.set()

    def _check_session_health(self) -> None:
        if self.strategy is not None and self.strategy.monitor_session():
            self.logger.warning("Session paused by health check",
                                trades_today=self.strategy.get_current_state().trades_today)

    def _emit_telemetry(self) -> None:
        payload = build_telemetry_payload(
            self.aggregates,
            account_id=self.connection.account.get("loginid"),
            currency=self.currency,
            now=self._clock()
        )
        self._emit(SessionEventKind.TELEMETRY, format_telemetry_message(payload), payload)

    # ------------------------------------------------------------------
    # Trade loop
    # ------------------------------------------------------------------

    async def _run_with_recovery(self) -> None:
        max_retries = self.config.session.max_retry_attempts

        while self._running:
            try:
                await self._ensure_connected()
                await self.execute_trade_sequence()
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self._running and self._stop_reason is not None:
                    self.logger.warning("Error after stop", error=str(e))
                    return

                disposition = classify_error(e)
                self.logger.error(
                    "Trade execution failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    disposition=disposition.value,
                    retry_attempt=self._retry_attempt
                )

                if disposition == ErrorDisposition.VALIDATION:
                    self._fail(e, INVALID_PARAMETERS_REASON)
                    return
                if disposition == ErrorDisposition.FATAL:
                    self._fail(e, f"Fatal error: {e}")
                    return

                self._retry_attempt += 1
                if self._retry_attempt > max_retries:
                    self._fail(e, f"Retry attempts exhausted ({max_retries})")
                    return
                if self._cached_session is None:
                    self._fail(
                        SessionStateError("No cached session to retry", session_key=self.session_key),
                        "No cached session to retry"
                    )
                    return

                if disposition == ErrorDisposition.REAUTHENTICATE:
                    self._needs_authorization = self._cached_session.account_token is not None
                elif disposition == ErrorDisposition.RETRY:
                    self._needs_reconnect = True

                delay = compute_backoff_delay(self._retry_attempt - 1, self.config.session)
                self.logger.info("Retrying session", delay_seconds=delay, attempt=self._retry_attempt)
                await self._pause(delay)

    def _fail(self, error: BaseException, reason: str) -> None:
        self._error = error
        self._emit(
            SessionEventKind.SESSION_ERROR,
            f"Trading error: {error}",
            {"error": str(error), "error_type": type(error).__name__}
        )
        self.stop_session(reason, emit_statistics=False)

    async def _ensure_connected(self) -> None:
        if self._needs_reconnect:
            self._needs_reconnect = False
            await self.connection.reconnect()
        else:
            await self.connection.wait_until_open()

        if self._needs_authorization:
            await self.connection.authorize(self._cached_session.account_token)
            self._needs_authorization = False

    async def execute_trade_sequence(self) -> None:
        """Trade until the session stops."""
        last_won: Optional[bool] = None
        last_profit: Optional[float] = None

        while self._running:
            decision = self.strategy.prepare_for_next_trade(last_won, last_profit)
            log_trade_decision(
                self.logger, self.session_key, decision.should_trade,
                decision.amount, decision.reason, decision.context
            )

            if not decision.should_trade:
                if is_terminal_block(decision.reason):
                    self.stop_session(decision.reason)
                    return
                await self._idle()
                continue

            outcome = await self._execute_trade(decision.amount)
            self._retry_attempt = 0
            last_won, last_profit = outcome.won, outcome.signed_profit

            self._check_session_health()
            if not self._running:
                return

            reason = self._check_stop_conditions()
            if reason is not None:
                self.stop_session(reason)
                return

            if self._params.trading_mode == TradingMode.MANUAL:
                await self._wait_for_confirmation()
            else:
                delay = compute_inter_trade_delay(
                    outcome.won,
                    self.aggregates.consecutive_losses,
                    self.config.session,
                    self._rng
                )
                await self._pause(delay)

    async def _execute_trade(self, amount: float) -> TradeOutcome:
        params = self._params
        contract = build_contract_parameters(
            params.contract_kind,
            amount,
            params.symbol,
            params.contract_duration_value,
            params.contract_duration_unit,
            currency=self.currency,
            rng=self._rng
        )
        run = self.aggregates.runs + 1

        raw = await self.connection.purchase(contract)

        try:
            settlement, outcome = self.parser.parse(raw)
        except DataQualityError as e:
            contract_id = raw.get("contract_id") if isinstance(raw, dict) else None
            self.logger.error("Settlement unusable, counting stake as lost",
                              run=run, stake=amount, contract_id=contract_id, error=str(e))
            outcome = TradeOutcome.from_result(False, amount, amount)
            await self._record_run(run, outcome, None, str(contract_id) if contract_id else None,
                                   malformed=True)
            return outcome

        await self._record_run(run, outcome, settlement.payout if outcome.won else 0.0,
                               settlement.contract_id)
        return outcome

    async def _record_run(self, run: int, outcome: TradeOutcome, payout: Optional[float],
                          contract_id: Optional[str], malformed: bool = False) -> None:
        self.strategy.update_state(outcome.won, outcome.signed_profit)

        aggregates = self.aggregates
        aggregates.runs += 1
        aggregates.total_stake += outcome.stake
        aggregates.total_profit += outcome.signed_profit
        if outcome.won:
            aggregates.wins += 1
            aggregates.total_payout += payout or 0.0
            aggregates.consecutive_losses = 0
        else:
            aggregates.losses += 1
            aggregates.consecutive_losses += 1
        if malformed:
            aggregates.failed_runs += 1

        record = AuditRecord(
            run=run,
            stake=outcome.stake,
            profit=outcome.signed_profit,
            won=outcome.won,
            contract_id=contract_id,
            timestamp=self._clock(),
            malformed=malformed,
        )
        self._records.append(record)
        await self._save_audit_record(record)

        self.logger.info(
            "Trade settled",
            run=run,
            won=outcome.won,
            stake=outcome.stake,
            profit=outcome.signed_profit,
            total_profit=aggregates.total_profit,
            consecutive_losses=aggregates.consecutive_losses
        )
        self._emit(
            SessionEventKind.TRADE_SETTLED,
            f"Run {run}: {'WIN' if outcome.won else 'LOSS'} "
            f"stake {outcome.stake:.2f} profit {outcome.signed_profit:.2f}",
            {**record.to_dict(), "total_profit": round(aggregates.total_profit, 2)}
        )

    async def _save_audit_record(self, record: AuditRecord) -> None:
        """Store the run record in a worker thread so a slow store cannot stall the timers."""
        if self.audit_store is None:
            return
        key = f"{self.session_key}:run:{record.run}"
        try:
            await asyncio.to_thread(self.audit_store.save, key, record.to_dict())
        except PersistenceError as e:
            self.logger.error("Audit record not stored", key=key, error=str(e))

    def _check_stop_conditions(self) -> Optional[str]:
        params = self._params
        aggregates = self.aggregates
        currency = self.currency

        if aggregates.total_profit >= params.take_profit:
            return f"Take profit reached ({currency} {aggregates.total_profit:.2f})"
        if aggregates.total_profit <= -params.stop_loss:
            return f"Stop loss triggered ({currency} {aggregates.total_profit:.2f})"

        max_losses = self.config.session.max_consecutive_losses
        if aggregates.consecutive_losses >= max_losses:
            return f"Max consecutive losses ({max_losses})"
        return None

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    async def _pause(self, seconds: float) -> None:
        """Wait for the delay to elapse or the session to stop."""
        await self._wait_first(self._sleep(seconds), self._stopped.wait())

    async def _idle(self) -> None:
        """Wait for the next telemetry tick or a manual confirmation."""
        self._wake.clear()
        waiters = [self._wake.wait(), self._confirmed.wait()]
        if self._telemetry_task is None:
            waiters.append(asyncio.sleep(self._params.update_frequency_seconds))
        await self._wait_first(*waiters)
        self._confirmed.clear()

    async def _wait_for_confirmation(self) -> None:
        self.logger.info("Waiting for manual confirmation")
        await self._confirmed.wait()
        self._confirmed.clear()

    async def _wait_first(self, *awaitables: Awaitable[Any]) -> None:
        tasks = [asyncio.ensure_future(awaitable) for awaitable in awaitables]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit(self, kind: SessionEventKind, message: str,
              payload: Optional[dict[str, Any]] = None) -> None:
        if self.delivery is None:
            return
        event = SessionEvent(
            kind=kind,
            session_key=self.session_key,
            message=message,
            timestamp=self._clock(),
            payload=payload or {},
        )
        try:
            results = self.delivery.deliver_with_retry([event.to_dict()])
        except Exception as e:
            # A failing front end never ends the session
            self.logger.error("Event delivery raised", kind=kind.value, error=str(e),
                              error_type=type(e).__name__)
            return
        for result in results:
            if result.status != DeliveryStatus.SUCCESS:
                self.logger.warning("Event not delivered", kind=kind.value,
                                    status=result.status.value, error=result.message)
