"""Tests for the trade orchestrator running sessions against the paper venue."""

import asyncio
import threading
import pytest
from datetime import datetime, timezone

from seqtrade_app.config.defaults import (
    ConnectionParams,
    DefaultConfig,
    SessionDefaults,
    StrategyParams,
    TelemetryParams,
)
from seqtrade_app.config.loader import ConfigLoader
from seqtrade_app.delivery.callback_delivery import CallbackEventDelivery
from seqtrade_app.errors import (
    InvalidContractParameters,
    PersistenceError,
    SessionStateError,
    SessionValidationError,
    VenueConnectionError,
)
from seqtrade_app.persistence.audit_store import InMemoryAuditStore
from seqtrade_app.session import TradeOrchestrator
from seqtrade_app.session.orchestrator import is_terminal_block
from seqtrade_app.venue import VenueConnection
from seqtrade_app.venue.paper import PaperTransport


NOON = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
NIGHT = datetime(2024, 1, 1, 23, 0, 0, tzinfo=timezone.utc)

CONNECTION_PARAMS = ConnectionParams(
    retry_delay_seconds=0.01,
    reconnect_pause_seconds=0,
    ping_interval_seconds=60,
)

BASE_PARAMS = {
    "market": "Volatility 100 📈",
    "contract_type": "CALL",
    "stake": 5,
    "take_profit": 100,
    "stop_loss": 50,
    "trade_duration": "1hr",
    "update_frequency": "1min",
    "contract_duration_unit": "t",
    "contract_duration_value": 1,
    "trading_mode": "auto",
    "account_token": "a1-test-token",
}


def session_params(**overrides):
    return {**BASE_PARAMS, **overrides}


def make_config(session=None, telemetry_enabled=False, trading_hours_enabled=False):
    return DefaultConfig(
        strategy=StrategyParams(trading_hours_enabled=trading_hours_enabled),
        session=session or SessionDefaults(),
        connection=CONNECTION_PARAMS,
        telemetry=TelemetryParams(telemetry_enabled=telemetry_enabled),
    )


class MalformedTransport(PaperTransport):
    """Paper venue that settles contracts with an unusable payload."""

    async def contract_updates(self, contract_id):
        yield {"contract_id": contract_id, "status": "won", "is_sold": True}


class FailingBuyTransport(PaperTransport):
    """Paper venue whose first purchases fail."""

    def __init__(self, failures, error_factory=None, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.buy_calls = 0
        self.error_factory = error_factory or (lambda: VenueConnectionError("socket reset"))

    async def buy(self, parameters):
        self.buy_calls += 1
        if self.buy_calls <= self.failures:
            raise self.error_factory()
        return await super().buy(parameters)


class BrokenAuditStore(InMemoryAuditStore):
    def save(self, key, data):
        raise PersistenceError("disk full", operation="save", target=key)


class ThreadRecordingAuditStore(InMemoryAuditStore):
    def __init__(self):
        super().__init__()
        self.save_threads = []

    def save(self, key, data):
        self.save_threads.append(threading.get_ident())
        super().save(key, data)


class Harness:
    """Orchestrator wired to a paper venue, recording events and pauses."""

    def __init__(self, transport=None, config=None, clock=None, audit_store=None,
                 config_loader=None):
        self.transport = transport or PaperTransport()
        self.connection = VenueConnection(self.transport, CONNECTION_PARAMS)
        self.events = []
        self.delays = []
        self.store = audit_store or InMemoryAuditStore()
        self.orchestrator = TradeOrchestrator(
            "sess",
            self.connection,
            delivery=CallbackEventDelivery(self.events.append),
            audit_store=self.store,
            config=config if config is not None or config_loader is not None else make_config(),
            sleep=self.sleep,
            rng=lambda: 0.0,
            clock=clock or (lambda: NOON),
            config_loader=config_loader,
        )

    async def sleep(self, seconds):
        self.delays.append(seconds)

    def kinds(self):
        return [event["kind"] for event in self.events]

    def events_of(self, kind):
        return [event for event in self.events if event["kind"] == kind]


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TestStopConditions:
    """Test sessions ending on their money limits."""

    @pytest.mark.asyncio
    async def test_take_profit(self):
        """Test a win above take profit stops with statistics."""
        harness = Harness(PaperTransport(outcomes=[True]))

        result = await harness.orchestrator.start_session(session_params(take_profit=4))

        assert result.reason == "Take profit reached (USD 4.75)"
        assert result.aggregates.runs == 1
        assert result.aggregates.wins == 1
        assert result.aggregates.total_payout == 9.75
        assert harness.kinds() == [
            "session_started", "trade_settled", "telemetry", "run_summary", "session_stopped",
        ]
        assert harness.events[-1]["message"] == "Trading stopped: Take profit reached (USD 4.75)"
        assert harness.store.keys("sess:") == ["sess:run:1"]
        assert harness.delays == []
        assert harness.transport.is_open is False
        assert harness.orchestrator.is_running is False

    @pytest.mark.asyncio
    async def test_stakes_follow_sequence_until_profit_lock(self):
        """Test stakes follow the sequence and a profit lock ends the session."""
        harness = Harness(PaperTransport(outcomes=[True] * 4))

        result = await harness.orchestrator.start_session(session_params(take_profit=20))

        assert result.reason.startswith("Profit lock")
        assert [purchase["amount"] for purchase in harness.transport.purchases] == [5.0, 15.0]
        assert harness.delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_stop_loss(self):
        """Test a loss beyond stop loss stops the session."""
        harness = Harness(PaperTransport(outcomes=[False]))

        result = await harness.orchestrator.start_session(session_params(stop_loss=5))

        assert result.reason == "Stop loss triggered (USD -5.00)"
        assert result.records[0].profit == -5.0
        assert result.aggregates.losses == 1

    @pytest.mark.asyncio
    async def test_max_consecutive_losses(self):
        """Test the loss streak ceiling stops the session."""
        config = make_config(session=SessionDefaults(max_consecutive_losses=2))
        harness = Harness(PaperTransport(outcomes=[False, False]), config=config)

        result = await harness.orchestrator.start_session(session_params(stop_loss=1000))

        assert result.reason == "Max consecutive losses (2)"
        assert result.aggregates.runs == 2
        assert harness.delays == [pytest.approx(4.5)]

    def test_terminal_block_reasons(self):
        """Test only loss limits and profit locks end a session."""
        assert is_terminal_block("Loss limit reached (-500.00 <= -500.00)") is True
        assert is_terminal_block("Profit lock engaged (total profit 500.00)") is True
        assert is_terminal_block("Outside trading hours (08:00-20:00 UTC)") is False
        assert is_terminal_block(None) is False


class TestSettlementHandling:
    """Test audit records and unusable settlements."""

    @pytest.mark.asyncio
    async def test_malformed_settlement_counts_as_loss(self):
        """Test an unparseable settlement is recorded as a failed losing run."""
        harness = Harness(MalformedTransport())

        result = await harness.orchestrator.start_session(session_params(stop_loss=5))

        record = result.records[0]
        assert record.malformed is True
        assert record.profit == -5.0
        assert record.contract_id == "1000"
        assert result.aggregates.failed_runs == 1
        assert result.reason == "Stop loss triggered (USD -5.00)"
        assert harness.store.load("sess:run:1")["malformed"] is True
        summary = harness.events_of("run_summary")[0]["message"]
        assert "(malformed)" in summary

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_stop_trading(self):
        """Test a failing audit store is logged and trading continues."""
        harness = Harness(PaperTransport(outcomes=[True]), audit_store=BrokenAuditStore())

        result = await harness.orchestrator.start_session(session_params(take_profit=4))

        assert result.reason.startswith("Take profit reached")
        assert len(result.records) == 1

    @pytest.mark.asyncio
    async def test_audit_save_runs_off_the_event_loop(self):
        """Test audit records are written from a worker thread."""
        loop_thread = threading.get_ident()
        store = ThreadRecordingAuditStore()
        harness = Harness(PaperTransport(outcomes=[True]), audit_store=store)

        await harness.orchestrator.start_session(session_params(take_profit=4))

        assert store.keys("sess:") == ["sess:run:1"]
        assert store.save_threads and loop_thread not in store.save_threads

    @pytest.mark.asyncio
    async def test_trade_event_payload(self):
        """Test trade events carry the audit record and running profit."""
        harness = Harness(PaperTransport(outcomes=[True]))

        await harness.orchestrator.start_session(session_params(take_profit=4))

        event = harness.events_of("trade_settled")[0]
        assert event["session_key"] == "sess"
        assert event["message"] == "Run 1: WIN stake 5.00 profit 4.75"
        assert event["payload"]["total_profit"] == 4.75
        assert event["payload"]["run"] == 1


class TestErrorRecovery:
    """Test retry, reconnect and fatal error paths."""

    @pytest.mark.asyncio
    async def test_transient_failure_retries(self):
        """Test a transport failure backs off, reconnects and resumes."""
        transport = FailingBuyTransport(failures=1, outcomes=[True])
        harness = Harness(transport)

        result = await harness.orchestrator.start_session(session_params(take_profit=4))

        assert result.reason.startswith("Take profit reached")
        assert result.error is None
        assert harness.connection.reconnect_count == 1
        assert harness.delays == [1.0]
        assert transport.buy_calls == 2

    @pytest.mark.asyncio
    async def test_retry_attempts_exhausted(self):
        """Test persistent failures stop the session and surface the error."""
        config = make_config(session=SessionDefaults(max_retry_attempts=2))
        harness = Harness(FailingBuyTransport(failures=100), config=config)

        with pytest.raises(VenueConnectionError):
            await harness.orchestrator.start_session(session_params())

        assert harness.orchestrator.last_result.reason == "Retry attempts exhausted (2)"
        assert harness.delays == [1.0, 2.0]
        assert harness.kinds() == ["session_started", "session_error", "session_stopped"]

    @pytest.mark.asyncio
    async def test_fatal_error(self):
        """Test rejected contract parameters stop without statistics."""
        transport = FailingBuyTransport(
            failures=1,
            error_factory=lambda: InvalidContractParameters("Barrier out of range",
                                                           code="ContractBuyValidationError"),
        )
        harness = Harness(transport)

        with pytest.raises(InvalidContractParameters):
            await harness.orchestrator.start_session(session_params())

        result = harness.orchestrator.last_result
        assert result.reason.startswith("Fatal error")
        assert isinstance(result.error, InvalidContractParameters)
        assert harness.kinds() == ["session_started", "session_error", "session_stopped"]
        assert transport.buy_calls == 1

    @pytest.mark.asyncio
    async def test_insufficient_balance_reauthorizes(self):
        """Test account errors re-authorize before retrying."""
        transport = PaperTransport(balance=1.0, outcomes=[True])
        harness = Harness(transport)

        async def top_up(seconds):
            harness.delays.append(seconds)
            transport.balance = 1000.0

        harness.orchestrator._sleep = top_up
        result = await harness.orchestrator.start_session(session_params(take_profit=4))

        assert result.reason.startswith("Take profit reached")
        assert harness.connection.reconnect_count == 0
        assert harness.delays == [1.0]

    @pytest.mark.asyncio
    async def test_invalid_parameters(self):
        """Test invalid parameters are reported and the session never starts."""
        harness = Harness()

        with pytest.raises(SessionValidationError):
            await harness.orchestrator.start_session(session_params(stake=-5, trading_mode="turbo"))

        assert harness.kinds() == ["session_error"]
        payload = harness.events[0]["payload"]
        assert payload["reason"] == "Invalid parameters"
        assert {issue["field"] for issue in payload["issues"]} == {"stake", "trading_mode"}
        assert harness.orchestrator.is_running is False
        assert harness.transport.is_open is False


class TestSessionLifecycle:
    """Test timers, manual mode and stopping."""

    @pytest.mark.asyncio
    async def test_duration_limit(self):
        """Test the session duration timer stops a waiting manual session."""
        harness = Harness(PaperTransport(outcomes=[True]))

        result = await harness.orchestrator.start_session(
            session_params(trading_mode="manual", trade_duration="0.2sec"))

        assert result.reason == "duration limit reached"
        assert result.aggregates.runs == 1
        assert "run_summary" in harness.kinds()

    @pytest.mark.asyncio
    async def test_manual_confirmation(self):
        """Test manual mode waits for confirmation between trades."""
        harness = Harness(PaperTransport(outcomes=[True, True, True]))
        orchestrator = harness.orchestrator

        task = asyncio.get_running_loop().create_task(
            orchestrator.start_session(session_params(trading_mode="manual")))
        await wait_until(lambda: orchestrator.aggregates is not None and orchestrator.aggregates.runs == 1)
        await asyncio.sleep(0.05)
        assert orchestrator.aggregates.runs == 1

        orchestrator.confirm_manual_trade()
        await wait_until(lambda: orchestrator.aggregates.runs == 2)

        assert orchestrator.stop_session("Stopped by user") is True
        result = await task

        assert result.reason == "Stopped by user"
        assert result.aggregates.runs == 2
        assert harness.delays == []

    @pytest.mark.asyncio
    async def test_start_while_running(self):
        """Test a running orchestrator refuses a second start."""
        harness = Harness(PaperTransport(outcomes=[True]))
        orchestrator = harness.orchestrator
        task = asyncio.get_running_loop().create_task(
            orchestrator.start_session(session_params(trading_mode="manual")))
        await wait_until(lambda: orchestrator.is_running)

        with pytest.raises(SessionStateError):
            await orchestrator.start_session(session_params())

        orchestrator.stop_session("Stopped by user")
        await task

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        """Test repeated stops emit one stop event."""
        harness = Harness(PaperTransport(outcomes=[True]))
        orchestrator = harness.orchestrator
        assert orchestrator.stop_session("nothing running") is False

        task = asyncio.get_running_loop().create_task(
            orchestrator.start_session(session_params(trading_mode="manual")))
        await wait_until(lambda: orchestrator.aggregates is not None and orchestrator.aggregates.runs == 1)

        assert orchestrator.stop_session("Stopped by user") is True
        assert orchestrator.stop_session("Stopped again") is False
        result = await task

        assert result.reason == "Stopped by user"
        assert len(harness.events_of("session_stopped")) == 1

    @pytest.mark.asyncio
    async def test_stop_includes_in_flight_trade(self):
        """Test a stop during a purchase still records the settled trade."""
        harness = Harness(PaperTransport(outcomes=[True], settle_delay=0.05))
        orchestrator = harness.orchestrator

        task = asyncio.get_running_loop().create_task(orchestrator.start_session(session_params()))
        await wait_until(lambda: len(harness.transport.purchases) == 1)
        orchestrator.stop_session("Stopped by user")
        result = await task

        assert result.aggregates.runs == 1
        summary = harness.events_of("run_summary")[0]
        assert len(summary["payload"]["runs"]) == 1

    @pytest.mark.asyncio
    async def test_cancelled_task_finishes_session(self):
        """Test cancelling the session task still stops and disconnects."""
        harness = Harness(PaperTransport(outcomes=[True]))
        orchestrator = harness.orchestrator

        task = asyncio.get_running_loop().create_task(
            orchestrator.start_session(session_params(trading_mode="manual")))
        await wait_until(lambda: orchestrator.aggregates is not None and orchestrator.aggregates.runs == 1)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert orchestrator.is_running is False
        assert orchestrator.last_result.reason == "Session cancelled"
        assert harness.kinds()[-1] == "session_stopped"
        assert harness.transport.is_open is False

    @pytest.mark.asyncio
    async def test_blocked_decision_idles(self):
        """Test a non-terminal block waits instead of stopping."""
        config = make_config(trading_hours_enabled=True)
        harness = Harness(PaperTransport(), config=config, clock=lambda: NIGHT)

        result = await harness.orchestrator.start_session(
            session_params(trade_duration="0.3sec", update_frequency="0.05sec"))

        assert result.reason == "duration limit reached"
        assert result.aggregates.runs == 0
        assert harness.transport.purchases == []

    @pytest.mark.asyncio
    async def test_periodic_telemetry(self):
        """Test telemetry is emitted on the update interval."""
        harness = Harness(PaperTransport(outcomes=[True]), config=make_config(telemetry_enabled=True))
        orchestrator = harness.orchestrator

        task = asyncio.get_running_loop().create_task(
            orchestrator.start_session(session_params(trading_mode="manual", update_frequency="0.05sec")))
        await wait_until(lambda: len(harness.events_of("telemetry")) >= 2)
        orchestrator.stop_session("Stopped by user", emit_statistics=False)
        await task

        telemetry = harness.events_of("telemetry")
        assert telemetry[0]["payload"]["account_id"] == "VRTC0000000"
        assert telemetry[-1]["payload"]["runs"] == 1
        assert "run_summary" not in harness.kinds()

    @pytest.mark.asyncio
    async def test_session_state_not_carried_over(self):
        """Test a second session starts from fresh aggregates."""
        harness = Harness(PaperTransport(outcomes=[True, True]))
        orchestrator = harness.orchestrator

        first = await orchestrator.start_session(session_params(take_profit=4))
        second = await orchestrator.start_session(session_params(take_profit=4))

        assert first.aggregates.runs == 1
        assert second.aggregates.runs == 1
        assert second.records[0].run == 1
        assert orchestrator.strategy is None


class TestConfigResolution:
    """Test configuration merged from market overrides."""

    @pytest.mark.asyncio
    async def test_market_overrides_apply(self, tmp_path):
        """Test market session overrides reach the trade loop."""
        (tmp_path / "markets.yaml").write_text(
            "markets:\n"
            "  R_100:\n"
            "    session:\n"
            "      base_delay_ms: 2500\n"
            "    telemetry:\n"
            "      telemetry_enabled: false\n"
        )
        harness = Harness(PaperTransport(outcomes=[True, True]),
                          config_loader=ConfigLoader.create(tmp_path))

        await harness.orchestrator.start_session(session_params(take_profit=18))

        config = harness.orchestrator.config
        assert config.session.base_delay_ms == 2500
        assert config.telemetry.telemetry_enabled is False
        assert harness.delays[0] == 2.5


class TestFrontEndFailures:
    """Test sessions keep trading when the chat front end misbehaves."""

    @staticmethod
    def crash_on(harness, kind):
        def callback(event):
            harness.events.append(event)
            if event["kind"] == kind:
                raise RuntimeError("chat API 502")
        harness.orchestrator.delivery = CallbackEventDelivery(callback)

    @pytest.mark.asyncio
    async def test_trade_event_failure_keeps_session(self):
        """Test a crashing callback on a settled trade does not end the session as fatal."""
        harness = Harness(PaperTransport(outcomes=[True]))
        self.crash_on(harness, "trade_settled")

        result = await harness.orchestrator.start_session(session_params(take_profit=4))

        assert result.error is None
        assert result.reason == "Take profit reached (USD 4.75)"
        assert result.aggregates.runs == 1
        assert harness.store.keys("sess:") == ["sess:run:1"]
        assert len(harness.events_of("trade_settled")) == 3
        assert harness.kinds()[-1] == "session_stopped"

    @pytest.mark.asyncio
    async def test_telemetry_failure_keeps_ticking(self):
        """Test a crashing callback on telemetry leaves the telemetry interval running."""
        harness = Harness(PaperTransport(outcomes=[True]), config=make_config(telemetry_enabled=True))
        self.crash_on(harness, "telemetry")
        orchestrator = harness.orchestrator

        task = asyncio.get_running_loop().create_task(
            orchestrator.start_session(session_params(trading_mode="manual", update_frequency="0.05sec")))
        # Each tick is attempted three times before it is dropped
        await wait_until(lambda: len(harness.events_of("telemetry")) >= 6)

        assert orchestrator._telemetry_task.done() is False
        orchestrator.stop_session("Stopped by user")
        result = await task

        assert result.error is None
        assert result.reason == "Stopped by user"
        assert harness.kinds()[-1] == "session_stopped"

    @pytest.mark.asyncio
    async def test_blocked_session_wakes_after_telemetry_failure(self):
        """Test a blocked session still re-evaluates on every telemetry tick."""
        config = make_config(telemetry_enabled=True, trading_hours_enabled=True)
        harness = Harness(PaperTransport(), config=config, clock=lambda: NIGHT)
        self.crash_on(harness, "telemetry")
        orchestrator = harness.orchestrator
        decisions = []
        original = orchestrator._strategy_factory

        def counting_factory(strategy_config):
            strategy = original(strategy_config)
            prepare = strategy.prepare_for_next_trade

            def counted(*args, **kwargs):
                decisions.append(1)
                return prepare(*args, **kwargs)
            strategy.prepare_for_next_trade = counted
            return strategy
        orchestrator._strategy_factory = counting_factory

        task = asyncio.get_running_loop().create_task(
            orchestrator.start_session(session_params(update_frequency="0.05sec")))
        await wait_until(lambda: len(decisions) >= 3)
        orchestrator.stop_session("Stopped by user")
        result = await task

        assert result.error is None
        assert result.aggregates.runs == 0
