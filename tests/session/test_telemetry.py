"""Tests for telemetry payloads and run summaries."""

from datetime import datetime, timedelta, timezone

from seqtrade_app.session.models import AuditRecord, SessionAggregates
from seqtrade_app.session.telemetry import (
    build_telemetry_payload,
    format_run_summary,
    format_telemetry_message,
)

STARTED = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def sample_aggregates() -> SessionAggregates:
    return SessionAggregates(
        started_at=STARTED,
        runs=3,
        wins=2,
        losses=1,
        total_stake=20.0,
        total_payout=29.25,
        total_profit=9.25,
    )


class TestTelemetryPayload:
    """Test the periodic statistics payload."""

    def test_payload_fields(self):
        """Test counters, rounded money values and elapsed duration."""
        payload = build_telemetry_payload(
            sample_aggregates(), "CR900000", "USD", now=STARTED + timedelta(seconds=3725)
        )

        assert payload == {
            "account_id": "CR900000",
            "currency": "USD",
            "wins": 2,
            "losses": 1,
            "runs": 3,
            "failed_runs": 0,
            "total_payout": 29.25,
            "total_stake": 20.0,
            "total_profit": 9.25,
            "average_profit_per_run": 3.08,
            "win_rate": 66.67,
            "duration": "1h 2m 5s",
        }

    def test_empty_session(self):
        """Test a session without runs reports zeros."""
        payload = build_telemetry_payload(SessionAggregates(started_at=STARTED), None, "USD",
                                          now=STARTED)

        assert payload["win_rate"] == 0.0
        assert payload["average_profit_per_run"] == 0.0
        assert payload["duration"] == "0h 0m 0s"

    def test_message(self):
        """Test the human-readable telemetry message."""
        payload = build_telemetry_payload(sample_aggregates(), None, "EUR",
                                          now=STARTED + timedelta(minutes=5))

        message = format_telemetry_message(payload)

        assert "Account: unknown" in message
        assert "Runs: 3 (wins 2, losses 1)" in message
        assert "Win rate: 66.67%" in message
        assert "Total profit: EUR 9.25" in message
        assert "Duration: 0h 5m 0s" in message


class TestRunSummary:
    """Test the markdown run summary."""

    def test_summary_table(self):
        """Test rows, malformed marker and total line."""
        records = [
            AuditRecord(run=1, stake=5.0, profit=4.75, won=True, contract_id="1000", timestamp=STARTED),
            AuditRecord(run=2, stake=10.0, profit=-10.0, won=False, contract_id=None,
                        timestamp=STARTED, malformed=True),
        ]

        summary = format_run_summary(records)

        assert summary == "\n".join([
            "| Run | Stake | Profit |",
            "|----:|------:|-------:|",
            "| 1 | 5.00 | 4.75 |",
            "| 2 | 10.00 | -10.00 (malformed) |",
            "| TOTAL PROFIT | | USD -5.25 |",
        ])

    def test_empty_summary(self):
        """Test a session without runs still renders the total."""
        summary = format_run_summary([], currency="EUR")

        assert summary.splitlines()[-1] == "| TOTAL PROFIT | | EUR 0.00 |"
        assert len(summary.splitlines()) == 3
