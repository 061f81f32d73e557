"""Session telemetry payloads and run summaries for the chat front end."""

from datetime import datetime
from typing import Any, Iterable, Optional

from ..utils.time import format_duration, time_elapsed_seconds
from .models import AuditRecord, SessionAggregates


def build_telemetry_payload(
    aggregates: SessionAggregates,
    account_id: Optional[str],
    currency: str,
    now: Optional[datetime] = None
) -> dict[str, Any]:
    """
    Build the periodic statistics payload.

    Args:
        aggregates: Current session aggregates
        account_id: Venue login id, if authorized
        currency: Account currency
        now: Current time, defaults to the wall clock

    Returns:
        Telemetry payload with money values rounded to cents
    """
    elapsed = time_elapsed_seconds(aggregates.started_at, now)
    return {
        "account_id": account_id,
        "currency": currency,
        "wins": aggregates.wins,
        "losses": aggregates.losses,
        "runs": aggregates.runs,
        "failed_runs": aggregates.failed_runs,
        "total_payout": round(aggregates.total_payout, 2),
        "total_stake": round(aggregates.total_stake, 2),
        "total_profit": round(aggregates.total_profit, 2),
        "average_profit_per_run": round(aggregates.average_profit_per_run, 2),
        "win_rate": round(aggregates.win_rate, 2),
        "duration": format_duration(elapsed),
    }


def format_telemetry_message(payload: dict[str, Any]) -> str:
    currency = payload["currency"]
    lines = [
        f"Account: {payload['account_id'] or 'unknown'}",
        f"Runs: {payload['runs']} (wins {payload['wins']}, losses {payload['losses']})",
        f"Win rate: {payload['win_rate']:.2f}%",
        f"Total stake: {currency} {payload['total_stake']:.2f}",
        f"Total payout: {currency} {payload['total_payout']:.2f}",
        f"Total profit: {currency} {payload['total_profit']:.2f}",
        f"Average profit per run: {currency} {payload['average_profit_per_run']:.2f}",
        f"Duration: {payload['duration']}",
    ]
    return "\n".join(lines)


def format_run_summary(records: Iterable[AuditRecord], currency: str = "USD") -> str:
    """
    Render the per-run audit trail as a markdown table.

    Each row shows the run index, stake and signed profit; the final row
    carries the total profit across all runs.
    """
    lines = [
        "| Run | Stake | Profit |",
        "|----:|------:|-------:|",
    ]
    total = 0.0
    for record in records:
        total += record.profit
        marker = " (malformed)" if record.malformed else ""
        lines.append(f"| {record.run} | {record.stake:.2f} | {record.profit:.2f}{marker} |")

    lines.append(f"| TOTAL PROFIT | | {currency} {total:.2f} |")
    return "\n".join(lines)
