"""
Trading session data models.

Session parameters arrive from the chat front end as a loose mapping
and are validated into SessionParams before anything starts. Aggregates
and audit records are owned by one TradeOrchestrator for the life of a
session.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..config.validation import ConfigValidator
from ..data.contracts import ContractKind, resolve_market_symbol
from ..errors import SessionValidationError
from ..utils.time import parse_duration_seconds


class TradingMode(str, Enum):
    """Whether trades follow each other automatically or need confirmation."""
    AUTO = "auto"
    MANUAL = "manual"


class SessionEventKind(str, Enum):
    """Events emitted to the chat front end."""
    SESSION_STARTED = "session_started"
    TELEMETRY = "telemetry"
    TRADE_SETTLED = "trade_settled"
    RUN_SUMMARY = "run_summary"
    SESSION_STOPPED = "session_stopped"
    SESSION_ERROR = "session_error"


@dataclass(frozen=True)
class SessionParams:
    """Validated parameters for one trading session."""
    market: str
    symbol: str
    contract_kind: ContractKind
    stake: float
    take_profit: float
    stop_loss: float
    trade_duration: str
    trade_duration_seconds: float
    update_frequency: str
    update_frequency_seconds: float
    contract_duration_unit: str
    contract_duration_value: int
    trading_mode: TradingMode
    account_token: Optional[str] = field(default=None, repr=False)
    currency: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "SessionParams":
        """
        Validate and build session parameters.

        Raises:
            SessionValidationError: Listing every invalid field
        """
        if not isinstance(raw, dict):
            raise SessionValidationError("Session parameters must be a mapping")

        issues = ConfigValidator.validate_session_params(raw)
        if issues:
            raise SessionValidationError(
                "Invalid session parameters: "
                + "; ".join(f"{issue.field}: {issue.message}" for issue in issues),
                issues=issues
            )

        return cls(
            market=raw["market"],
            symbol=resolve_market_symbol(raw["market"]),
            contract_kind=ContractKind.parse(raw["contract_type"]),
            stake=float(raw["stake"]),
            take_profit=float(raw["take_profit"]),
            stop_loss=float(raw["stop_loss"]),
            trade_duration=raw["trade_duration"],
            trade_duration_seconds=parse_duration_seconds(raw["trade_duration"]),
            update_frequency=raw["update_frequency"],
            update_frequency_seconds=parse_duration_seconds(raw["update_frequency"]),
            contract_duration_unit=raw["contract_duration_unit"],
            contract_duration_value=raw["contract_duration_value"],
            trading_mode=TradingMode(raw["trading_mode"].lower()),
            account_token=raw.get("account_token"),
            currency=raw.get("currency"),
        )


@dataclass
class SessionAggregates:
    """Running totals for one session."""
    started_at: datetime
    runs: int = 0
    wins: int = 0
    losses: int = 0
    failed_runs: int = 0
    total_stake: float = 0.0
    total_payout: float = 0.0
    total_profit: float = 0.0
    consecutive_losses: int = 0

    @property
    def win_rate(self) -> float:
        """Win rate in percent over settled runs."""
        settled = self.wins + self.losses
        return self.wins / settled * 100 if settled else 0.0

    @property
    def average_profit_per_run(self) -> float:
        return self.total_profit / self.runs if self.runs else 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["win_rate"] = self.win_rate
        data["average_profit_per_run"] = self.average_profit_per_run
        return data


@dataclass(frozen=True)
class AuditRecord:
    """Audit trail entry for one run."""
    run: int
    stake: float
    profit: float
    won: bool
    contract_id: Optional[str]
    timestamp: datetime
    malformed: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass(frozen=True)
class SessionEvent:
    """Outbound notification for the chat front end."""
    kind: SessionEventKind
    session_key: str
    message: str
    timestamp: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "session_key": self.session_key,
            "message": self.message,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class SessionResult:
    """Final result of a session returned to the caller of start_session."""
    session_key: str
    reason: str
    aggregates: SessionAggregates
    records: tuple[AuditRecord, ...]
    error: Optional[BaseException] = None
