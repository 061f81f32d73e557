"""
Trading session control.

This package contains the trade orchestrator that runs one session's
control loop, the session parameter and result models, delay rules,
telemetry formatting and the registry of isolated sessions.
"""

from .models import (
    AuditRecord,
    SessionAggregates,
    SessionEvent,
    SessionEventKind,
    SessionParams,
    SessionResult,
    TradingMode,
)
from .orchestrator import TradeOrchestrator
from .registry import SessionRegistry
from .timing import compute_backoff_delay, compute_inter_trade_delay

__all__ = [
    "AuditRecord",
    "SessionAggregates",
    "SessionEvent",
    "SessionEventKind",
    "SessionParams",
    "SessionResult",
    "TradingMode",
    "TradeOrchestrator",
    "SessionRegistry",
    "compute_backoff_delay",
    "compute_inter_trade_delay",
]
