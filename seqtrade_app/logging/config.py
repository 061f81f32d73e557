"""
Structured logging for the seqtrade trading core.

Strategy decisions, session lifecycle events and venue connection
changes are all logged through structlog on top of the standard library
``logging`` module. Session and strategy loggers carry bound context
(``session_key``, ``subsystem``) so the audit records of one chat
session can be filtered out of a shared stream.
"""
import logging
import sys
from typing import Any, Optional, Union

import orjson
import structlog
from structlog.types import FilteringBoundLogger, Processor

# Context keys rendered first in console output
LEADING_KEYS = ("session_key", "subsystem", "event_type")


def _orjson_dumps(event_dict: Any, **kwargs: Any) -> str:
    return orjson.dumps(event_dict, default=str).decode()


def _lead_with_session_context(_logger: Any, _method: str,
                               event_dict: dict[str, Any]) -> dict[str, Any]:
    """Move session and subsystem keys to the front of the event."""
    leading = {key: event_dict.pop(key) for key in LEADING_KEYS if key in event_dict}
    if not leading:
        return event_dict
    event = event_dict.pop("event", None)
    ordered = {"event": event} if event is not None else {}
    ordered.update(leading)
    ordered.update(event_dict)
    return ordered


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def build_processors(
    include_timestamp: bool = True,
    include_caller: bool = False,
    extra_processors: Optional[list[Processor]] = None
) -> list[Processor]:
    """
    Processor chain shared by console and JSON output, without the renderer.

    Args:
        include_timestamp: Stamp events with a UTC ISO-8601 time
        include_caller: Add module, function and line of the log call
        extra_processors: Appended after the built-in processors
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso", utc=True))
    if include_caller:
        processors.append(structlog.processors.CallsiteParameterAdder(
            parameters=[structlog.processors.CallsiteParameter.MODULE,
                        structlog.processors.CallsiteParameter.FUNC_NAME,
                        structlog.processors.CallsiteParameter.LINENO]
        ))
    processors.extend(extra_processors or [])
    processors.append(_lead_with_session_context)
    return processors


def build_renderer(format_json: bool = False) -> Processor:
    """JSON lines through orjson, or colored console output."""
    if format_json:
        return structlog.processors.JSONRenderer(serializer=_orjson_dumps)
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def configure_logging(
    level: Union[str, int] = "INFO",
    format_json: bool = False,
    include_timestamp: bool = True,
    include_caller: bool = False,
    extra_processors: Optional[list[Processor]] = None
) -> None:
    """
    Configure structlog and the root logger for the trading core.

    Calling it again replaces the previous configuration, so a host
    process can switch to JSON output after start-up.

    Args:
        level: Level name (DEBUG, INFO, ...) or ``logging`` constant
        format_json: Render JSON lines instead of console output
        include_timestamp: Stamp events with a UTC timestamp
        include_caller: Add call-site information
        extra_processors: Additional structlog processors

    Raises:
        ValueError: If the level name is unknown
    """
    log_level = _resolve_level(level)

    logging.basicConfig(level=log_level, stream=sys.stdout, format="%(message)s", force=True)

    structlog.configure(
        processors=[
            *build_processors(include_timestamp, include_caller, extra_processors),
            build_renderer(format_json),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    """Module logger, usually ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def get_strategy_logger(name: str) -> FilteringBoundLogger:
    """Logger for stake decisions; records are part of the audit trail."""
    return get_logger(name).bind(subsystem="stake_strategy", audit_trail=True)


def get_session_logger(name: str, session_key: str) -> FilteringBoundLogger:
    """
    Logger for one trading session.

    Every record carries ``session_key`` so interleaved sessions of
    different chat users can be told apart.
    """
    return get_logger(name).bind(subsystem="trade_session", session_key=session_key)


def get_venue_logger(name: str) -> FilteringBoundLogger:
    return get_logger(name).bind(subsystem="venue")


def log_trade_decision(
    logger: FilteringBoundLogger,
    session_key: str,
    should_trade: bool,
    amount: Optional[float],
    reason: Optional[str],
    context: Optional[dict[str, Any]] = None
) -> None:
    """
    Record one pre-trade decision.

    Decisions to trade are logged at info level with the stake; blocked
    decisions at warning level with the blocking reason.

    Args:
        logger: Logger to bind the decision onto
        session_key: Session the decision was made for
        should_trade: Whether a trade will be placed
        amount: Stake when trading
        reason: Blocking reason when not trading
        context: Strategy context such as the sequence position
    """
    decision_logger = logger.bind(
        session_key=session_key,
        decision="TRADE" if should_trade else "HOLD",
        amount=amount,
        reason=reason,
        event_type="trade_decision"
    )
    if context:
        decision_logger = decision_logger.bind(context=context)

    if should_trade:
        decision_logger.info("Trade decision")
    else:
        decision_logger.warning("Trade blocked")


def log_state_transition(
    logger: FilteringBoundLogger,
    entity_id: str,
    from_state: str,
    to_state: str,
    trigger: str,
    context: Optional[dict[str, Any]] = None
) -> None:
    """
    Record a state change of a session, connection or strategy.

    Args:
        logger: Logger to bind the transition onto
        entity_id: Session key, connection name or subsystem
        from_state: State before the change
        to_state: State after the change
        trigger: What caused the change
        context: Extra values describing the change
    """
    transition_logger = logger.bind(
        entity_id=entity_id,
        from_state=from_state,
        to_state=to_state,
        trigger=trigger,
        event_type="state_transition"
    )
    if context:
        transition_logger = transition_logger.bind(context=context)
    transition_logger.info("State transition")
