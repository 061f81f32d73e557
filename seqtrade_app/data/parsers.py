"""
Settlement parser converting raw venue payloads into flat trade records.

Venue settlement payloads are nested and mix units: times arrive as
epoch seconds, epoch milliseconds or ISO strings, money values as
currency/value pairs. Parsing validates the payload against the fields
the trading core relies on and fails fast with MalformedSettlement
instead of letting missing values leak into stake decisions.
"""

import math
import time
from typing import Any, Optional

import structlog

from ..errors import MalformedSettlement
from ..utils.time import to_epoch_seconds
from .models import Settlement, TradeOutcome

logger = structlog.get_logger(__name__)

TERMINAL_STATUSES = frozenset({"won", "lost", "sold"})

# Allowed gap between reported profit and sell - buy price
_PROFIT_CONSISTENCY_TOLERANCE = 0.01


class ParsingMetrics:
    """Simple metrics collection for settlement parsing."""

    def __init__(self):
        self.total_parses = 0
        self.successful_parses = 0
        self.failed_parses = 0
        self.inconsistent_profits = 0
        self.total_parse_time = 0.0
        self.last_failure_time = None

    def record_parse_start(self) -> float:
        self.total_parses += 1
        return time.time()

    def record_parse_success(self, start_time: float):
        self.successful_parses += 1
        self.total_parse_time += time.time() - start_time

    def record_parse_failure(self, start_time: float):
        self.failed_parses += 1
        self.total_parse_time += time.time() - start_time
        self.last_failure_time = time.time()

    def get_stats(self) -> dict[str, Any]:
        """Get current metrics."""
        avg_parse_time = self.total_parse_time / max(self.total_parses, 1)
        success_rate = self.successful_parses / max(self.total_parses, 1)

        return {
            "total_parses": self.total_parses,
            "successful_parses": self.successful_parses,
            "failed_parses": self.failed_parses,
            "success_rate": success_rate,
            "inconsistent_profits": self.inconsistent_profits,
            "avg_parse_time_ms": avg_parse_time * 1000,
            "last_failure_time": self.last_failure_time
        }


def _number(value: Any, field: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise MalformedSettlement(f"Field {field} must be numeric, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise MalformedSettlement(f"Field {field} must be numeric, got {value!r}") from e
    if not math.isfinite(number):
        raise MalformedSettlement(f"Field {field} must be finite, got {value!r}")
    return number


def _money(raw: dict[str, Any], field: str) -> tuple[Optional[float], Optional[str]]:
    """Flatten a currency/value pair; bare numbers carry no currency."""
    value = raw.get(field)
    if isinstance(value, dict):
        return _number(value.get("value"), f"{field}.value"), value.get("currency")
    return _number(value, field), None


def _epoch(value: Any, field: str) -> Optional[int]:
    try:
        return to_epoch_seconds(value)
    except ValueError as e:
        raise MalformedSettlement(f"Field {field} is not a valid time: {e}") from e


def _spot(raw: dict[str, Any], field: str) -> tuple[Optional[float], Optional[int]]:
    value = raw.get(field)
    if isinstance(value, dict):
        return _number(value.get("value"), f"{field}.value"), _epoch(value.get("time"), f"{field}.time")
    return _number(value, field), None


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def parse_settlement(raw: dict[str, Any]) -> Settlement:
    """
    Parse a raw settlement payload into a flat Settlement record.

    Expected format:
    {
        "contract_id": 273552772428,
        "symbol": {"short": "R_100", "full": "Volatility 100 Index"},
        "status": "won",
        "start_time": {"epoch": 1740429375},
        "expiry_time": 1740429380000,
        "purchase_time": "2025-02-24T20:36:15Z",
        "entry_spot": {"value": 1234.56, "time": 1740429376},
        "exit_spot": {"value": 1234.12, "time": 1740429380},
        "buy_price": {"currency": "USD", "value": 10.0},
        "sell_price": {"currency": "USD", "value": 19.5},
        "payout": {"currency": "USD", "value": 19.5},
        "profit": {"value": 9.5, "sign": 1, "is_win": true, "percentage": 95.0, "currency": "USD"},
        "longcode": "Win payout if ...",
        "buy_transaction": "547294814948",
        "sell_transaction": "547294849768",
        "audit_details": {"all_ticks": [...]}
    }

    Times may be epoch seconds, epoch milliseconds, ISO strings or dicts
    with ``epoch``/``epoch_milliseconds``/``date``. Money fields may be
    bare numbers or currency/value pairs. ``signed_profit`` is
    ``profit.sign * profit.value``.

    Args:
        raw: Raw settlement payload

    Returns:
        Flat Settlement record

    Raises:
        MalformedSettlement: If a required field (symbol, buy price,
            payout, profit value/sign, status) is missing or unusable
    """
    if not isinstance(raw, dict):
        raise MalformedSettlement("Settlement payload must be a dictionary",
                                  raw_data={"payload": repr(raw)})

    try:
        return _parse_settlement(raw)
    except MalformedSettlement as e:
        if e.raw_data is None:
            e.raw_data = raw
        raise


def _parse_settlement(raw: dict[str, Any]) -> Settlement:
    symbol = raw.get("symbol")
    if isinstance(symbol, dict):
        symbol_short, symbol_full = symbol.get("short"), symbol.get("full")
    else:
        symbol_short, symbol_full = symbol, None

    profit = raw.get("profit")
    if not isinstance(profit, dict):
        profit = {}

    buy_price, buy_currency = _money(raw, "buy_price")
    payout, payout_currency = _money(raw, "payout")
    profit_value = _number(profit.get("value"), "profit.value")
    profit_sign = _number(profit.get("sign"), "profit.sign")
    status = raw.get("status")

    required = {
        "symbol": symbol_short,
        "buy_price": buy_price,
        "payout": payout,
        "profit.value": profit_value,
        "profit.sign": profit_sign,
        "status": status,
    }
    missing = [field for field, value in required.items() if value is None or value == ""]
    if missing:
        raise MalformedSettlement(
            f"Settlement missing required fields: {', '.join(missing)}",
            missing_fields=missing
        )

    if profit_sign not in (-1, 0, 1):
        raise MalformedSettlement(f"Field profit.sign must be -1, 0 or 1, got {profit_sign!r}")

    status = str(status).lower()
    is_win = profit.get("is_win")
    if is_win is None:
        is_win = profit_sign > 0 or status == "won"

    entry_spot, entry_spot_time = _spot(raw, "entry_spot")
    exit_spot, exit_spot_time = _spot(raw, "exit_spot")
    sell_spot, sell_spot_time = _spot(raw, "sell_spot")
    ask_price, ask_currency = _money(raw, "ask_price")
    bid_price, bid_currency = _money(raw, "bid_price")
    sell_price, sell_currency = _money(raw, "sell_price")

    audit_details = raw.get("audit_details") or {}
    ticks = raw.get("ticks") or audit_details.get("all_ticks") or []

    return Settlement(
        symbol_short=str(symbol_short),
        symbol_full=_optional_str(symbol_full),
        status=status,
        contract_id=_optional_str(raw.get("contract_id")),
        start_time=_epoch(raw.get("start_time"), "start_time"),
        expiry_time=_epoch(raw.get("expiry_time"), "expiry_time"),
        purchase_time=_epoch(raw.get("purchase_time"), "purchase_time"),
        entry_spot_value=entry_spot,
        entry_spot_time=entry_spot_time,
        exit_spot_value=exit_spot,
        exit_spot_time=exit_spot_time,
        ask_price_value=ask_price,
        ask_price_currency=ask_currency,
        buy_price_value=buy_price,
        buy_price_currency=buy_currency,
        bid_price_value=bid_price,
        bid_price_currency=bid_currency,
        sell_price_value=sell_price,
        sell_price_currency=sell_currency,
        sell_spot=sell_spot,
        sell_spot_time=sell_spot_time,
        payout=payout,
        payout_currency=payout_currency,
        profit_value=profit_value,
        profit_currency=profit.get("currency"),
        profit_percentage=_number(profit.get("percentage"), "profit.percentage"),
        profit_is_win=bool(is_win),
        profit_sign=int(profit_sign),
        signed_profit=profit_sign * profit_value,
        longcode=_optional_str(raw.get("longcode")),
        proposal_id=_optional_str(raw.get("proposal_id")),
        buy_transaction=_optional_str(raw.get("buy_transaction")),
        sell_transaction=_optional_str(raw.get("sell_transaction")),
        tick_count=len(ticks),
    )


class ResultParser:
    """Parses settlements for one session and keeps parsing metrics."""

    def __init__(self):
        self.metrics = ParsingMetrics()

    def parse(self, raw: dict[str, Any]) -> tuple[Settlement, TradeOutcome]:
        """
        Parse a settlement and derive its trade outcome.

        Raises:
            MalformedSettlement: If the payload is malformed
        """
        start_time = self.metrics.record_parse_start()
        try:
            settlement = parse_settlement(raw)
        except MalformedSettlement as e:
            self.metrics.record_parse_failure(start_time)
            logger.error(
                "Malformed settlement",
                error=str(e),
                missing_fields=e.missing_fields,
                contract_id=raw.get("contract_id") if isinstance(raw, dict) else None
            )
            raise

        self.metrics.record_parse_success(start_time)
        self._check_profit_consistency(settlement)
        return settlement, settlement.to_outcome()

    def _check_profit_consistency(self, settlement: Settlement) -> None:
        if settlement.sell_price_value is None:
            return

        profit_after_sale = settlement.sell_price_value - settlement.buy_price_value
        if abs(profit_after_sale - settlement.signed_profit) > _PROFIT_CONSISTENCY_TOLERANCE:
            self.metrics.inconsistent_profits += 1
            logger.warning(
                "Settlement profit does not match sale price",
                contract_id=settlement.contract_id,
                signed_profit=settlement.signed_profit,
                profit_after_sale=profit_after_sale
            )

    def get_stats(self) -> dict[str, Any]:
        return self.metrics.get_stats()
