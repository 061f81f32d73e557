"""
Time utilities for settlement timestamps and session durations.

Venue payloads mix epoch seconds, epoch milliseconds and ISO strings;
everything inside the core is normalized to integer epoch seconds or
aware UTC datetimes. Session durations arrive as free-form strings
from the chat front end ("5sec", "1h30m", "2hrs") and are parsed here.
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

# Values above this are epoch milliseconds (year 5138 in seconds)
_EPOCH_MILLIS_THRESHOLD = 100_000_000_000

_DURATION_TOKEN = re.compile(r"(\d+(?:\.\d+)?)\s*([a-zA-Z]+)")

_DURATION_UNITS = {
    "t": 1, "tick": 1, "ticks": 1,
    "s": 1, "sec": 1, "secs": 1, "second": 1, "seconds": 1,
    "m": 60, "min": 60, "mins": 60, "minute": 60, "minutes": 60,
    "h": 3600, "hr": 3600, "hrs": 3600, "hour": 3600, "hours": 3600,
    "d": 86400, "day": 86400, "days": 86400,
}


def utc_now() -> datetime:
    """Current wall-clock time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_epoch_seconds(value: Any) -> Optional[int]:
    """
    Normalize a venue time value to integer epoch seconds.

    Accepts epoch seconds, epoch milliseconds, numeric strings, ISO-8601
    strings, datetimes (naive ones are taken as UTC) and dicts carrying
    ``epoch``, ``epoch_milliseconds`` or ``date``.

    Args:
        value: Raw time value

    Returns:
        Epoch seconds, or None when value is None

    Raises:
        ValueError: If the value cannot be interpreted as a time
    """
    if value is None:
        return None

    if isinstance(value, bool):
        raise ValueError(f"Invalid time value: {value!r}")

    if isinstance(value, dict):
        if value.get("epoch") is not None:
            return to_epoch_seconds(value["epoch"])
        if value.get("epoch_milliseconds") is not None:
            return int(float(value["epoch_milliseconds"]) // 1000)
        if value.get("date") is not None:
            return to_epoch_seconds(value["date"])
        raise ValueError(f"Time object has no epoch or date: {value!r}")

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())

    if isinstance(value, (int, float)):
        if value > _EPOCH_MILLIS_THRESHOLD:
            return int(value // 1000)
        return int(value)

    if isinstance(value, str):
        text = value.strip()
        try:
            return to_epoch_seconds(float(text))
        except ValueError:
            pass
        try:
            return to_epoch_seconds(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError as e:
            raise ValueError(f"Invalid time string: {value!r}") from e

    raise ValueError(f"Unsupported time value type: {type(value).__name__}")


def parse_duration_seconds(text: str) -> float:
    """
    Parse a human duration string into seconds.

    Accepts single or compound forms such as ``"5sec ⏱️"``, ``"1min"``,
    ``"2hrs"``, ``"1h30m"``, ``"1 Tick"`` and ``"1 day"``. Decorations
    like emoji are ignored; a tick counts as one second.

    Args:
        text: Duration string

    Returns:
        Duration in seconds (always positive)

    Raises:
        ValueError: If the string contains no duration or an unknown unit
    """
    if not isinstance(text, str) or not text.strip():
        raise ValueError("Duration must be a non-empty string")

    tokens = _DURATION_TOKEN.findall(text)
    if not tokens:
        raise ValueError(f"No duration found in {text!r}")

    total = 0.0
    for amount, unit in tokens:
        multiplier = _DURATION_UNITS.get(unit.lower())
        if multiplier is None:
            raise ValueError(f"Unknown duration unit {unit!r} in {text!r}")
        total += float(amount) * multiplier

    if total <= 0:
        raise ValueError(f"Duration must be positive: {text!r}")

    return total


def format_duration(seconds: float) -> str:
    """Format seconds as ``"1h 2m 3s"``."""
    whole = max(int(seconds), 0)
    hours, remainder = divmod(whole, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours}h {minutes}m {secs}s"


def time_elapsed_seconds(start_time: datetime, end_time: Optional[datetime] = None) -> float:
    """
    Calculate elapsed time between two timestamps.

    Args:
        start_time: Start timestamp
        end_time: End timestamp, defaults to current UTC time

    Returns:
        Elapsed time in seconds
    """
    if end_time is None:
        end_time = utc_now()

    return (end_time - start_time).total_seconds()
