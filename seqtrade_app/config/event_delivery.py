"""Configuration for session event delivery mechanisms."""

from dataclasses import dataclass


@dataclass(frozen=True)
class StdoutDeliveryConfig:
    """Configuration for stdout delivery."""
    format: str = "pretty"  # json, pretty
    include_timestamp: bool = True
