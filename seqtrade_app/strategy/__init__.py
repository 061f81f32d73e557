"""
Stake strategy module.

The 1-3-2-6 stake progression and loss recovery state machine with its
configuration, state snapshot and decision models.
"""

from .machine import StakeStrategy
from .models import (
    SequenceHistoryEntry,
    SequenceVariant,
    StrategyConfig,
    StrategyState,
    TradeDecision,
    TradeResult,
)

__all__ = [
    "StakeStrategy",
    "SequenceHistoryEntry",
    "SequenceVariant",
    "StrategyConfig",
    "StrategyState",
    "TradeDecision",
    "TradeResult",
]
