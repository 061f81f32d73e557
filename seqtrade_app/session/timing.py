"""Inter-trade delay and error backoff rules."""

import random
from typing import Callable, Optional

from ..config.defaults import SessionDefaults


def compute_inter_trade_delay(
    won: Optional[bool],
    consecutive_losses: int,
    defaults: SessionDefaults = SessionDefaults(),
    rng: Optional[Callable[[], float]] = None
) -> float:
    """
    Compute the pause before the next trade.

    After a win (or before the first trade) the pause is the base delay.
    After a loss it starts at the loss base plus uniform jitter and grows
    by ``loss_delay_growth`` per consecutive loss. A grown delay above the
    soft cap is rescaled to ``min(delay * (losses + 1), soft cap)``.

    Args:
        won: Outcome of the last trade, None before the first trade
        consecutive_losses: Current session loss streak
        defaults: Timing parameters
        rng: Uniform [0, 1) source, random.random when omitted

    Returns:
        Delay in seconds, never above ``max_delay_ms``
    """
    if won or won is None:
        delay_ms = float(defaults.base_delay_ms)
    else:
        uniform = (rng or random.random)()
        delay_ms = defaults.loss_delay_base_ms + uniform * defaults.loss_delay_jitter_ms
        delay_ms *= defaults.loss_delay_growth ** consecutive_losses

        if delay_ms > defaults.loss_delay_soft_cap_ms:
            delay_ms = min(delay_ms * (consecutive_losses + 1), defaults.loss_delay_soft_cap_ms)

    return min(delay_ms, defaults.max_delay_ms) / 1000


def compute_backoff_delay(attempt: int, defaults: SessionDefaults = SessionDefaults()) -> float:
    """Exponential error backoff in seconds: ``min(base * 2**attempt, max)``."""
    delay_ms = min(defaults.backoff_base_ms * 2 ** attempt, defaults.backoff_max_ms)
    return delay_ms / 1000
