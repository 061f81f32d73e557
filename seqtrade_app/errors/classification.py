"""Map caught exceptions to the orchestrator's handling dispositions."""

import asyncio
from enum import Enum

from .data_quality import DataQualityError
from .recovery import ReauthenticationRequired, RecoverableError
from .system_failures import SessionValidationError


class ErrorDisposition(str, Enum):
    """How the orchestrator reacts to a caught execution error."""
    RETRY = "retry"                      # backoff, reconnect, resume cached session
    REAUTHENTICATE = "reauthenticate"    # authorize again, then retry
    DATA_INTEGRITY = "data_integrity"    # record run as failed, do not repeat purchase
    VALIDATION = "validation"            # report to caller, never retried
    FATAL = "fatal"                      # stop without statistics, surface to caller


def classify_error(error: BaseException) -> ErrorDisposition:
    """
    Classify an exception raised while executing a trade.

    Args:
        error: Exception caught at the session loop boundary

    Returns:
        Disposition the orchestrator applies
    """
    if isinstance(error, SessionValidationError):
        return ErrorDisposition.VALIDATION
    if isinstance(error, DataQualityError):
        return ErrorDisposition.DATA_INTEGRITY
    if isinstance(error, ReauthenticationRequired):
        return ErrorDisposition.REAUTHENTICATE
    if isinstance(error, RecoverableError):
        return ErrorDisposition.RETRY
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorDisposition.RETRY
    return ErrorDisposition.FATAL


def is_recoverable(error: BaseException) -> bool:
    """Return True when the error is cleared by retrying, with or without re-authorization."""
    return classify_error(error) in (ErrorDisposition.RETRY, ErrorDisposition.REAUTHENTICATE)
