"""
Venue error classifications for transport and purchase failures.

Transport failures and timeouts are recoverable by backoff and retry,
account errors clear after re-authorization, and rejected contract
parameters or exhausted connection attempts need human intervention.
"""

from typing import Any, Dict, Optional

from .recovery import ReauthenticationRequired, RecoverableError, UnrecoverableError


class VenueError(Exception):
    """Base class for errors reported by or about the trading venue."""

    recoverable = False

    def __init__(self, message: str, code: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.context = context or {}


class VenueConnectionError(VenueError, RecoverableError):
    """Transport-level failure: refused connection, unexpected close, lost socket."""


class HeartbeatTimeout(VenueConnectionError):
    """Keep-alive ping did not receive a pong in time."""

    def __init__(self, message: str, timeout_seconds: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds


class ContractCreationTimeout(VenueError, RecoverableError):
    """Purchase request was not acknowledged within the creation timeout."""

    def __init__(self, message: str, timeout_seconds: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout_seconds = timeout_seconds


class TemporaryServiceError(VenueError, RecoverableError):
    """Venue is rate limiting or temporarily unavailable."""


class InsufficientBalance(VenueError, ReauthenticationRequired):
    """Account balance does not cover the requested stake."""


class AuthorizationRequired(VenueError, ReauthenticationRequired):
    """Venue requires the account to be (re-)authorized."""


class InvalidContractParameters(VenueError, UnrecoverableError):
    """Venue rejected the contract parameters."""


class ConnectionAttemptsExhausted(VenueError, UnrecoverableError):
    """Connecting failed more times than the configured maximum."""

    def __init__(self, message: str, attempts: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.attempts = attempts


_CODE_TO_ERROR: dict[str, type[VenueError]] = {
    "AuthorizationRequired": AuthorizationRequired,
    "InvalidToken": AuthorizationRequired,
    "InsufficientBalance": InsufficientBalance,
    "RateLimit": TemporaryServiceError,
    "ServiceUnavailable": TemporaryServiceError,
    "WrongResponse": TemporaryServiceError,
    "InvalidParameters": InvalidContractParameters,
    "InputValidationFailed": InvalidContractParameters,
    "ContractBuyValidationError": InvalidContractParameters,
    "ContractCreationFailure": InvalidContractParameters,
    "InvalidContractProposal": InvalidContractParameters,
    "DisconnectByUser": VenueConnectionError,
    "ConnectionError": VenueConnectionError,
}


def venue_error_from_code(code: Optional[str], message: str,
                          context: Optional[Dict[str, Any]] = None) -> VenueError:
    """
    Map a venue error code to its typed exception.

    Unknown codes produce a plain VenueError, which the orchestrator
    treats as fatal.

    Args:
        code: Error code reported by the venue
        message: Human-readable error message
        context: Additional context data

    Returns:
        Typed venue exception instance (not raised)
    """
    error_class = _CODE_TO_ERROR.get(code or "", VenueError)
    return error_class(message, code=code, context=context)
