"""
Error classification system for the trading core.

This module provides the exception hierarchy for venue transport
failures, settlement data problems, invalid session input and
strategy misuse, plus the classifier the session loop uses to pick a
recovery path.
"""

from .classification import (
    ErrorDisposition,
    classify_error,
    is_recoverable,
)
from .data_quality import (
    DataQualityError,
    MalformedSettlement,
)
from .recovery import (
    ReauthenticationRequired,
    RecoverableError,
    UnrecoverableError,
)
from .system_failures import (
    DeliveryError,
    PersistenceError,
    SessionStateError,
    SessionValidationError,
    StrategyStateError,
    SystemFailureError,
)
from .venue_errors import (
    AuthorizationRequired,
    ConnectionAttemptsExhausted,
    ContractCreationTimeout,
    HeartbeatTimeout,
    InsufficientBalance,
    InvalidContractParameters,
    TemporaryServiceError,
    VenueConnectionError,
    VenueError,
    venue_error_from_code,
)

__all__ = [
    # Classification
    "ErrorDisposition",
    "classify_error",
    "is_recoverable",
    # Data Quality Errors
    "DataQualityError",
    "MalformedSettlement",
    # System Failures
    "SystemFailureError",
    "SessionValidationError",
    "StrategyStateError",
    "SessionStateError",
    "PersistenceError",
    "DeliveryError",
    # Venue Errors
    "VenueError",
    "VenueConnectionError",
    "HeartbeatTimeout",
    "ContractCreationTimeout",
    "TemporaryServiceError",
    "InsufficientBalance",
    "AuthorizationRequired",
    "InvalidContractParameters",
    "ConnectionAttemptsExhausted",
    "venue_error_from_code",
    # Recovery Categories
    "RecoverableError",
    "UnrecoverableError",
    "ReauthenticationRequired",
]
