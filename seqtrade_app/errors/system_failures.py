"""
System failure error classifications.

These exceptions represent failures that retrying cannot fix: invalid
session parameters, misuse of the stake strategy, and broken
persistence or delivery collaborators.
"""

from typing import Any, Dict, Optional


class SystemFailureError(Exception):
    """Base class for unrecoverable system failures."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = False


class SessionValidationError(SystemFailureError):
    """Session parameters failed validation; the session is never started."""

    def __init__(self, message: str, issues: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.issues = issues or []


class StrategyStateError(SystemFailureError, ValueError):
    """Stake strategy was driven with invalid input such as a non-finite profit."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 value: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.value = value


class SessionStateError(SystemFailureError):
    """Session operation requires state that does not exist."""

    def __init__(self, message: str, session_key: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.session_key = session_key


class PersistenceError(SystemFailureError):
    """Audit store write or read failures."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 target: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.target = target


class DeliveryError(SystemFailureError):
    """Session event delivery failures."""

    def __init__(self, message: str, delivery_method: Optional[str] = None,
                 event_kind: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.delivery_method = delivery_method
        self.event_kind = event_kind
