"""
Recovery strategy classifications for error handling.

These mixins categorize errors by their recovery characteristics and
drive the session orchestrator's retry decisions.
"""

from typing import Any, Dict, Optional


class RecoverableError(Exception):
    """Mixin for errors that can be recovered from automatically."""

    def __init__(self, message: str, retry_count: int = 0,
                 max_retries: int = 3, context: Optional[Dict[str, Any]] = None,
                 **kwargs):
        super().__init__(message)
        self.retry_count = retry_count
        self.max_retries = max_retries
        self.context = context or {}
        self.recoverable = True


class UnrecoverableError(Exception):
    """Mixin for errors that require human intervention."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None,
                 **kwargs):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = False


class ReauthenticationRequired(RecoverableError):
    """Mixin for errors that clear after re-authorizing the account."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.requires_reauthentication = True
