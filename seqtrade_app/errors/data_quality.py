"""
Data quality error classifications for settlement processing.

These exceptions describe venue payloads that cannot be trusted as a
trade result. They are data-integrity failures: the trade is recorded
as failed and never repeated blindly.
"""

from typing import Any, Dict, Optional


class DataQualityError(Exception):
    """Base class for data quality issues that can be handled gracefully."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = False


class MalformedSettlement(DataQualityError):
    """Settlement payload is missing required fields or has unusable values."""

    def __init__(self, message: str, missing_fields: Optional[list] = None,
                 raw_data: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.missing_fields = missing_fields or []
        self.raw_data = raw_data
