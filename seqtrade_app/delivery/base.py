"""Base classes for session event delivery mechanisms."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import structlog

from ..errors import DeliveryError


class DeliveryStatus(Enum):
    """Event delivery status."""
    SUCCESS = "success"
    FAILED = "failed"
    DEAD_LETTER = "dead_letter"


@dataclass
class DeliveryResult:
    """Result of one event delivery attempt."""
    status: DeliveryStatus
    message: Optional[str] = None
    attempt_count: int = 1
    error: Optional[Exception] = None


class BaseEventDelivery(ABC):
    """
    Base class for session event delivery mechanisms.

    Sinks receive plain event dictionaries with ``kind``,
    ``session_key``, ``message``, ``payload`` and ``timestamp`` keys and
    hand them to the chat front end or another observer. A sink never
    raises for a failed event; it reports the failure in its result.
    """

    def __init__(self, name: str, config: Any):
        self.name = name
        self.config = config
        self.logger = structlog.get_logger(f"event.delivery.{name}")
        self._delivery_count = 0
        self._error_count = 0

    @abstractmethod
    def deliver(self, events: list[dict[str, Any]]) -> list[DeliveryResult]:
        """
        Deliver events to the configured destination.

        Args:
            events: List of event dictionaries

        Returns:
            List of delivery results for each event
        """
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """Check if delivery mechanism is healthy."""
        pass

    def deliver_with_retry(
        self,
        events: list[dict[str, Any]],
        max_retries: int = 2
    ) -> list[DeliveryResult]:
        """
        Deliver events, repeating failed ones immediately.

        A ``DeliveryError`` result means the receiver rejected the event
        and is not repeated. Any other exception raised by ``deliver`` is
        reported as a failed attempt. Events still failing after ``max_retries``
        extra attempts are reported as dead letters.

        Args:
            events: List of event dictionaries
            max_retries: Maximum number of retry attempts per event

        Returns:
            List of delivery results for each event
        """
        results = []

        for event in events:
            attempt = 0
            last_result: Optional[DeliveryResult] = None

            while attempt <= max_retries:
                try:
                    delivered = self.deliver([event])
                except DeliveryError as e:
                    # Permanent, not repeated
                    delivered = [self._record(DeliveryResult(
                        status=DeliveryStatus.FAILED,
                        message=f"Permanent error: {e}",
                        error=e
                    ))]
                except Exception as e:
                    # Unknown error - treat as retryable
                    delivered = [self._record(DeliveryResult(
                        status=DeliveryStatus.FAILED,
                        message=f"{type(e).__name__}: {e}",
                        error=e
                    ))]

                if not delivered:
                    # Sink filtered the event out
                    last_result = None
                    break

                last_result = delivered[0]
                last_result.attempt_count = attempt + 1
                if last_result.status == DeliveryStatus.SUCCESS:
                    break
                if isinstance(last_result.error, DeliveryError):
                    break

                attempt += 1
                if attempt <= max_retries:
                    self.logger.warning(
                        "Event delivery failed, retrying",
                        delivery_name=self.name,
                        attempt=attempt,
                        error=last_result.message
                    )
                else:
                    last_result = DeliveryResult(
                        status=DeliveryStatus.DEAD_LETTER,
                        message=f"Max retries exceeded: {last_result.message}",
                        attempt_count=attempt,
                        error=last_result.error
                    )

            if last_result is not None:
                results.append(last_result)

        return results

    def _record(self, result: DeliveryResult) -> DeliveryResult:
        if result.status == DeliveryStatus.SUCCESS:
            self._delivery_count += 1
        else:
            self._error_count += 1
        return result

    def get_stats(self) -> dict[str, Any]:
        """Get delivery statistics."""
        return {
            "name": self.name,
            "delivery_count": self._delivery_count,
            "error_count": self._error_count,
            "success_rate": (
                self._delivery_count / (self._delivery_count + self._error_count)
                if (self._delivery_count + self._error_count) > 0 else 0.0
            )
        }

    def reset_stats(self):
        """Reset delivery statistics."""
        self._delivery_count = 0
        self._error_count = 0
