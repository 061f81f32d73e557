"""In-process session event delivery to the chat front end."""

from typing import Any, Callable, Optional

from ..errors import DeliveryError
from .base import BaseEventDelivery, DeliveryResult, DeliveryStatus

EventCallback = Callable[[dict[str, Any]], None]


class CallbackEventDelivery(BaseEventDelivery):
    """
    Hands each event to a callable supplied by the chat front end.

    Args:
        callback: Called once per event with the event dictionary
        kinds: Optional event kinds to forward; all kinds when omitted
    """

    def __init__(self, callback: EventCallback, name: str = "callback",
                 kinds: Optional[set[str]] = None):
        super().__init__(name, {"kinds": sorted(kinds) if kinds else None})
        self.callback = callback
        self.kinds = kinds

    def deliver(self, events: list[dict[str, Any]]) -> list[DeliveryResult]:
        results = []

        for event in events:
            if self.kinds is not None and event.get("kind") not in self.kinds:
                continue
            try:
                self.callback(event)
                results.append(self._record(DeliveryResult(status=DeliveryStatus.SUCCESS)))
            except DeliveryError as e:
                self.logger.error(
                    "Front end rejected event",
                    delivery_name=self.name,
                    kind=event.get("kind"),
                    error=str(e)
                )
                results.append(self._record(DeliveryResult(
                    status=DeliveryStatus.FAILED,
                    message=str(e),
                    error=e
                )))
            except Exception as e:
                # Unknown front end error, retryable
                self.logger.warning(
                    "Front end callback failed",
                    delivery_name=self.name,
                    kind=event.get("kind"),
                    error=str(e),
                    error_type=type(e).__name__
                )
                results.append(self._record(DeliveryResult(
                    status=DeliveryStatus.FAILED,
                    message=f"{type(e).__name__}: {e}",
                    error=e
                )))

        return results

    def health_check(self) -> bool:
        return callable(self.callback)


class CompositeEventDelivery(BaseEventDelivery):
    """Fans events out to several sinks."""

    def __init__(self, sinks: list[BaseEventDelivery], name: str = "composite"):
        super().__init__(name, {"sinks": [sink.name for sink in sinks]})
        self.sinks = list(sinks)

    def deliver(self, events: list[dict[str, Any]]) -> list[DeliveryResult]:
        results = []
        for sink in self.sinks:
            results.extend(self._record(result) for result in sink.deliver(events))
        return results

    def health_check(self) -> bool:
        return all(sink.health_check() for sink in self.sinks)
