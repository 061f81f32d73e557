"""Standard output session event delivery mechanism."""

import json
import sys
from datetime import datetime, timezone
from typing import Any

from ..config.event_delivery import StdoutDeliveryConfig
from .base import BaseEventDelivery, DeliveryResult, DeliveryStatus


class StdoutEventDelivery(BaseEventDelivery):
    """Standard output event delivery implementation."""

    def __init__(self, name: str = "stdout", config: StdoutDeliveryConfig = StdoutDeliveryConfig()):
        super().__init__(name, config)
        self.config: StdoutDeliveryConfig = config

    def deliver(self, events: list[dict[str, Any]]) -> list[DeliveryResult]:
        """Deliver events to stdout."""
        results = []

        for event in events:
            try:
                print(self._format_event(event), file=sys.stdout, flush=True)
                results.append(self._record(DeliveryResult(
                    status=DeliveryStatus.SUCCESS,
                    message="Printed to stdout"
                )))

            except (OSError, TypeError, ValueError) as e:
                self.logger.error(
                    "Failed to print event to stdout",
                    delivery_name=self.name,
                    kind=event.get("kind"),
                    error=str(e)
                )
                results.append(self._record(DeliveryResult(
                    status=DeliveryStatus.FAILED,
                    message=f"Stdout error: {str(e)}",
                    error=e
                )))

        return results

    def _format_event(self, event: dict[str, Any]) -> str:
        """Format an event for stdout output."""
        if self.config.format == "pretty":
            output = f"[{event['session_key']}] {event['kind'].upper()}: {event['message']}"
            if self.config.include_timestamp:
                output = f"[{datetime.now(timezone.utc).isoformat()}] {output}"
            return output

        if self.config.include_timestamp:
            event_copy = event.copy()
            event_copy["stdout_timestamp"] = datetime.now(timezone.utc).isoformat()
            return json.dumps(event_copy, default=str)
        return json.dumps(event, default=str)

    def health_check(self) -> bool:
        """Check if stdout is available."""
        try:
            return sys.stdout.writable()
        except (OSError, ValueError):
            return False
