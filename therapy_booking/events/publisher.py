"""Event publisher - hands domain events to the notification client."""
from datetime import datetime
import logging
from typing import Any, Dict, Protocol

from ..integrations.notifications import NotificationClient, NotificationError

logger = logging.getLogger(__name__)


class Event(Protocol):
    """Protocol for event types."""

    def to_dict(self) -> Dict[str, Any]:
        ...


class EventPublisher:
    """
    Publishes domain events after commit.

    Fire-and-forget: a delivery failure is logged and never reaches the
    caller, whose transaction has already committed.
    """

    def __init__(self, client: NotificationClient):
        self.client = client

    def publish(self, event: Event) -> bool:
        event_type = type(event).__name__
        payload = event.to_dict()

        # Convert datetime objects to ISO strings for JSON serialization
        for key, value in payload.items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat()

        try:
            self.client.send(event_type, payload)
        except NotificationError as exc:
            logger.error(
                "Failed to publish %s: %s",
                event_type,
                exc,
                extra={"event": "notification_failed", "event_type": event_type},
            )
            return False
        logger.debug("Published %s", event_type)
        return True
