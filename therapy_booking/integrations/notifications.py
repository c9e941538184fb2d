"""Notification delivery integration.

Delivery internals live outside this service; the engine only hands over
an event name and a JSON payload.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class NotificationError(RuntimeError):
    """Raised when a notification could not be handed to the delivery service."""


class NotificationClient(Protocol):
    def send(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


class WebhookNotificationClient:
    """POSTs each event as JSON to the notification service."""

    def __init__(self, *, url: str, timeout: float = 5.0) -> None:
        self._url = url
        self._timeout = timeout

    def send(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            response = httpx.post(
                self._url, json={"type": event_type, "payload": payload}, timeout=self._timeout
            )
        except httpx.HTTPError as exc:
            raise NotificationError(f"Notification delivery failed: {exc}") from exc
        if response.status_code >= 400:
            raise NotificationError(f"Notification service returned {response.status_code}")


class InMemoryNotificationClient:
    """Collects events in memory for tests and local runs."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self._error: NotificationError | None = None

    def set_error(self, error: NotificationError | None) -> None:
        self._error = error

    def send(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._error is not None:
            raise self._error
        self.sent.append({"type": event_type, "payload": payload})
        logger.debug("Queued %s notification in memory", event_type)

    def types(self) -> list[str]:
        return [item["type"] for item in self.sent]
