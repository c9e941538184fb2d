"""Video room provider integration.

The booking coordinator provisions a room after a session commits. The
provider is reached through ``VideoRoomProvider``; ``HttpVideoRoomClient``
talks to a REST provider and ``FakeVideoRoomClient`` keeps calls in memory
for tests and local runs.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
import uuid

import httpx

logger = logging.getLogger(__name__)


class VideoRoomError(RuntimeError):
    """Raised when the video provider responds with an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class VideoRoomProvider(Protocol):
    def create_room(self, *, session_id: str, participants: list[str]) -> dict[str, Any]:
        ...

    def disable_room(self, room_id: str) -> dict[str, Any]:
        ...


class HttpVideoRoomClient:
    """HTTP client for a REST video-room provider."""

    def __init__(self, *, base_url: str, api_key: str, timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = httpx.request(
                method,
                url,
                json=json,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise VideoRoomError(f"Video provider request failed: {exc}") from exc

        if response.status_code >= 400:
            raise VideoRoomError(
                f"Video provider returned {response.status_code}", status_code=response.status_code
            )
        payload: dict[str, Any] = response.json()
        return payload

    def create_room(self, *, session_id: str, participants: list[str]) -> dict[str, Any]:
        return self._request(
            "POST",
            "/rooms",
            json={"name": f"session-{session_id}", "description": ", ".join(participants)},
        )

    def disable_room(self, room_id: str) -> dict[str, Any]:
        return self._request("POST", f"/rooms/{room_id}", json={"enabled": False})


class FakeVideoRoomClient:
    """In-memory stub for testing/non-production environments."""

    def __init__(self) -> None:
        self._calls: list[dict[str, Any]] = []
        self._errors: dict[str, VideoRoomError] = {}

    def set_error(self, method: str, error: VideoRoomError) -> None:
        """Inject a method-specific error for deterministic failure testing."""
        self._errors[method] = error

    def _raise_if_injected(self, method: str) -> None:
        error = self._errors.get(method)
        if error is not None:
            raise error

    def create_room(self, *, session_id: str, participants: list[str]) -> dict[str, Any]:
        self._calls.append(
            {"method": "create_room", "session_id": session_id, "participants": participants}
        )
        self._raise_if_injected("create_room")
        return {"id": f"fake_room_{uuid.uuid4().hex[:12]}", "name": f"session-{session_id}"}

    def disable_room(self, room_id: str) -> dict[str, Any]:
        self._calls.append({"method": "disable_room", "room_id": room_id})
        self._raise_if_injected("disable_room")
        return {"id": room_id, "enabled": False}
