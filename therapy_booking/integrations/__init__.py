"""External collaborators reached after a session write commits."""

from .notifications import (
    InMemoryNotificationClient,
    NotificationClient,
    NotificationError,
    WebhookNotificationClient,
)
from .video import FakeVideoRoomClient, HttpVideoRoomClient, VideoRoomError, VideoRoomProvider

__all__ = [
    "FakeVideoRoomClient",
    "HttpVideoRoomClient",
    "InMemoryNotificationClient",
    "NotificationClient",
    "NotificationError",
    "VideoRoomError",
    "VideoRoomProvider",
    "WebhookNotificationClient",
]
