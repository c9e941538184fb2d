"""Domain events published after session writes commit."""

from .publisher import EventPublisher
from .session_events import SessionBooked, SessionCancelled, SessionCompleted, SessionNoShow

__all__ = [
    "EventPublisher",
    "SessionBooked",
    "SessionCancelled",
    "SessionCompleted",
    "SessionNoShow",
]
