"""Session domain events."""
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class SessionBooked:
    """Fired after a session is committed, paid or deferred."""

    session_id: str
    user_id: str
    therapist_id: str
    start_time: datetime
    end_time: datetime
    status: str
    credit_used_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionCancelled:
    """Fired after a session is cancelled."""

    session_id: str
    cancelled_by: str
    cancelled_at: datetime
    credit_released: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionCompleted:
    """Fired after a session is marked complete."""

    session_id: str
    completed_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionNoShow:
    session_id: str
    marked_at: datetime
    credit_refunded: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
