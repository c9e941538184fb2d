# therapy_booking/api/dependencies/database.py
"""
Request-scoped database session.

Routes depend on this function rather than ``therapy_booking.database.get_db``
so tests can swap the session through ``app.dependency_overrides``.
"""

from typing import Iterator

from sqlalchemy.orm import Session

from ... import database


def get_db() -> Iterator[Session]:
    yield from database.get_db()
