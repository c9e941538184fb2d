# tests/conftest.py
"""
Pytest configuration.

Every test gets a fresh in-memory SQLite database (StaticPool, so all
sessions share one connection) with the full schema, including the overlap
triggers. Time is pinned: services take an explicit ``now``.
"""

import os

# Set before any therapy_booking import so the module-level engine never
# points at a developer database.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, time, timedelta
from typing import Callable, Optional

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from therapy_booking import models  # noqa: F401
from therapy_booking.database import Base, build_engine
from therapy_booking.events.publisher import EventPublisher
from therapy_booking.integrations import FakeVideoRoomClient, InMemoryNotificationClient
from therapy_booking.models.availability import TherapistScheduleRule
from therapy_booking.models.credit import CreditGrant, CreditGrantStatus
from therapy_booking.models.session import SessionStatus, TherapySession
from therapy_booking.models.user import User, UserType
from therapy_booking.principal import RequestContext
from therapy_booking.services.availability_cache import AvailabilityCache
from therapy_booking.services.availability_service import AvailabilityService
from therapy_booking.services.booking_service import BookingService
from therapy_booking.services.cache_service import CacheService
from therapy_booking.services.credit_service import CreditService
from therapy_booking.services.session_lifecycle import SessionLifecycleService

from tests.utils.clock import NOW


@pytest.fixture
def engine():
    test_engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def _make_user(db: Session, email: str, first_name: str, last_name: str, **fields) -> User:
    user = User(email=email, first_name=first_name, last_name=last_name, **fields)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def therapist(db) -> User:
    return _make_user(
        db,
        "ada.therapist@example.com",
        "Ada",
        "Okafor",
        user_type=UserType.THERAPIST.value,
        is_verified=True,
        timezone="UTC",
    )


@pytest.fixture
def other_therapist(db) -> User:
    return _make_user(
        db,
        "femi.therapist@example.com",
        "Femi",
        "Adeyemi",
        user_type=UserType.THERAPIST.value,
        is_verified=True,
        timezone="UTC",
    )


@pytest.fixture
def patient(db) -> User:
    return _make_user(db, "chidi@example.com", "Chidi", "Eze", timezone="UTC")


@pytest.fixture
def second_patient(db) -> User:
    return _make_user(db, "ngozi@example.com", "Ngozi", "Bello", timezone="UTC")


@pytest.fixture
def weekday_rules(db, therapist) -> TherapistScheduleRule:
    """Monday 09:00-17:00 in 30-minute slots."""
    rule = TherapistScheduleRule(
        therapist_id=therapist.id,
        day_of_week=0,
        start_time=time(9, 0),
        end_time=time(17, 0),
        session_duration=30,
        session_type="video",
        max_sessions=1,
        is_active=True,
    )
    db.add(rule)
    db.commit()
    return rule


@pytest.fixture
def make_grant(db) -> Callable[..., CreditGrant]:
    counter = {"n": 0}

    def _make(
        user: User,
        credits: int = 1,
        *,
        is_free_credit: bool = False,
        expires_at: Optional[datetime] = None,
        status: str = CreditGrantStatus.ACTIVE.value,
    ) -> CreditGrant:
        counter["n"] += 1
        grant = CreditGrant(
            user_id=user.id,
            user_type=user.user_type,
            credits_purchased=credits,
            credits_balance=credits,
            is_free_credit=is_free_credit,
            expires_at=expires_at,
            status=status,
            # Strictly increasing so "oldest first" is deterministic
            created_at=NOW - timedelta(days=30) + timedelta(minutes=counter["n"]),
        )
        db.add(grant)
        db.commit()
        return grant

    return _make


@pytest.fixture
def cache_service() -> CacheService:
    return CacheService(redis_url="")


@pytest.fixture
def availability_cache(cache_service) -> AvailabilityCache:
    return AvailabilityCache(cache_service, tier="hot")


@pytest.fixture
def notifications() -> InMemoryNotificationClient:
    return InMemoryNotificationClient()


@pytest.fixture
def video() -> FakeVideoRoomClient:
    return FakeVideoRoomClient()


@pytest.fixture
def availability_service(db, availability_cache) -> AvailabilityService:
    return AvailabilityService(db, availability_cache=availability_cache)


@pytest.fixture
def credit_service(db) -> CreditService:
    return CreditService(db)


@pytest.fixture
def lifecycle(db, availability_cache, notifications, video) -> SessionLifecycleService:
    return SessionLifecycleService(
        db,
        availability_cache=availability_cache,
        event_publisher=EventPublisher(notifications),
        video_provider=video,
    )


@pytest.fixture
def booking_service(db, availability_cache, notifications, video) -> BookingService:
    return BookingService(
        db,
        availability_cache=availability_cache,
        event_publisher=EventPublisher(notifications),
        video_provider=video,
    )


@pytest.fixture
def patient_ctx(patient) -> RequestContext:
    return RequestContext(user_id=patient.id, user_type=patient.user_type)


@pytest.fixture
def therapist_ctx(therapist) -> RequestContext:
    return RequestContext(user_id=therapist.id, user_type=therapist.user_type)


@pytest.fixture
def make_session(db) -> Callable[..., TherapySession]:
    """Insert a session row directly, bypassing the booking checks."""

    def _make(
        therapist: User,
        patient: User,
        start: datetime,
        minutes: int = 30,
        *,
        status: str = SessionStatus.SCHEDULED.value,
        credit_used_id: Optional[str] = None,
    ) -> TherapySession:
        session = TherapySession(
            user_id=patient.id,
            therapist_id=therapist.id,
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            duration_minutes=minutes,
            session_type="video",
            status=status,
            credit_used_id=credit_used_id,
            created_by=patient.id,
        )
        db.add(session)
        db.commit()
        return session

    return _make
