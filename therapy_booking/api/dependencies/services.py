# therapy_booking/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from functools import lru_cache
import logging
from typing import Union

from fastapi import Depends
from sqlalchemy.orm import Session

from ...core.config import settings
from ...events.publisher import EventPublisher
from ...integrations import (
    FakeVideoRoomClient,
    HttpVideoRoomClient,
    InMemoryNotificationClient,
    NotificationClient,
    WebhookNotificationClient,
)
from ...services.availability_cache import AvailabilityCache
from ...services.availability_service import AvailabilityService
from ...services.booking_service import BookingService
from ...services.cache_service import CacheService
from ...services.credit_service import CreditService
from ...services.session_lifecycle import SessionLifecycleService
from .database import get_db

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_cache_service_singleton() -> CacheService:
    """Get singleton cache service instance."""
    return CacheService(redis_url=settings.redis_url)


def get_cache_service_dep() -> CacheService:
    """Get cache service instance for dependency injection."""
    return get_cache_service_singleton()


def get_availability_cache(
    cache: CacheService = Depends(get_cache_service_dep),
) -> AvailabilityCache:
    return AvailabilityCache(cache, tier=settings.availability_cache_tier)


@lru_cache(maxsize=1)
def get_video_provider() -> Union[HttpVideoRoomClient, FakeVideoRoomClient]:
    """Real provider when configured, in-memory fake otherwise."""
    if settings.video_api_base_url and settings.video_api_key:
        return HttpVideoRoomClient(
            base_url=settings.video_api_base_url, api_key=settings.video_api_key
        )
    logger.info("Video provider not configured; using in-memory rooms")
    return FakeVideoRoomClient()


@lru_cache(maxsize=1)
def get_notification_client() -> NotificationClient:
    if settings.notification_webhook_url:
        return WebhookNotificationClient(url=settings.notification_webhook_url)
    logger.info("Notification webhook not configured; keeping events in memory")
    return InMemoryNotificationClient()


def get_event_publisher() -> EventPublisher:
    return EventPublisher(get_notification_client())


def get_availability_service(
    db: Session = Depends(get_db),
    availability_cache: AvailabilityCache = Depends(get_availability_cache),
) -> AvailabilityService:
    """Get AvailabilityService instance with cache and conflict checker."""
    return AvailabilityService(db, availability_cache=availability_cache)


def get_credit_service(db: Session = Depends(get_db)) -> CreditService:
    return CreditService(db)


def get_lifecycle_service(
    db: Session = Depends(get_db),
    availability_cache: AvailabilityCache = Depends(get_availability_cache),
    event_publisher: EventPublisher = Depends(get_event_publisher),
) -> SessionLifecycleService:
    return SessionLifecycleService(
        db,
        availability_cache=availability_cache,
        event_publisher=event_publisher,
        video_provider=get_video_provider(),
    )


def get_booking_service(
    db: Session = Depends(get_db),
    availability_cache: AvailabilityCache = Depends(get_availability_cache),
    event_publisher: EventPublisher = Depends(get_event_publisher),
) -> BookingService:
    """
    Get booking service instance.

    Args:
        db: Database session
        availability_cache: Cache invalidated after every committed write
        event_publisher: Post-commit notification hand-off

    Returns:
        BookingService instance
    """
    return BookingService(
        db,
        availability_cache=availability_cache,
        event_publisher=event_publisher,
        video_provider=get_video_provider(),
    )
