"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from therapy_booking.core.config import settings
from therapy_booking.core.exceptions import RepositoryException, TransientStorageException
from therapy_booking.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    """Engine options per backend."""
    if db_url.startswith("sqlite"):
        # Writers wait on SQLite's lock instead of failing immediately.
        return {
            "connect_args": {"check_same_thread": False, "timeout": 30},
            "future": True,
        }

    return {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_timeout": 2,
        "pool_recycle": 300,
        "pool_pre_ping": True,
        "pool_use_lifo": True,
        "connect_args": {"connect_timeout": 5, "application_name": "therapy_booking"},
        "future": True,
    }


def build_engine(db_url: str, *, echo: bool = False, **overrides: Any) -> Engine:
    """Create an engine and attach per-dialect connection hooks."""
    kwargs = _build_engine_kwargs(db_url)
    kwargs.update(overrides)
    new_engine = create_engine(db_url, echo=echo, **kwargs)
    if new_engine.dialect.name == "sqlite":
        event.listen(new_engine, "connect", _enable_sqlite_foreign_keys)
    return new_engine


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    logger.debug("SQLite connection established")


engine: Engine = build_engine(settings.database_url, echo=settings.database_echo)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


T = TypeVar("T")

# SQLSTATE codes that mean "try again": serialization failure, deadlock, lock timeout.
_RETRYABLE_PGCODES = {"40001", "40P01", "55P03"}
_RETRYABLE_ERROR_SNIPPETS = (
    "server closed the connection",
    "ssl connection has been closed unexpectedly",
    "could not serialize access",
    "canceling statement due to lock timeout",
    "lock timeout",
    "database is locked",
)


def is_transient_db_error(exc: BaseException) -> bool:
    """Return True when a DB error is contention or a dropped connection."""
    if isinstance(exc, TransientStorageException):
        return True
    if isinstance(exc, StaleDataError):
        # Row changed under us (optimistic version check); re-running reads fresh state
        return True
    if isinstance(exc, RepositoryException) and exc.__cause__ is not None:
        return is_transient_db_error(exc.__cause__)
    if not isinstance(exc, (OperationalError, DBAPIError)):
        return False
    if getattr(exc, "connection_invalidated", False):
        return True
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode in _RETRYABLE_PGCODES:
        return True
    message = str(exc).lower()
    return any(snippet in message for snippet in _RETRYABLE_ERROR_SNIPPETS)


def _retry_delay(attempt: int) -> float:
    base = 0.05 * (2 ** (attempt - 1))
    return base + random.uniform(0, 0.05 * attempt)


def with_db_retry(op_name: str, func: Callable[[], T], *, max_attempts: int = 3) -> T:
    """
    Execute a DB unit of work, retrying transient failures with backoff.

    ``func`` must be a complete transaction (it commits or rolls back on its
    own), so re-running it is safe. After ``max_attempts`` the failure is
    surfaced as TransientStorageException.
    """

    attempt = 1
    while True:
        try:
            return func()
        except (
            TransientStorageException,
            RepositoryException,
            StaleDataError,
            OperationalError,
            DBAPIError,
        ) as exc:
            if not is_transient_db_error(exc):
                raise
            if attempt >= max_attempts:
                logger.error(
                    "Transient DB failure persisted, giving up",
                    extra={"event": "db_retry_exhausted", "op": op_name, "attempts": attempt},
                )
                if isinstance(exc, TransientStorageException):
                    raise
                raise TransientStorageException(
                    details={"operation": op_name, "attempts": attempt}
                ) from exc

            delay = _retry_delay(attempt)
            logger.warning(
                "Transient DB failure detected, retrying",
                extra={
                    "event": "db_retry",
                    "op": op_name,
                    "attempt": attempt,
                    "delay": delay,
                    "error": str(exc),
                },
            )
            prometheus_metrics.inc_db_retry(op_name)
            time.sleep(delay)
            attempt += 1


__all__ = [
    "Base",
    "SessionLocal",
    "build_engine",
    "engine",
    "get_db",
    "is_transient_db_error",
    "with_db_retry",
]
