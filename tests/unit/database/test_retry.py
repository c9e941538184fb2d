from unittest.mock import Mock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from therapy_booking.core.exceptions import RepositoryException, TransientStorageException
from therapy_booking.database import is_transient_db_error, with_db_retry


class _PgError(Exception):
    def __init__(self, pgcode: str):
        super().__init__(f"pg error {pgcode}")
        self.pgcode = pgcode


def _operational(orig: Exception) -> OperationalError:
    return OperationalError("SELECT 1", {}, orig)


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("therapy_booking.database.time.sleep") as sleep:
        yield sleep


class TestIsTransient:
    @pytest.mark.parametrize("pgcode", ["40001", "40P01", "55P03"])
    def test_retryable_sqlstates(self, pgcode):
        assert is_transient_db_error(_operational(_PgError(pgcode)))

    def test_sqlite_busy(self):
        assert is_transient_db_error(_operational(Exception("database is locked")))

    def test_stale_version(self):
        assert is_transient_db_error(StaleDataError("row changed"))

    def test_repository_exception_inherits_cause(self):
        wrapped = RepositoryException("lock failed")
        wrapped.__cause__ = _operational(_PgError("55P03"))
        assert is_transient_db_error(wrapped)

    def test_repository_exception_without_cause(self):
        assert not is_transient_db_error(RepositoryException("boom"))

    def test_integrity_error_is_not_transient(self):
        exc = IntegrityError("INSERT", {}, Exception("sessions_no_overlap_per_therapist"))
        assert not is_transient_db_error(exc)

    def test_other_exceptions(self):
        assert not is_transient_db_error(ValueError("nope"))


class TestWithDbRetry:
    def test_returns_first_success(self):
        func = Mock(return_value="ok")

        assert with_db_retry("op", func) == "ok"
        assert func.call_count == 1

    def test_retries_transient_then_succeeds(self, no_sleep):
        func = Mock(side_effect=[_operational(Exception("database is locked")), "ok"])

        assert with_db_retry("op", func, max_attempts=3) == "ok"
        assert func.call_count == 2
        assert no_sleep.call_count == 1

    def test_retries_stale_data(self):
        func = Mock(side_effect=[StaleDataError("changed"), "ok"])

        assert with_db_retry("op", func) == "ok"

    def test_surfaces_transient_after_max_attempts(self):
        error = _operational(_PgError("40001"))
        func = Mock(side_effect=error)

        with pytest.raises(TransientStorageException) as exc_info:
            with_db_retry("book_session", func, max_attempts=3)

        assert func.call_count == 3
        assert exc_info.value.details == {"operation": "book_session", "attempts": 3}
        assert exc_info.value.__cause__ is error

    def test_non_transient_is_raised_immediately(self):
        error = _operational(Exception("syntax error"))
        func = Mock(side_effect=error)

        with pytest.raises(OperationalError):
            with_db_retry("op", func, max_attempts=3)
        assert func.call_count == 1

    def test_domain_errors_are_not_retried(self):
        func = Mock(side_effect=ValueError("bad input"))

        with pytest.raises(ValueError):
            with_db_retry("op", func)
        assert func.call_count == 1
