"""In-memory cache behaviour and the availability cache facade."""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from redis.exceptions import RedisError

from therapy_booking.schemas.availability import AvailabilityWindow
from therapy_booking.services.availability_cache import AvailabilityCache
from therapy_booking.services.cache_service import CacheKeyBuilder, CacheService, CircuitState

DAY = date(2030, 1, 7)


def _window(hour: int) -> AvailabilityWindow:
    start = datetime(2030, 1, 7, hour, 0, tzinfo=timezone.utc)
    return AvailabilityWindow(start=start, end=start + timedelta(minutes=30), duration_minutes=30)


@pytest.fixture
def cache() -> CacheService:
    return CacheService(redis_url="")


class TestCacheService:
    def test_falls_back_to_memory_without_redis(self, cache):
        assert not cache.is_redis
        assert cache.get_stats()["backend"] == "memory"

    def test_set_get_delete(self, cache):
        assert cache.set("ther:1", {"name": "Ada"})
        assert cache.get("ther:1") == {"name": "Ada"}
        assert cache.delete("ther:1")
        assert cache.get("ther:1") is None

    def test_expired_entries_are_misses(self, cache):
        cache.set("k", 1, ttl=-1)

        assert cache.get("k") is None

    def test_delete_pattern(self, cache):
        cache.set("avail:windows:t1:2030-01-07", [])
        cache.set("avail:slots:t1:2030-01-07", [])
        cache.set("avail:windows:t2:2030-01-07", [])

        assert cache.delete_pattern("avail:*:t1:*") == 2
        assert cache.get("avail:windows:t2:2030-01-07") == []

    def test_incr_counts_from_zero(self, cache):
        assert cache.incr("avail-gen:t1") == 1
        assert cache.incr("avail-gen:t1") == 2
        assert cache.get("avail-gen:t1") == 2

    def test_redis_errors_degrade_to_miss(self):
        client = Mock()
        client.get.side_effect = RedisError("down")
        cache = CacheService(redis_client=client)

        assert cache.get("anything") is None
        assert cache.get_stats()["errors"] == 1

    def test_circuit_opens_after_repeated_failures(self):
        client = Mock()
        client.get.side_effect = RedisError("down")
        cache = CacheService(redis_client=client)

        for _ in range(5):
            cache.get("k")

        assert cache.circuit_breaker.state == CircuitState.OPEN

    def test_key_builder_prefixes(self):
        assert CacheKeyBuilder.build("availability", "windows", "t1", DAY) == "avail:windows:t1:2030-01-07"


class TestAvailabilityCache:
    def test_round_trips_windows(self, cache):
        facade = AvailabilityCache(cache, tier="hot")
        facade.set_windows("t1", DAY, [_window(9), _window(10)])

        cached = facade.get_windows("t1", DAY)

        assert [w.start for w in cached] == [_window(9).start, _window(10).start]

    def test_miss_returns_none(self, cache):
        assert AvailabilityCache(cache).get_slots("t1", DAY) is None

    def test_on_write_drops_only_affected_dates(self, cache):
        facade = AvailabilityCache(cache)
        other_day = DAY + timedelta(days=1)
        facade.set_windows("t1", DAY, [_window(9)])
        facade.set_slots("t1", DAY, [_window(9)])
        facade.set_windows("t1", other_day, [])

        removed = facade.on_write("t1", [DAY])

        assert removed == 2
        assert facade.get_windows("t1", DAY) is None
        assert facade.get_windows("t1", other_day) == []

    def test_invalidate_therapist(self, cache):
        facade = AvailabilityCache(cache)
        facade.set_windows("t1", DAY, [])
        facade.set_windows("t2", DAY, [])

        facade.invalidate_therapist("t1")

        assert facade.get_windows("t1", DAY) is None
        assert facade.get_windows("t2", DAY) == []

    def test_write_under_a_retired_token_is_never_read(self, cache):
        facade = AvailabilityCache(cache)
        token = facade.token("t1", DAY)

        facade.on_write("t1", [DAY])
        facade.set_slots("t1", DAY, [_window(10)], token)

        assert facade.get_slots("t1", DAY) is None

    def test_rule_change_retires_every_date_token(self, cache):
        facade = AvailabilityCache(cache)
        token = facade.token("t1", DAY)

        facade.invalidate_therapist("t1")
        facade.set_windows("t1", DAY, [_window(9)], token)

        assert facade.get_windows("t1", DAY) is None
        assert facade.token("t1", DAY) != token
