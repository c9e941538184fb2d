# therapy_booking/services/cache_service.py
"""
Cache Service

Key/value cache with JSON serialization, TTL tiers, and a circuit breaker
around Redis. Without a Redis URL (local runs, tests) it uses a
process-local in-memory store with the same semantics.

Cache failures never fail a request: reads degrade to misses and writes to
no-ops, with the error logged.
"""

from datetime import date, datetime, time
from enum import Enum
import fnmatch
import json
import logging
import threading
from time import monotonic
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar, Union

import redis
from redis import Redis
from redis.exceptions import RedisError

from ..core.config import settings
from .base import BaseService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"  # one trial call allowed after the cool-down


class CircuitBreaker:
    """Stops calling Redis after repeated failures, retries after a cool-down."""

    def __init__(self, threshold: int = 5, cooldown_seconds: float = 60.0) -> None:
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._state = CircuitState.CLOSED
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            if (
                self._state is CircuitState.OPEN
                and self._opened_at is not None
                and monotonic() - self._opened_at >= self.cooldown_seconds
            ):
                self._state = CircuitState.HALF_OPEN
            return self._state

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> Optional[T]:
        """
        Execute ``func`` under circuit protection.

        Returns None while the circuit is open. Failures below the threshold
        propagate to the caller.
        """
        if self.state is CircuitState.OPEN:
            logger.debug("Redis circuit open; skipping %s", getattr(func, "__name__", "call"))
            return None

        try:
            result = func(*args, **kwargs)
        except RedisError:
            if self._trip():
                return None
            raise
        self._reset()
        return result

    def _reset(self) -> None:
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                logger.info("Redis reachable again; circuit closed")
            self._failures = 0
            self._opened_at = None
            self._state = CircuitState.CLOSED

    def _trip(self) -> bool:
        """Count a failure; True once the circuit is open."""
        with self._lock:
            self._failures += 1
            if self._failures >= self.threshold or self._state is CircuitState.HALF_OPEN:
                if self._state is not CircuitState.OPEN:
                    logger.warning("Redis circuit opened after %d failures", self._failures)
                self._state = CircuitState.OPEN
                self._opened_at = monotonic()
                return True
            return False


class CacheKeyBuilder:
    """Colon-joined keys with short prefixes for the known namespaces."""

    PREFIXES = {
        "availability": "avail",
        "availability_generation": "avail-gen",
        "session": "sess",
        "therapist": "ther",
        "credit": "cred",
    }

    @staticmethod
    def build(*parts: Union[str, int, date, datetime, time]) -> str:
        """
        e.g. build('availability', 'windows', 'T1', date(2030, 1, 7)) -> 'avail:windows:T1:2030-01-07'
        """
        formatted = [
            part.isoformat() if isinstance(part, (date, datetime, time)) else str(part)
            for part in parts
        ]
        if formatted and formatted[0] in CacheKeyBuilder.PREFIXES:
            formatted[0] = CacheKeyBuilder.PREFIXES[formatted[0]]
        return ":".join(formatted)


class CacheService:
    """
    Shared cache for computed availability.

    Values must be JSON-serializable; they come back as plain JSON types.
    """

    # Seconds. Availability is dropped on every schedule or booking write,
    # so the TTL only bounds staleness from writers that bypass the hook.
    TTL_TIERS = {
        "hot": 120,
        "warm": 900,
    }

    def __init__(self, redis_client: Optional[Redis] = None, *, redis_url: Optional[str] = None):
        self.circuit_breaker = CircuitBreaker()
        self._memory: Dict[str, Tuple[str, float]] = {}
        self._memory_lock = threading.Lock()
        self._stats: Dict[str, int] = dict.fromkeys(("hits", "misses", "sets", "deletes", "errors"), 0)

        self.redis: Optional[Redis] = redis_client
        if self.redis is None:
            self.redis = self._connect(redis_url if redis_url is not None else settings.redis_url)

    @staticmethod
    def _connect(redis_url: Optional[str]) -> Optional[Redis]:
        """Connect to Redis when configured, otherwise stay in-memory."""
        if not redis_url:
            logger.debug("No Redis URL configured; availability cache is in-memory")
            return None
        try:
            client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            client.ping()
        except (RedisError, ConnectionError) as e:
            logger.warning("Redis at %s unavailable (%s); using in-memory cache", redis_url, e)
            return None
        logger.info("Availability cache backed by Redis")
        return client

    @property
    def is_redis(self) -> bool:
        return self.redis is not None

    def _record_error(self, operation: str, target: str, error: Exception) -> None:
        self._stats["errors"] += 1
        logger.error("Cache %s failed for %s: %s", operation, target, error)

    @BaseService.measure_operation("cache_get")
    def get(self, key: str) -> Optional[Any]:
        redis_client = self.redis
        try:
            if redis_client is not None:
                raw = self.circuit_breaker.call(redis_client.get, key)
            else:
                raw = self._memory_get(key)
        except RedisError as e:
            self._record_error("get", key, e)
            return None

        self._stats["misses" if raw is None else "hits"] += 1
        return None if raw is None else json.loads(raw)

    @BaseService.measure_operation("cache_set")
    def set(self, key: str, value: Any, ttl: Optional[int] = None, tier: str = "warm") -> bool:
        if ttl is None:
            ttl = self.TTL_TIERS.get(tier, self.TTL_TIERS["warm"])
        payload = json.dumps(value, default=str)

        redis_client = self.redis
        try:
            if redis_client is not None:
                stored = bool(self.circuit_breaker.call(redis_client.setex, key, ttl, payload))
            else:
                with self._memory_lock:
                    self._memory[key] = (payload, monotonic() + ttl)
                stored = True
        except RedisError as e:
            self._record_error("set", key, e)
            return False

        if stored:
            self._stats["sets"] += 1
        return stored

    @BaseService.measure_operation("cache_delete")
    def delete(self, key: str) -> bool:
        redis_client = self.redis
        try:
            if redis_client is not None:
                removed = bool(self.circuit_breaker.call(redis_client.delete, key))
            else:
                with self._memory_lock:
                    removed = self._memory.pop(key, None) is not None
        except RedisError as e:
            self._record_error("delete", key, e)
            return False

        if removed:
            self._stats["deletes"] += 1
        return removed

    @BaseService.measure_operation("cache_delete_pattern")
    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern; SCAN on Redis."""
        redis_client = self.redis
        removed = 0
        try:
            if redis_client is not None:
                for key in redis_client.scan_iter(match=pattern):
                    removed += int(bool(redis_client.delete(key)))
            else:
                with self._memory_lock:
                    for key in [k for k in self._memory if fnmatch.fnmatch(k, pattern)]:
                        del self._memory[key]
                        removed += 1
        except RedisError as e:
            self._record_error("delete_pattern", pattern, e)

        self._stats["deletes"] += removed
        logger.debug("Dropped %d cache keys for %s", removed, pattern)
        return removed

    @BaseService.measure_operation("cache_incr")
    def incr(self, key: str) -> Optional[int]:
        """
        Atomically add one to a counter that never expires.

        Returns the new value, or None when the backend could not be reached.
        """
        redis_client = self.redis
        try:
            if redis_client is not None:
                value = self.circuit_breaker.call(redis_client.incr, key)
                return None if value is None else int(value)
            with self._memory_lock:
                entry = self._memory.get(key)
                value = (int(entry[0]) if entry is not None else 0) + 1
                self._memory[key] = (str(value), float("inf"))
                return value
        except RedisError as e:
            self._record_error("incr", key, e)
            return None

    def _memory_get(self, key: str) -> Optional[str]:
        with self._memory_lock:
            entry = self._memory.get(key)
            if entry is None:
                return None
            payload, expires_at = entry
            if monotonic() >= expires_at:
                del self._memory[key]
                return None
            return payload

    def get_stats(self) -> Dict[str, Any]:
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "hit_rate": round(self._stats["hits"] / lookups, 4) if lookups else 0.0,
            "backend": "redis" if self.is_redis else "memory",
            "circuit_breaker": self.circuit_breaker.state.value,
        }
