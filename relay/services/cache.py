"""In-process TTL cache with named regions."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_REGION = "subscriptions"
RATE_LIMITS_REGION = "rate_limits"
RATE_LIMITS_TTL_SECONDS = 120


class CacheService(ABC):
    """Best-effort key-value cache; no operation may raise to the caller."""

    @abstractmethod
    def get(self, region: str, key: str) -> Any | None: ...

    @abstractmethod
    def put(self, region: str, key: str, value: Any) -> None: ...

    @abstractmethod
    def remove(self, region: str, key: str) -> None: ...

    @abstractmethod
    def clear(self, region: str) -> None: ...

    @abstractmethod
    def is_available(self) -> bool: ...

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def get_configuration(self) -> dict[str, Any]: ...

    @abstractmethod
    def update_configuration(self, *, enabled: bool, heap_size: int, ttl_minutes: int) -> dict[str, Any]: ...


@dataclass(slots=True)
class _Region:
    max_entries: int
    ttl_seconds: float
    entries: OrderedDict[str, tuple[float, Any]]


class TTLCacheService(CacheService):
    """Cache regions bounded by entry count (LRU) with a per-region time-to-live.

    Reconfiguration rebuilds every region; callers see misses until the new
    regions are populated again.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        heap_size: int = 100,
        ttl_minutes: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._enabled = enabled
        self._heap_size = heap_size
        self._ttl_minutes = ttl_minutes
        self._clock = clock
        self._lock = threading.RLock()
        self._regions: dict[str, _Region] | None = None

    def init(self) -> None:
        with self._lock:
            self._regions = None
            if not self._enabled:
                logger.info("Cache is disabled, skipping initialization")
                return
            logger.info(
                "Initializing cache regions",
                extra={"heap_size": self._heap_size, "ttl_minutes": self._ttl_minutes},
            )
            self._regions = {
                SUBSCRIPTIONS_REGION: _Region(self._heap_size, self._ttl_minutes * 60, OrderedDict()),
                RATE_LIMITS_REGION: _Region(self._heap_size, RATE_LIMITS_TTL_SECONDS, OrderedDict()),
            }

    def get_configuration(self) -> dict[str, Any]:
        return {"enabled": self._enabled, "heap_size": self._heap_size, "ttl_minutes": self._ttl_minutes}

    def update_configuration(self, *, enabled: bool, heap_size: int, ttl_minutes: int) -> dict[str, Any]:
        logger.info(
            "Updating cache configuration",
            extra={"enabled": enabled, "heap_size": heap_size, "ttl_minutes": ttl_minutes},
        )
        with self._lock:
            self._enabled = enabled
            self._heap_size = heap_size
            self._ttl_minutes = ttl_minutes
            self.init()
        return self.get_configuration()

    def _region(self, name: str) -> _Region | None:
        if self._regions is None:
            return None
        return self._regions.get(name)

    def get(self, region: str, key: str) -> Any | None:
        try:
            with self._lock:
                bucket = self._region(region)
                if bucket is None:
                    return None
                item = bucket.entries.get(key)
                if item is None:
                    return None
                expires_at, value = item
                if expires_at <= self._clock():
                    del bucket.entries[key]
                    return None
                bucket.entries.move_to_end(key)
                return value
        except Exception:  # noqa: BLE001 - cache must never fail a request
            logger.exception("Error getting from cache", extra={"region": region, "key": key})
            return None

    def put(self, region: str, key: str, value: Any) -> None:
        try:
            with self._lock:
                bucket = self._region(region)
                if bucket is None:
                    return
                bucket.entries[key] = (self._clock() + bucket.ttl_seconds, value)
                bucket.entries.move_to_end(key)
                while len(bucket.entries) > bucket.max_entries:
                    bucket.entries.popitem(last=False)
        except Exception:  # noqa: BLE001
            logger.exception("Error putting in cache", extra={"region": region, "key": key})

    def remove(self, region: str, key: str) -> None:
        try:
            with self._lock:
                bucket = self._region(region)
                if bucket is not None:
                    bucket.entries.pop(key, None)
        except Exception:  # noqa: BLE001
            logger.exception("Error removing from cache", extra={"region": region, "key": key})

    def clear(self, region: str) -> None:
        try:
            with self._lock:
                bucket = self._region(region)
                if bucket is not None:
                    bucket.entries.clear()
        except Exception:  # noqa: BLE001
            logger.exception("Error clearing cache", extra={"region": region})

    def close(self) -> None:
        try:
            with self._lock:
                self._regions = None
            logger.info("Cache closed")
        except Exception:  # noqa: BLE001
            logger.exception("Error closing cache")

    def is_available(self) -> bool:
        try:
            with self._lock:
                if not self._enabled:
                    return True
                if self._regions is None:
                    logger.warning("Cache is not initialized, attempting to initialize")
                    self.init()
                return self._region(SUBSCRIPTIONS_REGION) is not None
        except Exception:  # noqa: BLE001
            logger.exception("Error checking cache availability")
            return False
