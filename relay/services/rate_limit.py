"""Per-client, per-path request admission control."""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Callable

from relay.services.cache import RATE_LIMITS_REGION, CacheService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitRecord:
    count: int
    window_start: int


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    enabled: bool = True
    default_limit: int = 60
    api_limit: int = 30
    pubsub_limit: int = 120
    window_size: int = 60


class RateLimiter(ABC):
    @abstractmethod
    def check_rate_limit(self, client_ip: str, path: str) -> bool:
        """Return True when the request is admitted."""

    @abstractmethod
    def get_configuration(self) -> dict[str, Any]: ...

    @abstractmethod
    def update_configuration(
        self,
        *,
        enabled: bool,
        default_limit: int,
        api_limit: int,
        pubsub_limit: int,
        window_size: int,
    ) -> dict[str, Any]: ...


class CacheRateLimiter(RateLimiter):
    """Fixed-window counter stored in the `rate_limits` cache region.

    The record is written back even for rejected requests, so the count keeps
    growing until the window resets.
    """

    def __init__(
        self,
        cache: CacheService,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self._config = config or RateLimitConfig()
        self._clock = clock
        self._lock = threading.Lock()

    def init(self) -> None:
        logger.info("Initializing rate limiter", extra=asdict(self._config))
        if not self._cache.is_available():
            logger.warning("Cache unavailable; rate limiting will admit every request")

    def limit_for(self, path: str) -> int:
        config = self._config
        if path.startswith("/api/"):
            return config.api_limit
        if path.startswith("/pubsub/"):
            return config.pubsub_limit
        return config.default_limit

    def check_rate_limit(self, client_ip: str, path: str) -> bool:
        config = self._config
        if not config.enabled:
            return True

        limit = self.limit_for(path)
        key = f"{client_ip}:{path}"
        now = int(self._clock())

        with self._lock:
            record = self._cache.get(RATE_LIMITS_REGION, key)
            if not isinstance(record, RateLimitRecord):
                record = RateLimitRecord(count=0, window_start=now)

            if now - record.window_start > config.window_size:
                self._cache.put(RATE_LIMITS_REGION, key, RateLimitRecord(count=1, window_start=now))
                return True

            record = RateLimitRecord(count=record.count + 1, window_start=record.window_start)
            self._cache.put(RATE_LIMITS_REGION, key, record)

        if record.count > limit:
            logger.warning(
                "Rate limit exceeded",
                extra={"client_ip": client_ip, "path": path, "count": record.count, "limit": limit},
            )
            return False
        return True

    def get_configuration(self) -> dict[str, Any]:
        return asdict(self._config)

    def update_configuration(
        self,
        *,
        enabled: bool,
        default_limit: int,
        api_limit: int,
        pubsub_limit: int,
        window_size: int,
    ) -> dict[str, Any]:
        config = RateLimitConfig(
            enabled=enabled,
            default_limit=default_limit,
            api_limit=api_limit,
            pubsub_limit=pubsub_limit,
            window_size=window_size,
        )
        logger.info("Updating rate limit configuration", extra=asdict(config))
        # Checks read one snapshot of the config.
        self._config = config
        return self.get_configuration()
