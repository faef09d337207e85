"""Runtime configuration of the cache and the rate limiter."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from relay.core.dependencies import Services, get_services
from relay.schema.config import (
    CacheConfiguration,
    ConfigUpdateRequest,
    RateLimitConfiguration,
    ServiceConfiguration,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/config", tags=["config"])

DEFAULT_WINDOW_SECONDS = 60


def _current(services: Services) -> ServiceConfiguration:
    return ServiceConfiguration(
        cache=CacheConfiguration(**services.cache.get_configuration()),
        rate_limit=RateLimitConfiguration(**services.rate_limiter.get_configuration()),
    )


@router.get("", response_model=ServiceConfiguration)
async def get_configuration(services: Services = Depends(get_services)) -> ServiceConfiguration:
    return _current(services)


@router.put("", response_model=ServiceConfiguration)
async def update_configuration(
    payload: ConfigUpdateRequest,
    services: Services = Depends(get_services),
) -> ServiceConfiguration:
    """Apply a combined cache and rate-limit update, reinitializing both."""

    services.cache.update_configuration(
        enabled=payload.cache_enabled,
        heap_size=payload.cache_heap_size,
        ttl_minutes=payload.cache_ttl_seconds // 60,
    )
    per_minute = payload.rate_limit_per_minute
    services.rate_limiter.update_configuration(
        enabled=payload.rate_limit_enabled,
        default_limit=per_minute,
        api_limit=payload.api_limit or max(per_minute // 2, 1),
        pubsub_limit=payload.pubsub_limit or per_minute * 2,
        window_size=payload.window_size or DEFAULT_WINDOW_SECONDS,
    )
    logger.info("Service configuration updated")
    return _current(services)
