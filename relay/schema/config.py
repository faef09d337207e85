"""Pydantic models for the runtime configuration API."""

from __future__ import annotations

from pydantic import Field

from relay.schema.subscription import CamelModel


class CacheConfiguration(CamelModel):
    enabled: bool
    heap_size: int
    ttl_minutes: int


class RateLimitConfiguration(CamelModel):
    enabled: bool
    default_limit: int
    api_limit: int
    pubsub_limit: int
    window_size: int


class ServiceConfiguration(CamelModel):
    """Combined cache and rate-limit configuration document."""

    cache: CacheConfiguration
    rate_limit: RateLimitConfiguration


class ConfigUpdateRequest(CamelModel):
    """Inbound configuration update.

    Without explicit overrides the API limit is half and the PubSub limit
    twice `rateLimitPerMinute`, over a 60 second window.
    """

    cache_enabled: bool
    cache_heap_size: int = Field(gt=0)
    cache_ttl_seconds: int = Field(ge=60)
    rate_limit_enabled: bool
    rate_limit_per_minute: int = Field(gt=0)
    api_limit: int | None = Field(default=None, gt=0)
    pubsub_limit: int | None = Field(default=None, gt=0)
    window_size: int | None = Field(default=None, gt=0)
