"""Explicit construction of the process-wide services."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from relay.core.config import Settings
from relay.db.session import create_engine, create_session_factory
from relay.services.cache import CacheService, TTLCacheService
from relay.services.notification_consumer import BrokerNotificationConsumer, NotificationConsumer
from relay.services.notification_queue import (
    BrokerNotificationQueue,
    InMemoryBroker,
    MemoryBacklog,
    MessageBroker,
    NotificationQueue,
    RedisBroker,
)
from relay.services.pubsub_intake import PubSubIntakeHandler
from relay.services.rate_limit import CacheRateLimiter, RateLimitConfig, RateLimiter
from relay.services.subscription_store import SqlSubscriptionStore, SubscriptionStore
from relay.services.websub import HttpHubClient, HubClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Services:
    """Components shared by every request, built once at process start."""

    settings: Settings
    cache: CacheService
    rate_limiter: RateLimiter
    store: SubscriptionStore
    hub: HubClient
    queue: NotificationQueue
    consumer: NotificationConsumer
    intake: PubSubIntakeHandler
    engine: AsyncEngine | None = None


def _brokers(settings: Settings) -> tuple[MessageBroker, MessageBroker]:
    if settings.queue_backend == "memory":
        backlog = MemoryBacklog()
        return InMemoryBroker(backlog), InMemoryBroker(backlog)
    return (
        RedisBroker(settings.redis_url, settings.queue_name),
        RedisBroker(settings.redis_url, settings.queue_name, consumer_id=settings.instance_id),
    )


def build_services(settings: Settings) -> Services:
    """Wire production implementations from settings."""

    cache = TTLCacheService(
        enabled=settings.cache_enabled,
        heap_size=settings.cache_heap_size,
        ttl_minutes=settings.cache_ttl_minutes,
    )
    cache.init()

    rate_limiter = CacheRateLimiter(
        cache,
        RateLimitConfig(
            enabled=settings.rate_limit_enabled,
            default_limit=settings.rate_limit_default,
            api_limit=settings.rate_limit_api,
            pubsub_limit=settings.rate_limit_pubsub,
            window_size=settings.rate_limit_window_seconds,
        ),
    )
    rate_limiter.init()

    engine = create_engine(settings)
    store = SqlSubscriptionStore(create_session_factory(engine), cache)

    hub = HttpHubClient(
        hub_url=settings.hub_url,
        timeout=settings.hub_timeout_seconds,
        verify_mode=settings.hub_verify_mode,
    )

    producer_broker, consumer_broker = _brokers(settings)
    queue = BrokerNotificationQueue(producer_broker)
    consumer = BrokerNotificationConsumer(
        consumer_broker,
        processing_delay=settings.consumer_processing_delay_ms / 1000,
        max_redeliveries=settings.consumer_max_redeliveries,
        shutdown_timeout=settings.consumer_shutdown_timeout_seconds,
    )

    intake = PubSubIntakeHandler(store, queue, callback_url=settings.callback_url)
    logger.info("Services constructed", extra={"queue_backend": settings.queue_backend})

    return Services(
        settings=settings,
        cache=cache,
        rate_limiter=rate_limiter,
        store=store,
        hub=hub,
        queue=queue,
        consumer=consumer,
        intake=intake,
        engine=engine,
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the app's service container."""

    return request.app.state.services
