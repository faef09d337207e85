"""Tests for the SQL subscription store and its cache invalidation."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay.services.cache import SUBSCRIPTIONS_REGION, TTLCacheService
from relay.services.subscription_store import ALL_ACTIVE_KEY, SqlSubscriptionStore, subscription_key

TOPIC = "https://www.youtube.com/xml/feeds/videos.xml?channel_id=UC1"
CALLBACK = "http://relay.test/pubsub/youtube"


@pytest.mark.asyncio
async def test_create_or_update_is_idempotent_per_channel(sql_store: SqlSubscriptionStore) -> None:
    first = await sql_store.create_or_update_subscription("UC1", TOPIC, CALLBACK, 3600)
    second = await sql_store.create_or_update_subscription("UC1", TOPIC, CALLBACK, 7200)

    assert first.id == second.id
    assert second.lease_seconds == 7200
    assert second.created_at == first.created_at
    assert second.expires_at > first.expires_at

    everything = await sql_store.get_all_subscriptions()
    assert [record.channel_id for record in everything] == ["UC1"]


@pytest.mark.asyncio
async def test_create_sets_expiry_from_lease(sql_store: SqlSubscriptionStore) -> None:
    record = await sql_store.create_or_update_subscription("UC1", TOPIC, CALLBACK, 3600)

    expected = datetime.now(timezone.utc) + timedelta(seconds=3600)
    assert record.status == "active"
    assert record.expires_at.tzinfo is not None
    assert abs((record.expires_at - expected).total_seconds()) < 60


@pytest.mark.asyncio
async def test_update_reactivates_inactive_subscription(sql_store: SqlSubscriptionStore) -> None:
    await sql_store.create_or_update_subscription("UC1", TOPIC, CALLBACK, 3600)
    await sql_store.update_subscription_status("UC1", "inactive")

    record = await sql_store.create_or_update_subscription("UC1", TOPIC, CALLBACK, 3600)

    assert record.status == "active"


@pytest.mark.asyncio
async def test_status_change_invalidates_active_list(sql_store: SqlSubscriptionStore, cache: TTLCacheService) -> None:
    await sql_store.create_or_update_subscription("UC1", TOPIC, CALLBACK, 3600)
    await sql_store.create_or_update_subscription("UC2", TOPIC.replace("UC1", "UC2"), CALLBACK, 3600)

    active = await sql_store.get_all_active_subscriptions()
    assert [record.channel_id for record in active] == ["UC1", "UC2"]
    assert cache.get(SUBSCRIPTIONS_REGION, ALL_ACTIVE_KEY) is not None

    assert await sql_store.update_subscription_status("UC1", "inactive") is True
    assert cache.get(SUBSCRIPTIONS_REGION, ALL_ACTIVE_KEY) is None

    active = await sql_store.get_all_active_subscriptions()
    assert [record.channel_id for record in active] == ["UC2"]


@pytest.mark.asyncio
async def test_get_subscription_reads_through_cache(sql_store: SqlSubscriptionStore, cache: TTLCacheService) -> None:
    await sql_store.create_or_update_subscription("UC1", TOPIC, CALLBACK, 3600)

    record = await sql_store.get_subscription("UC1")

    assert record is not None
    assert cache.get(SUBSCRIPTIONS_REGION, subscription_key("UC1")) == record

    await sql_store.update_subscription_status("UC1", "inactive")
    assert cache.get(SUBSCRIPTIONS_REGION, subscription_key("UC1")) is None
    refreshed = await sql_store.get_subscription("UC1")
    assert refreshed is not None
    assert refreshed.status == "inactive"


@pytest.mark.asyncio
async def test_unknown_channel(sql_store: SqlSubscriptionStore) -> None:
    assert await sql_store.get_subscription("missing") is None
    assert await sql_store.update_subscription_status("missing", "inactive") is False
    assert await sql_store.delete_subscription("missing") is False


@pytest.mark.asyncio
async def test_delete_subscription(sql_store: SqlSubscriptionStore) -> None:
    await sql_store.create_or_update_subscription("UC1", TOPIC, CALLBACK, 3600)
    await sql_store.get_subscription("UC1")

    assert await sql_store.delete_subscription("UC1") is True

    assert await sql_store.get_subscription("UC1") is None
    assert await sql_store.get_all_subscriptions() == []


@pytest.mark.asyncio
async def test_expiring_subscriptions_respect_threshold(sql_store: SqlSubscriptionStore) -> None:
    await sql_store.create_or_update_subscription("SOON", TOPIC, CALLBACK, 600)
    await sql_store.create_or_update_subscription("LATER", TOPIC, CALLBACK, 864000)
    await sql_store.create_or_update_subscription("OFF", TOPIC, CALLBACK, 600)
    await sql_store.update_subscription_status("OFF", "inactive")

    expiring = await sql_store.get_expiring_subscriptions(3600)

    assert [record.channel_id for record in expiring] == ["SOON"]


@pytest.mark.asyncio
async def test_store_is_available(sql_store: SqlSubscriptionStore) -> None:
    assert await sql_store.is_available() is True


class SlowListStore(SqlSubscriptionStore):
    """Holds list reads open between the query and the cache fill."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.queried = asyncio.Event()
        self.release = asyncio.Event()

    async def _list(self, stmt, what: str):
        records = await super()._list(stmt, what)
        self.queried.set()
        await self.release.wait()
        return records


@pytest.mark.asyncio
async def test_overlapping_read_does_not_cache_stale_active_list(
    session_factory: async_sessionmaker[AsyncSession],
    cache: TTLCacheService,
) -> None:
    store = SlowListStore(session_factory, cache)
    await store.create_or_update_subscription("UC1", TOPIC, CALLBACK, 3600)

    slow_read = asyncio.create_task(store.get_all_active_subscriptions())
    await store.queried.wait()
    assert await store.update_subscription_status("UC1", "inactive") is True
    store.release.set()
    stale = await slow_read

    assert [record.channel_id for record in stale] == ["UC1"]
    assert cache.get(SUBSCRIPTIONS_REGION, ALL_ACTIVE_KEY) is None
    active = await store.get_all_active_subscriptions()
    assert "UC1" not in [record.channel_id for record in active]
