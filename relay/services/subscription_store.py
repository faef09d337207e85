"""Persistence for hub subscriptions with a read-through cache."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay.core.errors import UpstreamError
from relay.db.models import Subscription
from relay.schema.subscription import SubscriptionRecord
from relay.services.cache import SUBSCRIPTIONS_REGION, CacheService

logger = logging.getLogger(__name__)

ALL_ACTIVE_KEY = "all_active_subscriptions"


def subscription_key(channel_id: str) -> str:
    return f"subscription:{channel_id}"


class SubscriptionStore(ABC):
    """Subscription records keyed by channel id. Updates are last-write-wins."""

    @abstractmethod
    async def create_or_update_subscription(
        self,
        channel_id: str,
        topic: str,
        callback_url: str,
        lease_seconds: int,
    ) -> SubscriptionRecord: ...

    @abstractmethod
    async def get_subscription(self, channel_id: str) -> SubscriptionRecord | None: ...

    @abstractmethod
    async def get_all_active_subscriptions(self) -> list[SubscriptionRecord]: ...

    @abstractmethod
    async def get_all_subscriptions(self) -> list[SubscriptionRecord]: ...

    @abstractmethod
    async def get_expiring_subscriptions(self, threshold_seconds: int) -> list[SubscriptionRecord]: ...

    @abstractmethod
    async def update_subscription_status(self, channel_id: str, status: str) -> bool: ...

    @abstractmethod
    async def delete_subscription(self, channel_id: str) -> bool: ...

    @abstractmethod
    async def is_available(self) -> bool: ...


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored value is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_record(row: Subscription) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=row.id,
        channel_id=row.channel_id,
        topic=row.topic,
        callback_url=row.callback_url,
        lease_seconds=row.lease_seconds,
        expires_at=_aware(row.expires_at),
        status=row.status,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


class SqlSubscriptionStore(SubscriptionStore):
    """SQLAlchemy-backed store.

    Cached entries: one per channel (`subscription:<id>`) and the active list
    (`all_active_subscriptions`). Every mutation removes both so the next read
    goes to the database, and reads that overlap a mutation do not write
    their result back.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], cache: CacheService) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._generation = 0

    def _invalidate(self, channel_id: str) -> None:
        self._generation += 1
        self._cache.remove(SUBSCRIPTIONS_REGION, subscription_key(channel_id))
        self._cache.remove(SUBSCRIPTIONS_REGION, ALL_ACTIVE_KEY)
        logger.debug("Invalidated subscription cache", extra={"channel_id": channel_id})

    def _cache_if_current(self, generation: int, key: str, value: object) -> None:
        # Reads that started before the last invalidation must not repopulate the cache.
        if generation != self._generation:
            logger.debug("Skipping cache fill after concurrent change", extra={"key": key})
            return
        self._cache.put(SUBSCRIPTIONS_REGION, key, value)

    async def _upsert(
        self,
        session: AsyncSession,
        *,
        channel_id: str,
        topic: str,
        callback_url: str,
        lease_seconds: int,
    ) -> Subscription:
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=lease_seconds)

        row = await session.scalar(select(Subscription).where(Subscription.channel_id == channel_id))
        if row is None:
            row = Subscription(
                channel_id=channel_id,
                topic=topic,
                callback_url=callback_url,
                lease_seconds=lease_seconds,
                expires_at=expires_at,
                status="active",
                created_at=now,
                updated_at=now,
            )
            session.add(row)
        else:
            row.topic = topic
            row.callback_url = callback_url
            row.lease_seconds = lease_seconds
            row.expires_at = expires_at
            row.status = "active"
            row.updated_at = now
        await session.commit()
        return row

    async def create_or_update_subscription(
        self,
        channel_id: str,
        topic: str,
        callback_url: str,
        lease_seconds: int,
    ) -> SubscriptionRecord:
        try:
            try:
                async with self._session_factory() as session:
                    row = await self._upsert(
                        session,
                        channel_id=channel_id,
                        topic=topic,
                        callback_url=callback_url,
                        lease_seconds=lease_seconds,
                    )
            except IntegrityError:
                # A concurrent insert won the unique key; apply ours on top of it.
                logger.info("Concurrent insert detected, retrying as update", extra={"channel_id": channel_id})
                async with self._session_factory() as session:
                    row = await self._upsert(
                        session,
                        channel_id=channel_id,
                        topic=topic,
                        callback_url=callback_url,
                        lease_seconds=lease_seconds,
                    )
        except SQLAlchemyError as exc:
            logger.exception("Failed to store subscription", extra={"channel_id": channel_id})
            raise UpstreamError(f"Unable to store subscription for {channel_id}") from exc
        finally:
            self._invalidate(channel_id)

        record = to_record(row)
        logger.info(
            "Subscription stored",
            extra={"channel_id": channel_id, "lease_seconds": lease_seconds, "expires_at": record.expires_at.isoformat()},
        )
        return record

    async def get_subscription(self, channel_id: str) -> SubscriptionRecord | None:
        cached = self._cache.get(SUBSCRIPTIONS_REGION, subscription_key(channel_id))
        if isinstance(cached, SubscriptionRecord):
            logger.debug("Cache hit for subscription", extra={"channel_id": channel_id})
            return cached

        generation = self._generation
        try:
            async with self._session_factory() as session:
                row = await session.scalar(select(Subscription).where(Subscription.channel_id == channel_id))
        except SQLAlchemyError as exc:
            logger.exception("Failed to load subscription", extra={"channel_id": channel_id})
            raise UpstreamError(f"Unable to load subscription for {channel_id}") from exc

        if row is None:
            return None
        record = to_record(row)
        self._cache_if_current(generation, subscription_key(channel_id), record)
        return record

    async def _list(self, stmt, what: str) -> list[SubscriptionRecord]:
        try:
            async with self._session_factory() as session:
                rows: Sequence[Subscription] = (await session.scalars(stmt)).all()
        except SQLAlchemyError as exc:
            logger.exception("Failed to list %s subscriptions", what)
            raise UpstreamError(f"Unable to list {what} subscriptions") from exc
        return [to_record(row) for row in rows]

    async def get_all_active_subscriptions(self) -> list[SubscriptionRecord]:
        cached = self._cache.get(SUBSCRIPTIONS_REGION, ALL_ACTIVE_KEY)
        if isinstance(cached, tuple):
            logger.debug("Cache hit for active subscriptions")
            return list(cached)

        generation = self._generation
        records = await self._list(
            select(Subscription).where(Subscription.status == "active").order_by(Subscription.channel_id),
            "active",
        )
        self._cache_if_current(generation, ALL_ACTIVE_KEY, tuple(records))
        return records

    async def get_all_subscriptions(self) -> list[SubscriptionRecord]:
        return await self._list(select(Subscription).order_by(Subscription.channel_id), "all")

    async def get_expiring_subscriptions(self, threshold_seconds: int) -> list[SubscriptionRecord]:
        threshold = datetime.now(timezone.utc) + timedelta(seconds=threshold_seconds)
        return await self._list(
            select(Subscription)
            .where(Subscription.status == "active", Subscription.expires_at <= threshold)
            .order_by(Subscription.expires_at),
            "expiring",
        )

    async def update_subscription_status(self, channel_id: str, status: str) -> bool:
        try:
            async with self._session_factory() as session:
                row = await session.scalar(select(Subscription).where(Subscription.channel_id == channel_id))
                if row is None:
                    return False
                row.status = status
                row.updated_at = datetime.now(timezone.utc)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to update subscription status", extra={"channel_id": channel_id})
            raise UpstreamError(f"Unable to update subscription status for {channel_id}") from exc
        finally:
            self._invalidate(channel_id)

        logger.info("Subscription status updated", extra={"channel_id": channel_id, "status": status})
        return True

    async def delete_subscription(self, channel_id: str) -> bool:
        try:
            async with self._session_factory() as session:
                result = await session.execute(delete(Subscription).where(Subscription.channel_id == channel_id))
                await session.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to delete subscription", extra={"channel_id": channel_id})
            raise UpstreamError(f"Unable to delete subscription for {channel_id}") from exc
        finally:
            self._invalidate(channel_id)

        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info("Subscription deleted", extra={"channel_id": channel_id})
        return deleted

    async def is_available(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception:  # noqa: BLE001 - readiness check
            logger.exception("Subscription store health check failed")
            return False
        return True
