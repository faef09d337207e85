"""Durable hand-off of notifications between intake and processing.

Brokers expose the small at-least-once contract the producer and consumer
need: publish, receive, ack, nack with requeue, and dead-lettering.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from relay.schema.notification import Notification

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Delivery:
    """A message handed to a consumer and not yet acknowledged."""

    tag: str | bytes
    body: bytes
    attempts: int = 0


class MessageBroker(ABC):
    @property
    @abstractmethod
    def is_open(self) -> bool: ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the transport; raises when the broker is unreachable."""

    @abstractmethod
    async def ping(self) -> bool: ...

    @abstractmethod
    async def publish(self, body: bytes) -> None: ...

    @abstractmethod
    async def receive(self, timeout: float) -> Delivery | None:
        """Wait up to `timeout` seconds for the next message."""

    @abstractmethod
    async def ack(self, delivery: Delivery) -> None: ...

    @abstractmethod
    async def nack(self, delivery: Delivery, *, requeue: bool = True) -> None: ...

    @abstractmethod
    async def dead_letter(self, delivery: Delivery) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...


def _wrap(body: bytes, attempts: int = 0) -> str:
    return json.dumps({"attempts": attempts, "body": body.decode("utf-8", errors="replace")})


def _unwrap(raw: bytes | str) -> tuple[bytes, int]:
    try:
        envelope = json.loads(raw)
        return envelope["body"].encode(), int(envelope.get("attempts", 0))
    except (ValueError, TypeError, KeyError, AttributeError):
        # Not one of ours; hand the raw bytes to the consumer as-is.
        return raw if isinstance(raw, bytes) else raw.encode(), 0


class RedisBroker(MessageBroker):
    """Reliable-queue pattern on Redis lists.

    Producers `LPUSH` onto the queue. A consumer moves each message atomically
    into its own processing list with `BLMOVE`; ack removes it from there,
    nack pushes it back to the consuming end. Messages left in the processing
    list by a crashed consumer are moved back on the next `connect`.
    Durability follows the Redis server's persistence (AOF/RDB).
    """

    def __init__(self, url: str, queue_name: str, *, consumer_id: str | None = None) -> None:
        self._url = url
        self.queue_key = queue_name
        self.processing_key = f"{queue_name}:processing:{consumer_id or 'producer'}"
        self.dead_letter_key = f"{queue_name}:dead"
        self._consumer = consumer_id is not None
        self._client: Redis | None = None

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        await self.close()
        client = Redis.from_url(self._url, socket_connect_timeout=5, health_check_interval=30)
        try:
            await client.ping()
        except RedisError:
            await client.aclose()
            raise
        self._client = client
        if self._consumer:
            recovered = 0
            while await client.lmove(self.processing_key, self.queue_key, "LEFT", "RIGHT") is not None:
                recovered += 1
            if recovered:
                logger.warning("Requeued unacknowledged messages", extra={"count": recovered, "queue": self.queue_key})
        logger.info("Redis queue connection initialized", extra={"queue": self.queue_key})

    def _require(self) -> Redis:
        if self._client is None:
            raise RedisConnectionError("Redis queue connection is not open")
        return self._client

    async def _guard(self, coro):
        try:
            return await coro
        except RedisConnectionError:
            await self.close()
            raise

    async def ping(self) -> bool:
        try:
            return bool(await self._guard(self._require().ping()))
        except RedisError:
            logger.exception("Redis queue ping failed")
            return False

    async def publish(self, body: bytes) -> None:
        await self._guard(self._require().lpush(self.queue_key, _wrap(body)))

    async def receive(self, timeout: float) -> Delivery | None:
        raw = await self._guard(
            self._require().blmove(self.queue_key, self.processing_key, max(int(timeout), 1), src="RIGHT", dest="LEFT")
        )
        if raw is None:
            return None
        body, attempts = _unwrap(raw)
        return Delivery(tag=raw, body=body, attempts=attempts)

    async def ack(self, delivery: Delivery) -> None:
        await self._guard(self._require().lrem(self.processing_key, 1, delivery.tag))

    async def nack(self, delivery: Delivery, *, requeue: bool = True) -> None:
        async with self._require().pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 1, delivery.tag)
            if requeue:
                pipe.rpush(self.queue_key, _wrap(delivery.body, delivery.attempts + 1))
            await self._guard(pipe.execute())

    async def dead_letter(self, delivery: Delivery) -> None:
        async with self._require().pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 1, delivery.tag)
            pipe.lpush(self.dead_letter_key, _wrap(delivery.body, delivery.attempts))
            await self._guard(pipe.execute())

    async def close(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.aclose()
        except RedisError:
            logger.exception("Error closing Redis queue connection")


class MemoryBacklog:
    """Message storage shared by the in-memory brokers of one process."""

    def __init__(self) -> None:
        self.ready: deque[Delivery] = deque()
        self.dead: list[Delivery] = []
        self.condition = asyncio.Condition()


class InMemoryBroker(MessageBroker):
    """Broker for development and tests; messages live as long as the process."""

    def __init__(self, backlog: MemoryBacklog | None = None) -> None:
        self.backlog = backlog or MemoryBacklog()
        self._open = False
        self._unacked: dict[str | bytes, Delivery] = {}

    @property
    def is_open(self) -> bool:
        return self._open

    async def connect(self) -> None:
        self._open = True

    async def ping(self) -> bool:
        return self._open

    def _require_open(self) -> None:
        if not self._open:
            raise ConnectionError("In-memory broker is closed")

    async def publish(self, body: bytes) -> None:
        self._require_open()
        async with self.backlog.condition:
            self.backlog.ready.append(Delivery(tag=uuid.uuid4().hex, body=body))
            self.backlog.condition.notify()

    async def receive(self, timeout: float) -> Delivery | None:
        self._require_open()
        backlog = self.backlog
        async with backlog.condition:
            try:
                await asyncio.wait_for(
                    backlog.condition.wait_for(lambda: bool(backlog.ready) or not self._open),
                    timeout,
                )
            except TimeoutError:
                return None
            if not self._open or not backlog.ready:
                return None
            delivery = backlog.ready.popleft()
        self._unacked[delivery.tag] = delivery
        return delivery

    async def ack(self, delivery: Delivery) -> None:
        self._unacked.pop(delivery.tag, None)

    async def nack(self, delivery: Delivery, *, requeue: bool = True) -> None:
        if self._unacked.pop(delivery.tag, None) is None or not requeue:
            return
        async with self.backlog.condition:
            self.backlog.ready.appendleft(
                Delivery(tag=uuid.uuid4().hex, body=delivery.body, attempts=delivery.attempts + 1)
            )
            self.backlog.condition.notify()

    async def dead_letter(self, delivery: Delivery) -> None:
        if self._unacked.pop(delivery.tag, None) is not None:
            self.backlog.dead.append(delivery)

    async def close(self) -> None:
        if not self._open:
            return
        self._open = False
        pending, self._unacked = list(self._unacked.values()), {}
        async with self.backlog.condition:
            # Unacknowledged messages go back to the queue, as a broker would on channel close.
            for delivery in reversed(pending):
                self.backlog.ready.appendleft(delivery)
            self.backlog.condition.notify_all()


class NotificationQueue(ABC):
    async def init(self) -> None:
        """Open the connection eagerly at startup."""

    @abstractmethod
    async def enqueue(self, notification: Notification) -> bool:
        """Publish a notification; False on any failure, never raises."""

    @abstractmethod
    async def is_available(self) -> bool: ...

    @abstractmethod
    async def close(self) -> None: ...


class BrokerNotificationQueue(NotificationQueue):
    """Producer side of the notification queue with lazy reconnect."""

    def __init__(self, broker: MessageBroker) -> None:
        self._broker = broker

    async def init(self) -> None:
        try:
            await self._broker.connect()
        except Exception:  # noqa: BLE001 - reconnect is attempted lazily
            logger.exception("Error initializing notification queue connection")

    async def _ensure_open(self) -> bool:
        if self._broker.is_open:
            return True
        logger.warning("Queue connection is not open, attempting to reconnect")
        try:
            await self._broker.connect()
        except Exception:  # noqa: BLE001
            logger.exception("Failed to reconnect to notification queue")
            return False
        return self._broker.is_open

    async def enqueue(self, notification: Notification) -> bool:
        try:
            if not await self._ensure_open():
                return False
            await self._broker.publish(notification.to_message())
        except Exception:  # noqa: BLE001 - boolean contract towards the intake path
            logger.exception(
                "Error queueing notification",
                extra={"video_id": notification.video_id, "notification_id": notification.id},
            )
            return False

        logger.info(
            "Notification queued",
            extra={"video_id": notification.video_id, "title": notification.title},
        )
        return True

    async def is_available(self) -> bool:
        try:
            return await self._ensure_open() and await self._broker.ping()
        except Exception:  # noqa: BLE001
            logger.exception("Error checking notification queue availability")
            return False

    async def close(self) -> None:
        try:
            await self._broker.close()
            logger.info("Notification queue connection closed")
        except Exception:  # noqa: BLE001
            logger.exception("Error closing notification queue connection")
