"""Tests for the Redis reliable-queue broker against an in-process Redis."""

from __future__ import annotations

import fakeredis
import pytest
import pytest_asyncio
from redis.asyncio import Redis

from relay.services import notification_queue
from relay.services.notification_queue import RedisBroker, _unwrap

URL = "redis://relay.test:6379/0"
QUEUE = "test_notifications"


@pytest.fixture
def server(monkeypatch: pytest.MonkeyPatch) -> fakeredis.FakeServer:
    shared = fakeredis.FakeServer()
    monkeypatch.setattr(
        notification_queue.Redis,
        "from_url",
        lambda url, **kwargs: fakeredis.FakeAsyncRedis(server=shared),
    )
    return shared


@pytest_asyncio.fixture
async def inspector(server: fakeredis.FakeServer) -> Redis:
    client = fakeredis.FakeAsyncRedis(server=server)
    yield client
    await client.aclose()


async def _brokers(consumer_id: str = "worker-1") -> tuple[RedisBroker, RedisBroker]:
    producer = RedisBroker(URL, QUEUE)
    consumer = RedisBroker(URL, QUEUE, consumer_id=consumer_id)
    await producer.connect()
    await consumer.connect()
    return producer, consumer


@pytest.mark.asyncio
async def test_receive_moves_message_to_processing_list(server, inspector: Redis) -> None:
    producer, consumer = await _brokers()
    await producer.publish(b"one")

    delivery = await consumer.receive(timeout=1)

    assert delivery is not None
    assert delivery.body == b"one"
    assert delivery.attempts == 0
    assert await inspector.llen(QUEUE) == 0
    assert await inspector.llen(consumer.processing_key) == 1

    await consumer.ack(delivery)

    assert await inspector.llen(consumer.processing_key) == 0
    await producer.close()
    await consumer.close()


@pytest.mark.asyncio
async def test_messages_are_received_in_publish_order(server) -> None:
    producer, consumer = await _brokers()
    for body in (b"first", b"second"):
        await producer.publish(body)

    first = await consumer.receive(timeout=1)
    second = await consumer.receive(timeout=1)

    assert (first.body, second.body) == (b"first", b"second")
    await producer.close()
    await consumer.close()


@pytest.mark.asyncio
async def test_nack_requeues_with_incremented_attempts(server, inspector: Redis) -> None:
    producer, consumer = await _brokers()
    await producer.publish(b"one")
    delivery = await consumer.receive(timeout=1)

    await consumer.nack(delivery, requeue=True)
    redelivered = await consumer.receive(timeout=1)

    assert redelivered is not None
    assert redelivered.body == b"one"
    assert redelivered.attempts == 1
    assert await inspector.llen(consumer.processing_key) == 1
    await producer.close()
    await consumer.close()


@pytest.mark.asyncio
async def test_unacked_message_is_recovered_on_reconnect(server) -> None:
    producer, consumer = await _brokers()
    await producer.publish(b"one")
    assert await consumer.receive(timeout=1) is not None
    # Connection dropped without ack, as after a crash.
    await consumer.close()

    restarted = RedisBroker(URL, QUEUE, consumer_id="worker-1")
    await restarted.connect()
    recovered = await restarted.receive(timeout=1)

    assert recovered is not None
    assert recovered.body == b"one"
    assert recovered.attempts == 0
    await producer.close()
    await restarted.close()


@pytest.mark.asyncio
async def test_connect_only_recovers_own_processing_list(server, inspector: Redis) -> None:
    producer, consumer = await _brokers("worker-1")
    await producer.publish(b"one")
    assert await consumer.receive(timeout=1) is not None

    other = RedisBroker(URL, QUEUE, consumer_id="worker-2")
    await other.connect()
    late_producer = RedisBroker(URL, QUEUE)
    await late_producer.connect()

    assert await inspector.llen(QUEUE) == 0
    assert await inspector.llen(consumer.processing_key) == 1
    await producer.close()
    await consumer.close()
    await other.close()
    await late_producer.close()


@pytest.mark.asyncio
async def test_dead_letter_moves_message_out_of_rotation(server, inspector: Redis) -> None:
    producer, consumer = await _brokers()
    await producer.publish(b"poison")
    delivery = await consumer.receive(timeout=1)
    delivery.attempts = 5

    await consumer.dead_letter(delivery)

    assert await inspector.llen(QUEUE) == 0
    assert await inspector.llen(consumer.processing_key) == 0
    assert await inspector.llen(consumer.dead_letter_key) == 1
    body, attempts = _unwrap(await inspector.lindex(consumer.dead_letter_key, 0))
    assert (body, attempts) == (b"poison", 5)
    await producer.close()
    await consumer.close()


@pytest.mark.asyncio
async def test_ping_reports_open_connection(server) -> None:
    broker = RedisBroker(URL, QUEUE)
    await broker.connect()

    assert broker.is_open
    assert await broker.ping() is True

    await broker.close()
    assert not broker.is_open
    assert await broker.ping() is False
