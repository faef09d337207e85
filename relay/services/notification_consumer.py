"""Background consumer that processes queued notifications."""

from __future__ import annotations

import asyncio
import functools
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from relay.schema.notification import Notification
from relay.services.notification_queue import Delivery, MessageBroker

logger = logging.getLogger(__name__)

NotificationProcessor = Callable[[Notification], Awaitable[None]]


class NotificationConsumer(ABC):
    @abstractmethod
    async def start_consuming(self) -> bool:
        """Start the consume loop; no-op when already running."""

    @abstractmethod
    async def stop_consuming(self) -> None:
        """Stop the consume loop; no-op when already stopped."""

    @abstractmethod
    def is_running(self) -> bool: ...

    @abstractmethod
    async def process_notification(self, notification: Notification) -> None: ...


class BrokerNotificationConsumer(NotificationConsumer):
    """Consumes notifications with at-least-once semantics.

    Each message runs in its own task, but a semaphore of size one admits a
    single unacknowledged message at a time. Failed messages are requeued;
    once a message has been redelivered `max_redeliveries` times it is moved to
    the dead-letter list instead.
    """

    def __init__(
        self,
        broker: MessageBroker,
        *,
        processor: NotificationProcessor | None = None,
        processing_delay: float = 0.1,
        max_redeliveries: int | None = 5,
        shutdown_timeout: float = 5.0,
        poll_timeout: float = 1.0,
    ) -> None:
        self._broker = broker
        self._processor = processor
        self._processing_delay = processing_delay
        self._max_redeliveries = max_redeliveries
        self._shutdown_timeout = shutdown_timeout
        self._poll_timeout = poll_timeout
        self._task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()
        self._admission = asyncio.Semaphore(1)
        self._stop_event = asyncio.Event()
        self._running = False

    def is_running(self) -> bool:
        return self._running

    async def _connect(self) -> bool:
        try:
            await self._broker.connect()
        except Exception:  # noqa: BLE001 - consumer retries on the next loop iteration
            logger.exception("Failed to connect notification consumer")
            return False
        return self._broker.is_open

    async def start_consuming(self) -> bool:
        if self._running:
            logger.warning("Consumer is already running")
            return True

        if not self._broker.is_open and not await self._connect():
            logger.error("Notification consumer not started: queue unavailable")
            return False

        self._stop_event.clear()
        self._admission = asyncio.Semaphore(1)
        self._running = True
        self._task = asyncio.create_task(self._run(), name="notification-consumer")
        self._task.add_done_callback(self._on_loop_exit)
        logger.info("Now consuming notifications")
        return True

    def _on_loop_exit(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Notification consumer loop crashed", exc_info=task.exception())
        # A loop replaced by a restart must not mark the new one stopped.
        if task is self._task:
            self._running = False

    async def _run(self) -> None:
        admission = self._admission
        while not self._stop_event.is_set():
            await admission.acquire()
            try:
                delivery = await self._broker.receive(self._poll_timeout)
            except asyncio.CancelledError:
                admission.release()
                raise
            except Exception:  # noqa: BLE001 - keep the loop alive across broker outages
                admission.release()
                if self._stop_event.is_set():
                    break
                logger.exception("Error receiving notification")
                await asyncio.sleep(self._poll_timeout)
                if not self._broker.is_open:
                    await self._connect()
                continue

            if delivery is None:
                admission.release()
                continue

            task = asyncio.create_task(self._handle(delivery))
            self._in_flight.add(task)
            task.add_done_callback(functools.partial(self._on_handled, admission))

    def _on_handled(self, admission: asyncio.Semaphore, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        admission.release()

    async def _handle(self, delivery: Delivery) -> None:
        try:
            notification = Notification.from_message(delivery.body)
            logger.info(
                "Processing notification",
                extra={"video_id": notification.video_id, "title": notification.title, "attempts": delivery.attempts},
            )
            await self.process_notification(notification)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001 - message is requeued, not lost
            logger.exception("Error processing notification", extra={"attempts": delivery.attempts})
            await self._reject(delivery)
            return

        try:
            await self._broker.ack(delivery)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to acknowledge notification", extra={"video_id": notification.video_id})
            return
        logger.info("Notification processed successfully", extra={"video_id": notification.video_id})

    async def _reject(self, delivery: Delivery) -> None:
        try:
            if self._max_redeliveries is not None and delivery.attempts >= self._max_redeliveries:
                logger.error(
                    "Notification exceeded redelivery limit; dead-lettering",
                    extra={"attempts": delivery.attempts, "max_redeliveries": self._max_redeliveries},
                )
                await self._broker.dead_letter(delivery)
            else:
                await self._broker.nack(delivery, requeue=True)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to reject notification")

    async def process_notification(self, notification: Notification) -> None:
        if self._processor is not None:
            await self._processor(notification)
            return

        logger.info(
            "Processing YouTube notification",
            extra={
                "title": notification.title,
                "video_id": notification.video_id,
                "channel_id": notification.channel_id,
                "channel_name": notification.channel_name,
                "published": notification.published,
                "received_at": notification.received_at.isoformat(),
            },
        )
        await asyncio.sleep(self._processing_delay)

    async def stop_consuming(self) -> None:
        if self._task is None and not self._running:
            return

        logger.info("Stopping notification consumer")
        self._running = False
        self._stop_event.set()

        try:
            await self._broker.close()
        except Exception:  # noqa: BLE001
            logger.exception("Error closing consumer connection")

        tasks = [task for task in (self._task, *self._in_flight) if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self._shutdown_timeout)
            if pending:
                logger.warning("Consumer tasks still running after shutdown timeout", extra={"count": len(pending)})
        self._task = None
        logger.info("Notification consumer stopped")
