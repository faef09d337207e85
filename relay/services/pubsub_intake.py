"""Protocol handling for the hub's verification and notification requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable

from relay.core.errors import ValidationError
from relay.schema.notification import Notification
from relay.services.notification_queue import NotificationQueue
from relay.services.subscription_store import SubscriptionStore
from relay.services.youtube_notifications import (
    build_notification,
    channel_id_from_topic,
    parse_feed,
    validate_entry,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BestEffort:
    """Outcome of a downstream call the hub must never see fail."""

    ok: bool
    value: Any = None
    error: Exception | None = None


async def best_effort(operation: Awaitable[Any], action: str, **context: Any) -> BestEffort:
    """Await `operation`, logging and absorbing any failure."""

    try:
        value = await operation
    except Exception as exc:  # noqa: BLE001 - hot path absorbs downstream failures
        logger.error("Error during %s: %s", action, exc, exc_info=exc, extra=context)
        return BestEffort(ok=False, error=exc)
    return BestEffort(ok=True, value=value)


def parse_lease_seconds(raw: str | None) -> int:
    """Lenient parse of `hub.lease_seconds`; absent or unparsable means 0."""

    if raw is None:
        return 0
    try:
        return int(raw.strip())
    except ValueError:
        return 0


class PubSubIntakeHandler:
    """Drives subscription and queue state from hub requests.

    Validation failures raise; store and queue failures are logged and never
    change the response the hub receives.
    """

    def __init__(self, store: SubscriptionStore, queue: NotificationQueue, *, callback_url: str) -> None:
        self._store = store
        self._queue = queue
        self._callback_url = callback_url

    async def verify(
        self,
        challenge: str | None,
        mode: str | None = None,
        topic: str | None = None,
        lease_seconds: int = 0,
    ) -> str:
        """Handle a verification request and return the challenge to echo."""

        if challenge is None:
            logger.warning("Received verification request without hub.challenge")
            raise ValidationError("Missing hub.challenge parameter", reason="missing_challenge")

        logger.info(
            "Received subscription verification",
            extra={"mode": mode, "topic": topic, "lease_seconds": lease_seconds},
        )

        if mode == "subscribe" and topic is not None and lease_seconds > 0:
            channel_id = channel_id_from_topic(topic)
            outcome = await best_effort(
                self._store.create_or_update_subscription(
                    channel_id=channel_id,
                    topic=topic,
                    callback_url=self._callback_url,
                    lease_seconds=lease_seconds,
                ),
                "storing subscription",
                channel_id=channel_id,
            )
            if outcome.ok:
                logger.info(
                    "Subscription stored from verification",
                    extra={"channel_id": channel_id, "lease_seconds": lease_seconds},
                )
        elif mode == "unsubscribe" and topic is not None:
            channel_id = channel_id_from_topic(topic)
            outcome = await best_effort(
                self._store.update_subscription_status(channel_id, "inactive"),
                "deactivating subscription",
                channel_id=channel_id,
            )
            if outcome.ok:
                logger.info(
                    "Subscription marked inactive",
                    extra={"channel_id": channel_id, "found": bool(outcome.value)},
                )

        return challenge

    async def notify(self, body: bytes | str) -> Notification:
        """Validate a content notification and hand it to the queue."""

        feed = parse_feed(body)
        entry = validate_entry(feed)
        notification = build_notification(entry)

        if notification.channel_id is not None:
            lookup = await best_effort(
                self._store.get_subscription(notification.channel_id),
                "looking up subscription",
                channel_id=notification.channel_id,
            )
            subscription = lookup.value
            if lookup.ok and (subscription is None or subscription.status != "active"):
                logger.warning(
                    "Notification for channel without active subscription",
                    extra={"channel_id": notification.channel_id},
                )

        logger.info(
            "New YouTube content",
            extra={
                "title": notification.title,
                "channel_name": notification.channel_name,
                "video_id": notification.video_id,
            },
        )
        logger.debug(
            "Feed details",
            extra={"published": entry.published, "updated": entry.updated, "links": len(entry.links)},
        )

        queued = await best_effort(
            self._queue.enqueue(notification),
            "queueing notification",
            video_id=notification.video_id,
        )
        if queued.ok and queued.value:
            logger.info("Notification queued successfully", extra={"video_id": notification.video_id})
        else:
            logger.warning("Failed to queue notification", extra={"video_id": notification.video_id})

        return notification
