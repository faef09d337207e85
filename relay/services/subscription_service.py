"""Business logic for operator-driven subscription management."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from relay.core.errors import NotFoundError, ValidationError
from relay.schema.subscription import SubscriptionRecord, SubscriptionRequest
from relay.services.subscription_store import SubscriptionStore
from relay.services.websub import HubClient, channel_feed_url

logger = logging.getLogger(__name__)

VALID_STATUS_UPDATES = ("active", "inactive")
# Largest lease the `lease_seconds` integer column holds.
MAX_LEASE_SECONDS = 2_147_483_647


@dataclass(slots=True)
class HubOutcome:
    subscription: SubscriptionRecord
    hub_accepted: bool


def validate_subscription_request(request: SubscriptionRequest, *, require_channel: bool = True) -> tuple[str, int]:
    """Return the (topic, lease) to use, or raise `ValidationError`."""

    if require_channel and not request.channel_id.strip():
        raise ValidationError("Channel ID is required", reason="missing_channel_id")

    topic = request.topic if request.topic is not None else channel_feed_url(request.channel_id)
    if not topic.strip():
        raise ValidationError("Topic URL is required", reason="missing_topic")
    if request.callback_url is not None and not request.callback_url.strip():
        raise ValidationError("Callback URL is required", reason="missing_callback_url")
    if request.lease_seconds <= 0:
        raise ValidationError("Lease seconds must be greater than 0", reason="invalid_lease_seconds")
    if request.lease_seconds > MAX_LEASE_SECONDS:
        raise ValidationError(
            f"Lease seconds must not exceed {MAX_LEASE_SECONDS}", reason="invalid_lease_seconds"
        )
    return topic, request.lease_seconds


def validate_status(status: str) -> str:
    if not status.strip():
        raise ValidationError("Status is required", reason="missing_status")
    if status not in VALID_STATUS_UPDATES:
        raise ValidationError("Status must be 'active' or 'inactive'", reason="invalid_status")
    return status


async def _request_hub(
    store: SubscriptionStore,
    hub: HubClient,
    record: SubscriptionRecord,
) -> HubOutcome:
    accepted = await hub.send_subscription_request(
        topic=record.topic,
        callback=record.callback_url,
        lease_seconds=record.lease_seconds,
    )
    if accepted:
        logger.info("Hub accepted subscription", extra={"channel_id": record.channel_id})
        return HubOutcome(subscription=record, hub_accepted=True)

    logger.warning("Hub request failed; marking subscription pending", extra={"channel_id": record.channel_id})
    await store.update_subscription_status(record.channel_id, "pending")
    return HubOutcome(subscription=record.model_copy(update={"status": "pending"}), hub_accepted=False)


async def subscribe_channel(
    store: SubscriptionStore,
    hub: HubClient,
    request: SubscriptionRequest,
    *,
    callback_url: str,
) -> HubOutcome:
    """Store the subscription, then ask the hub for it."""

    topic, lease_seconds = validate_subscription_request(request)
    record = await store.create_or_update_subscription(
        channel_id=request.channel_id,
        topic=topic,
        callback_url=callback_url,
        lease_seconds=lease_seconds,
    )
    return await _request_hub(store, hub, record)


async def update_subscription(
    store: SubscriptionStore,
    channel_id: str,
    request: SubscriptionRequest,
    *,
    callback_url: str,
) -> SubscriptionRecord:
    if await store.get_subscription(channel_id) is None:
        raise NotFoundError(f"Subscription not found for channel ID: {channel_id}", reason="subscription_not_found")

    topic, lease_seconds = validate_subscription_request(
        request.model_copy(update={"channel_id": channel_id}),
        require_channel=False,
    )
    return await store.create_or_update_subscription(
        channel_id=channel_id,
        topic=topic,
        callback_url=callback_url,
        lease_seconds=lease_seconds,
    )


async def renew_subscription(
    store: SubscriptionStore,
    hub: HubClient,
    channel_id: str,
    *,
    callback_url: str,
) -> HubOutcome:
    """Re-request the stored subscription from the hub with a fresh lease."""

    existing = await store.get_subscription(channel_id)
    if existing is None:
        raise NotFoundError(f"Subscription not found for channel ID: {channel_id}", reason="subscription_not_found")

    record = await store.create_or_update_subscription(
        channel_id=channel_id,
        topic=existing.topic,
        callback_url=callback_url,
        lease_seconds=existing.lease_seconds,
    )
    return await _request_hub(store, hub, record)
