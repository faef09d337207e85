"""Subscription management endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from relay.core.dependencies import Services, get_services
from relay.core.errors import NotFoundError
from relay.schema.subscription import (
    MessageResponse,
    StatusRequest,
    SubscriptionPendingResponse,
    SubscriptionRecord,
    SubscriptionRequest,
)
from relay.services.subscription_service import (
    HubOutcome,
    renew_subscription,
    subscribe_channel,
    update_subscription,
    validate_status,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])

PENDING_MESSAGE = "Subscription created but hub request failed. The subscription is in 'pending' state."


def _not_found(channel_id: str) -> NotFoundError:
    return NotFoundError(f"Subscription not found for channel ID: {channel_id}", reason="subscription_not_found")


def _hub_response(outcome: HubOutcome, success_status: int) -> JSONResponse:
    if outcome.hub_accepted:
        return JSONResponse(
            status_code=success_status,
            content=outcome.subscription.model_dump(mode="json", by_alias=True),
        )
    pending = SubscriptionPendingResponse(subscription=outcome.subscription, message=PENDING_MESSAGE)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=pending.model_dump(mode="json", by_alias=True),
    )


@router.get("", response_model=list[SubscriptionRecord])
async def list_active_subscriptions(services: Services = Depends(get_services)) -> list[SubscriptionRecord]:
    return await services.store.get_all_active_subscriptions()


@router.get("/all", response_model=list[SubscriptionRecord])
async def list_all_subscriptions(services: Services = Depends(get_services)) -> list[SubscriptionRecord]:
    return await services.store.get_all_subscriptions()


@router.get("/expiring", response_model=list[SubscriptionRecord])
async def list_expiring_subscriptions(
    threshold_seconds: int = Query(86400, alias="thresholdSeconds", ge=0),
    services: Services = Depends(get_services),
) -> list[SubscriptionRecord]:
    """Active subscriptions whose lease ends within the threshold."""

    return await services.store.get_expiring_subscriptions(threshold_seconds)


@router.get("/{channel_id}", response_model=SubscriptionRecord)
async def get_subscription(channel_id: str, services: Services = Depends(get_services)) -> SubscriptionRecord:
    subscription = await services.store.get_subscription(channel_id)
    if subscription is None:
        raise _not_found(channel_id)
    return subscription


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    responses={202: {"model": SubscriptionPendingResponse}},
)
async def create_subscription(
    payload: SubscriptionRequest,
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Store a subscription and request it from the hub.

    201 when the hub accepted the request, 202 with a pending subscription when
    it did not.
    """

    outcome = await subscribe_channel(
        services.store,
        services.hub,
        payload,
        callback_url=services.settings.callback_url,
    )
    return _hub_response(outcome, status.HTTP_201_CREATED)


@router.put("/{channel_id}", response_model=SubscriptionRecord)
async def replace_subscription(
    channel_id: str,
    payload: SubscriptionRequest,
    services: Services = Depends(get_services),
) -> SubscriptionRecord:
    return await update_subscription(
        services.store,
        channel_id,
        payload,
        callback_url=services.settings.callback_url,
    )


@router.post("/{channel_id}/renew", responses={202: {"model": SubscriptionPendingResponse}})
async def renew(channel_id: str, services: Services = Depends(get_services)) -> JSONResponse:
    outcome = await renew_subscription(
        services.store,
        services.hub,
        channel_id,
        callback_url=services.settings.callback_url,
    )
    return _hub_response(outcome, status.HTTP_200_OK)


@router.put("/{channel_id}/status", response_model=MessageResponse)
async def change_status(
    channel_id: str,
    payload: StatusRequest,
    services: Services = Depends(get_services),
) -> MessageResponse:
    new_status = validate_status(payload.status)
    if not await services.store.update_subscription_status(channel_id, new_status):
        raise _not_found(channel_id)
    return MessageResponse(message=f"Subscription status updated to {new_status}")


@router.delete("/{channel_id}", response_model=MessageResponse)
async def delete_subscription(channel_id: str, services: Services = Depends(get_services)) -> MessageResponse:
    if not await services.store.delete_subscription(channel_id):
        raise _not_found(channel_id)
    logger.info("Subscription deleted via API", extra={"channel_id": channel_id})
    return MessageResponse(message="Subscription deleted successfully")
