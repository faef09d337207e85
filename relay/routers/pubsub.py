"""YouTube PubSubHubbub callback endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import PlainTextResponse

from relay.core.dependencies import Services, get_services
from relay.services.pubsub_intake import parse_lease_seconds

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pubsub", tags=["pubsub"])


@router.get("/youtube", response_class=PlainTextResponse)
async def verify_subscription(
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_topic: str | None = Query(None, alias="hub.topic"),
    hub_lease_seconds: str | None = Query(None, alias="hub.lease_seconds"),
    services: Services = Depends(get_services),
) -> PlainTextResponse:
    """Echo the hub's challenge and record the subscription state it confirms."""

    challenge = await services.intake.verify(
        hub_challenge,
        mode=hub_mode,
        topic=hub_topic,
        lease_seconds=parse_lease_seconds(hub_lease_seconds),
    )
    return PlainTextResponse(content=challenge, status_code=status.HTTP_200_OK)


@router.post("/youtube")
async def receive_notification(
    request: Request,
    services: Services = Depends(get_services),
) -> Response:
    """Accept a content notification; 200 once it validates, whatever the queue does."""

    payload = await request.body()
    logger.info("Received WebSub notification", extra={"payload_length": len(payload)})

    await services.intake.notify(payload)
    return Response(status_code=status.HTTP_200_OK)
