"""Notification consumer control endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from relay.core.dependencies import Services, get_services
from relay.schema.subscription import MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("/consumer/status")
async def consumer_status(services: Services = Depends(get_services)) -> dict[str, bool]:
    return {"running": services.consumer.is_running()}


@router.post("/consumer/start", response_model=MessageResponse)
async def start_consumer(services: Services = Depends(get_services)) -> MessageResponse:
    started = await services.consumer.start_consuming()
    if not started:
        logger.warning("Consumer start requested but the queue is unavailable")
        return MessageResponse(message="Notification consumer could not connect to the queue")
    return MessageResponse(message="Notification consumer started")


@router.post("/consumer/stop", response_model=MessageResponse)
async def stop_consumer(services: Services = Depends(get_services)) -> MessageResponse:
    await services.consumer.stop_consuming()
    return MessageResponse(message="Notification consumer stopped")
