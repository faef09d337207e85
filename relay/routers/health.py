"""Liveness and readiness endpoints."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from relay.core.dependencies import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


@router.get("")
async def liveness(services: Services = Depends(get_services)) -> dict[str, str | int]:
    return {"status": "UP", "instance": services.settings.instance_id, "timestamp": _timestamp_ms()}


@router.get("/ready")
async def readiness(services: Services = Depends(get_services)) -> JSONResponse:
    """READY only when the store, the queue and the cache all answer."""

    checks = {
        "store": await services.store.is_available(),
        "queue": await services.queue.is_available(),
        "cache": services.cache.is_available(),
    }
    ready = all(checks.values())
    if not ready:
        logger.warning("Readiness check failed", extra={"checks": checks})

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "READY" if ready else "NOT_READY",
            "instance": services.settings.instance_id,
            "checks": checks,
            "timestamp": _timestamp_ms(),
        },
    )
