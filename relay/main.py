"""FastAPI app entry point."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from relay.core.config import Settings, get_settings
from relay.core.dependencies import Services, build_services
from relay.core.errors import RelayError
from relay.db.init_db import init_models
from relay.routers import config, health, notifications, pubsub, subscriptions

logger = logging.getLogger(__name__)

UNLIMITED_PREFIXES = ("/health",)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def _startup(services: Services) -> None:
    if services.settings.database_auto_create and services.engine is not None:
        try:
            await init_models(services.engine)
        except Exception:  # noqa: BLE001 - readiness reports the store as down
            logger.exception("Failed to create database tables")

    await services.queue.init()

    if services.settings.consumer_autostart:
        await services.consumer.start_consuming()


async def _shutdown(services: Services) -> None:
    await services.consumer.stop_consuming()
    await services.queue.close()
    await services.hub.close()
    services.cache.close()
    if services.engine is not None:
        await services.engine.dispose()


def _error_body(reason: str, detail: str) -> dict[str, str]:
    return {"error": reason, "detail": detail}


def create_app(services: Services | None = None) -> FastAPI:
    """Build FastAPI application around an explicitly constructed service container."""

    if services is None:
        settings = get_settings()
        configure_logging(settings)
        services = build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Starting YouTube PubSubHubbub relay", extra={"instance": services.settings.instance_id})
        await _startup(services)
        yield
        await _shutdown(services)
        logger.info("Relay stopped")

    app = FastAPI(title="YouTube PubSubHubbub Relay", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        path = request.url.path
        if not path.startswith(UNLIMITED_PREFIXES):
            client_ip = request.client.host if request.client else "unknown"
            if not services.rate_limiter.check_rate_limit(client_ip, path):
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content=_error_body("rate_limited", "Too many requests"),
                )
        return await call_next(request)

    @app.exception_handler(RelayError)
    async def _relay_error(request: Request, exc: RelayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Request failed: %s", exc, extra={"path": request.url.path, "reason": exc.reason})
        else:
            logger.info("Request rejected: %s", exc, extra={"path": request.url.path, "reason": exc.reason})
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.reason, str(exc)))

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}" for error in exc.errors()
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_error_body("invalid_request", problems or "Invalid request"),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error processing request", extra={"path": request.url.path})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body("internal_error", "Internal server error"),
        )

    app.include_router(health.router)
    app.include_router(pubsub.router)
    app.include_router(subscriptions.router)
    app.include_router(notifications.router)
    app.include_router(config.router)

    @app.get("/", response_class=PlainTextResponse, tags=["home"])
    async def home() -> str:
        return "YouTube PubSubHubbub Service"

    return app


app = create_app()
