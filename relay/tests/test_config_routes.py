"""Route tests for the runtime configuration API."""

from __future__ import annotations

import httpx
import pytest

from relay.core.dependencies import Services


@pytest.mark.asyncio
async def test_get_configuration(client: httpx.AsyncClient) -> None:
    response = await client.get("/api/config")

    assert response.status_code == 200
    body = response.json()
    assert body["cache"] == {"enabled": True, "heapSize": 100, "ttlMinutes": 10}
    assert body["rateLimit"]["enabled"] is False
    assert set(body["rateLimit"]) == {"enabled", "defaultLimit", "apiLimit", "pubsubLimit", "windowSize"}


@pytest.mark.asyncio
async def test_update_configuration_derives_limits(client: httpx.AsyncClient, services: Services) -> None:
    response = await client.put(
        "/api/config",
        json={
            "cacheEnabled": True,
            "cacheHeapSize": 50,
            "cacheTtlSeconds": 300,
            "rateLimitEnabled": True,
            "rateLimitPerMinute": 100,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["cache"] == {"enabled": True, "heapSize": 50, "ttlMinutes": 5}
    assert body["rateLimit"] == {
        "enabled": True,
        "defaultLimit": 100,
        "apiLimit": 50,
        "pubsubLimit": 200,
        "windowSize": 60,
    }
    assert services.rate_limiter.limit_for("/api/config") == 50


@pytest.mark.asyncio
async def test_update_configuration_with_explicit_limits(client: httpx.AsyncClient) -> None:
    response = await client.put(
        "/api/config",
        json={
            "cacheEnabled": False,
            "cacheHeapSize": 10,
            "cacheTtlSeconds": 60,
            "rateLimitEnabled": False,
            "rateLimitPerMinute": 1,
            "apiLimit": 7,
            "pubsubLimit": 9,
            "windowSize": 30,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["cache"]["enabled"] is False
    assert body["rateLimit"] == {
        "enabled": False,
        "defaultLimit": 1,
        "apiLimit": 7,
        "pubsubLimit": 9,
        "windowSize": 30,
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "override",
    [{"cacheHeapSize": 0}, {"cacheTtlSeconds": 30}, {"rateLimitPerMinute": 0}],
)
async def test_update_configuration_rejects_invalid_values(client: httpx.AsyncClient, override: dict) -> None:
    payload = {
        "cacheEnabled": True,
        "cacheHeapSize": 50,
        "cacheTtlSeconds": 300,
        "rateLimitEnabled": True,
        "rateLimitPerMinute": 100,
    }
    payload.update(override)

    response = await client.put("/api/config", json=payload)

    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"
