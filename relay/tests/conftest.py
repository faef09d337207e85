"""Shared fixtures for the relay test-suite."""

from __future__ import annotations

import uuid

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from relay.core.dependencies import Services
from relay.db.models import Base
from relay.main import create_app
from relay.services.cache import TTLCacheService
from relay.services.subscription_store import SqlSubscriptionStore
from relay.tests.fakes import make_services


def _memory_db_url() -> str:
    return f"sqlite+aiosqlite:///file:relay_{uuid.uuid4().hex}?mode=memory&cache=shared"


@pytest_asyncio.fixture
async def session_factory() -> async_sessionmaker[AsyncSession]:
    engine = create_async_engine(_memory_db_url(), future=True, connect_args={"uri": True})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def cache() -> TTLCacheService:
    service = TTLCacheService(enabled=True, heap_size=100, ttl_minutes=10)
    service.init()
    return service


@pytest.fixture
def sql_store(session_factory: async_sessionmaker[AsyncSession], cache: TTLCacheService) -> SqlSubscriptionStore:
    return SqlSubscriptionStore(session_factory, cache)


@pytest.fixture
def services() -> Services:
    return make_services()


@pytest_asyncio.fixture
async def client(services: Services) -> httpx.AsyncClient:
    app = create_app(services)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://relay.test") as http_client:
        yield http_client
