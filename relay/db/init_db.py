import asyncio

from sqlalchemy.ext.asyncio import AsyncEngine

from relay.core.config import get_settings
from relay.db.models import Base
from relay.db.session import create_engine


async def init_models(db_engine: AsyncEngine) -> None:
    """Create database tables."""

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


if __name__ == "__main__":
    asyncio.run(init_models(create_engine(get_settings())))
