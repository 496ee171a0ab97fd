"""
Create all tables for the configured database.

Usage: python -m school_sessions.db.init_db
"""
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

# Import models so every table is registered on Base.metadata
import school_sessions.core.models  # noqa: F401
from school_sessions.core.config import configure_logging
from school_sessions.db.session import Base, engine

logger = logging.getLogger(__name__)


async def init_models(bind: AsyncEngine) -> None:
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Created %d tables", len(Base.metadata.tables))


async def main() -> None:
    configure_logging()
    await init_models(engine)
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
