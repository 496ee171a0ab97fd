from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from school_sessions.core.config import settings


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Async engine for the service database.
    Server databases get pool_pre_ping (drop connections closed while idle) and
    pool_recycle (replace connections older than 5 minutes); SQLite needs neither.
    """
    options = {"echo": echo, "future": True}
    if make_url(database_url).get_backend_name() != "sqlite":
        options.update(pool_pre_ping=True, pool_recycle=300)
    return create_async_engine(database_url, **options)


engine = build_engine(settings.database_url, echo=settings.sql_echo)

# Rollover and bulk handlers read attributes after commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session
