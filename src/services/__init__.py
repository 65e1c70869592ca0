"""Database connection and session management."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from src.models import Base
from src.services.config import load_config


def create_engine_for_url(async_database_url: str) -> AsyncEngine:
    """Create an async engine (SQLite uses StaticPool for simplicity in dev/test)."""
    if async_database_url.startswith("sqlite"):
        return create_async_engine(
            async_database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(async_database_url, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create session factory bound to the engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# Engine from DATABASE_URL (SQLite default)
async_engine = create_engine_for_url(load_config().async_database_url)
AsyncSessionLocal = create_session_factory(async_engine)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session."""
    async with AsyncSessionLocal() as session:
        yield session


__all__ = [
    "async_engine",
    "AsyncSessionLocal",
    "create_engine_for_url",
    "create_session_factory",
    "get_async_session",
    "init_models",
]
