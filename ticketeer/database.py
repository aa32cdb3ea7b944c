"""
Database connection management and session handling.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine,
)

from .config import Settings
from .models.base import Base

logger = logging.getLogger(__name__)


def create_database_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine, with pooling for server databases."""
    engine_kwargs = {"echo": settings.database_echo}

    if not settings.is_sqlite:
        engine_kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    if settings.database_url.startswith("postgresql+asyncpg"):
        engine_kwargs["connect_args"] = {
            "server_settings": {"application_name": "ticketeer"}
        }

    return create_async_engine(settings.database_url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=True,
    )


class DatabaseManager:
    """Owns the engine and session factory for one application instance.

    Constructed explicitly and initialized/closed by the application
    lifespan. Services and the expiry sweeper receive sessions from it.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_initialized(self) -> bool:
        return self.session_factory is not None

    async def initialize(self) -> None:
        """Create the engine and any missing tables."""
        if self.is_initialized:
            return

        logger.info("Initializing database connection...")
        self.engine = create_database_engine(self.settings)
        self.session_factory = create_session_factory(self.engine)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database manager initialized")

    async def close(self) -> None:
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connections closed")
        self.engine = None
        self.session_factory = None

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a session that commits on success and rolls back on error.

        Usage:
            async with db.get_session() as session:
                result = await session.execute(query)
        """
        if self.session_factory is None:
            raise RuntimeError("Database manager not initialized")

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for getting database sessions.

    Usage in FastAPI endpoints:
        @router.get("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_db)):
            ...
    """
    database: DatabaseManager = request.app.state.database
    async with database.get_session() as session:
        yield session
