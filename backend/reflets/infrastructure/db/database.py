"""
Database Configuration for Reflets

Async SQLAlchemy engine and session management. One pool per process;
every repository call opens its own short session, so no transaction
ever spans two steps of the provisioning flow.
"""

import logging
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from urllib.parse import quote_plus

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from reflets.config.settings import Settings, get_settings
from reflets.infrastructure.exceptions import ConfigurationError


logger = logging.getLogger(__name__)


def build_database_url(
    database_url: Optional[str],
    supabase_url: Optional[str],
    supabase_password: Optional[str],
) -> str:
    """
    Resolve the asyncpg connection URL.

    Uses DATABASE_URL when set, otherwise derives the direct connection from
    SUPABASE_URL + SUPABASE_PASSWORD.
    """
    if database_url:
        if database_url.startswith("postgresql://"):
            return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if database_url.startswith("postgres://"):
            return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
        return database_url

    if not supabase_url or not supabase_password:
        raise ConfigurationError(
            "Either DATABASE_URL or (SUPABASE_URL + SUPABASE_PASSWORD) is required.",
            missing_keys=["DATABASE_URL", "SUPABASE_PASSWORD"],
        )

    match = re.match(r"https?://([^.]+)\.supabase\.co", supabase_url)
    if not match:
        raise ConfigurationError(f"Invalid SUPABASE_URL format: {supabase_url}")

    project_ref = match.group(1)
    password = quote_plus(supabase_password)
    return (
        f"postgresql+asyncpg://postgres:{password}"
        f"@db.{project_ref}.supabase.co:5432/postgres"
    )


class DatabaseManager:
    """
    Owns the process-wide engine and session factory.

    The engine is created on first use so importing repositories never
    needs a database URL; tests that mock repositories never build one.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker[AsyncSession]] = None

    def _build(self) -> None:
        settings = self._settings or get_settings()
        url = build_database_url(
            settings.database_url,
            settings.supabase_url,
            settings.supabase_password,
        )
        self._engine = create_async_engine(
            url,
            echo=settings.database_echo,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_pre_ping=True,
        )
        # Domain objects are mapped after commit, so attributes must stay loaded
        self._sessions = async_sessionmaker(
            self._engine,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database engine created")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._build()
        return self._engine

    @property
    def sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._sessions is None:
            self._build()
        return self._sessions

    async def ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._sessions = None


_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    global _manager
    if _manager is None:
        _manager = DatabaseManager()
    return _manager


@asynccontextmanager
async def get_session_context() -> AsyncIterator[AsyncSession]:
    """
    One short unit of work: commit when the block exits cleanly, roll back
    when it raises. Repositories open one per call.
    """
    async with get_db_manager().sessions() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Fail fast at startup when the database is unreachable."""
    await get_db_manager().ping()


async def close_db() -> None:
    await get_db_manager().dispose()
