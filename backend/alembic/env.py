"""
Alembic environment for Reflets.

Migrations run against the same asyncpg URL the API uses. Autogenerate
only ever compares the five tables Reflets owns; auth.users and the
other Supabase-managed relations are left alone.
"""

import asyncio
import os
import sys
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from reflets.config.settings import get_settings  # noqa: E402
from reflets.infrastructure.db.database import build_database_url  # noqa: E402
import reflets.infrastructure.db.models  # noqa: E402,F401  registers tables


config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata
OWNED_TABLES = frozenset(target_metadata.tables)


def include_object(obj, name, type_, reflected, compare_to):
    if type_ == "table":
        return name in OWNED_TABLES and obj.schema in (None, "public")
    return True


def _migration_options() -> dict:
    return {
        "target_metadata": target_metadata,
        "include_object": include_object,
        "compare_type": True,
    }


def _database_url() -> str:
    settings = get_settings()
    return build_database_url(
        settings.database_url,
        settings.supabase_url,
        settings.supabase_password,
    )


def run_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    context.configure(
        url=_database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_migration_options(),
    )
    with context.begin_transaction():
        context.run_migrations()


def _apply(connection: Connection) -> None:
    context.configure(
        connection=connection,
        compare_server_default=True,
        **_migration_options(),
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_online() -> None:
    engine = create_async_engine(_database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_apply)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    asyncio.run(run_online())
