"""Alembic environment for the async SQLAlchemy engine.

Migrations run through run_sync() on an async connection, so the same
aiosqlite / asyncpg URLs the service uses work here unchanged. ``src`` is put
on the import path by ``prepend_sys_path`` in alembic.ini.
"""

import asyncio
import logging
import os
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

from workflow_service.infrastructure.database.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

# Declarative models back autogenerate; shipped migrations stay explicit
target_metadata = Base.metadata


def _resolve_database_url() -> str:
    """DATABASE_URL wins, then alembic.ini, then the service settings."""
    url = os.getenv("DATABASE_URL")
    if url:
        logger.info(f"Using DATABASE_URL from environment: {url}")
        return url

    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url

    from workflow_service.config import settings

    logger.info(f"No database URL configured, using service default: {settings.database_url}")
    return settings.database_url


config.set_main_option("sqlalchemy.url", _resolve_database_url())

_COMPARE_OPTS = {"compare_type": True, "compare_server_default": True}


def run_migrations_offline() -> None:
    """Emit migration SQL for the configured URL without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_COMPARE_OPTS,
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, **_COMPARE_OPTS)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
