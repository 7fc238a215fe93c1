"""Alembic env.py — async migrations for the Framecast schema."""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Importing the models package registers every table on Base.metadata
from framecast.db.session import Base  # noqa: E402
from framecast.models import *  # noqa: E402, F401, F403

target_metadata = Base.metadata

# Status columns are enums; compare types so autogenerate picks up new values
CONFIGURE_OPTS = {"compare_type": True, "compare_server_default": True}


def get_url(sync: bool) -> str:
    """``alembic -x dburl=...`` overrides the settings-derived URL."""
    override = context.get_x_argument(as_dictionary=True).get("dburl")
    if override:
        return override
    from framecast.config import get_settings

    settings = get_settings()
    return settings.database_url_sync if sync else settings.database_url


def run_migrations_offline() -> None:
    context.configure(
        url=get_url(sync=True),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **CONFIGURE_OPTS,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(connection=connection, target_metadata=target_metadata, **CONFIGURE_OPTS)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = async_engine_from_config(
        {"sqlalchemy.url": get_url(sync=False)},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
