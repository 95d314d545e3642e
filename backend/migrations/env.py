"""
Alembic environment configuration for async database migrations.

This module configures the Alembic migration environment with async support,
model imports, and the migration context for both offline and online modes.
The database URL always comes from application settings.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from ridecycle.core.config import get_settings
from ridecycle.core.logging import get_logger
from ridecycle.database.connection import convert_database_url_to_async

# Import all models to ensure they are registered with Base.metadata
from ridecycle.database.models import Base  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

settings = get_settings()
logger = get_logger(__name__)

target_metadata = Base.metadata

config.set_main_option(
    "sqlalchemy.url", convert_database_url_to_async(settings.database_url)
)


def run_migrations_offline() -> None:
    """
    Run migrations in 'offline' mode.

    Emits SQL to the script output without a DBAPI connection.
    """
    url = config.get_main_option("sqlalchemy.url")
    logger.info("Running migrations in offline mode", url_prefix=url.split("://")[0])

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
    )

    with context.begin_transaction():
        context.run_migrations()
    logger.info("Offline migrations completed successfully")


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
        transaction_per_migration=True,
    )

    with context.begin_transaction():
        context.run_migrations()
    logger.info("Migration execution completed successfully")


async def run_async_migrations() -> None:
    """
    Run migrations in 'online' mode with an async engine.
    """
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    except Exception as e:
        logger.error(
            "Async migration failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await connectable.dispose()


def run_migrations_online() -> None:
    logger.info("Running migrations in online mode")
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
