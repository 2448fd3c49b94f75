"""Alembic environment for merchgen.

DATABASE_URL comes from settings, not alembic.ini. Online migrations run
over asyncpg with the same connect arguments as the app engine; offline
mode renders SQL for the same URL.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

import merchgen.models  # noqa: F401  registers every table on Base.metadata
from merchgen.core.config import get_settings
from merchgen.core.database import Base, engine_connect_args, to_async_url
from merchgen.core.logging import db_logger

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def database_url() -> str:
    return to_async_url(str(get_settings().database_url))


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of executing it."""
    context.configure(
        url=database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    head = str(context.get_head_revision() or "base")
    db_logger.migration_start(version=head, description=f"Upgrading to {head}")

    engine = create_async_engine(
        database_url(), poolclass=NullPool, connect_args=engine_connect_args()
    )
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    except Exception:
        db_logger.migration_end(version=head, success=False)
        raise
    finally:
        await engine.dispose()
    db_logger.migration_end(version=head, success=True)


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
