"""Async SQLAlchemy engine and session handling.

Two ways to get a session:
- ``get_session`` for FastAPI request handlers
- ``session_scope()`` for background pipeline runs and scheduled jobs,
  which outlive the request that started them

Both commit on success and roll back on error.

ERROR LOGGING REQUIREMENTS:
- Connection errors with masked connection string
- Sessions held longer than DB_SLOW_QUERY_THRESHOLD_MS at WARNING
- Rollbacks with the table named in the error, when it can be found
"""

import re
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from merchgen.core.config import get_settings
from merchgen.core.logging import db_logger, get_logger

logger = get_logger(__name__)

_TABLE_IN_ERROR = re.compile(
    r'relation "(?P<a>[^"]+)"|table \'?(?P<b>\w+)\'?|(?:INSERT INTO|UPDATE) "?(?P<c>\w+)"?',
    re.IGNORECASE,
)


class Base(DeclarativeBase):
    """Declarative base for merchgen tables."""


def to_async_url(db_url: str) -> str:
    """Rewrite a libpq-style URL to use the asyncpg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if db_url.startswith(prefix):
            return "postgresql+asyncpg://" + db_url[len(prefix):]
    return db_url


def engine_connect_args() -> dict[str, object]:
    """asyncpg connect arguments shared by the app engine and migrations."""
    settings = get_settings()
    args: dict[str, object] = {
        "timeout": settings.db_connect_timeout,
        "command_timeout": settings.db_command_timeout,
    }
    if settings.environment == "production":
        # asyncpg takes 'ssl', not libpq's 'sslmode'
        args["ssl"] = "require"
    return args


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False so ORM rows stay readable after the stage commits
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


class DatabaseManager:
    """Owns the process-wide engine and session factory."""

    def __init__(self) -> None:
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init_db() first.")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init_db() first.")
        return self._session_factory

    def bind(self, engine: AsyncEngine | None) -> None:
        """Attach an existing engine, or detach with None."""
        self._engine = engine
        self._session_factory = make_session_factory(engine) if engine else None

    def init_db(self) -> None:
        """Create the asyncpg engine from settings."""
        settings = get_settings()
        db_url = to_async_url(str(settings.database_url))

        try:
            engine = create_async_engine(
                db_url,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=settings.db_pool_timeout,
                pool_pre_ping=True,
                echo=settings.debug,
                connect_args=engine_connect_args(),
            )
        except Exception as e:
            db_logger.connection_error(e, db_url)
            raise

        self.bind(engine)
        logger.info(
            "Database engine initialized",
            extra={"pool_size": settings.db_pool_size},
        )

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self.bind(None)
        logger.info("Database connections closed")

    async def check_connection(self) -> bool:
        """Run ``SELECT 1``; False on any failure."""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            db_logger.connection_error(e, str(get_settings().database_url))
            return False
        return True


db_manager = DatabaseManager()


@asynccontextmanager
async def _managed_session(context: str) -> AsyncGenerator[AsyncSession, None]:
    threshold_ms = get_settings().db_slow_query_threshold_ms
    start_time = time.monotonic()

    async with db_manager.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            if isinstance(e, SQLAlchemyError):
                db_logger.transaction_failure(
                    e, table=_extract_table_from_error(e), context=context
                )
            raise
        finally:
            duration_ms = (time.monotonic() - start_time) * 1000
            if duration_ms > threshold_ms:
                db_logger.slow_query(query=context, duration_ms=duration_ms)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session."""
    async with _managed_session("request") as session:
        yield session


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Session for work that runs outside a request."""
    async with _managed_session("background") as session:
        yield session


def _extract_table_from_error(error: Exception) -> str | None:
    match = _TABLE_IN_ERROR.search(str(error))
    if match is None:
        return None
    return match.group("a") or match.group("b") or match.group("c")
