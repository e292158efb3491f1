"""
Database Infrastructure
=======================

Async PostgreSQL access (SQLAlchemy 2.0 + asyncpg).

Every unit of work is one session and one transaction: it commits on
normal exit and rolls back on error. Ticket changes and the outbox events
describing them are written through the same session, so they commit or
vanish together.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import MetaData, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from campusdesk.config import settings
from campusdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

# Stable constraint names so migrations can refer to them
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base for ticket and outbox models."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def init_database() -> AsyncEngine:
    """
    Create the engine and session factory. Called once at startup.

    Connections report the worker id as their application name, which
    makes outbox claims traceable in pg_stat_activity.
    """
    global _engine, _session_maker

    # asyncpg expects ssl= rather than libpq's sslmode=
    database_url = settings.database_url.replace("sslmode=", "ssl=")

    _engine = create_async_engine(
        database_url,
        echo=settings.debug,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        connect_args={"server_settings": {"application_name": settings.worker_id}},
    )
    _session_maker = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    logger.info(
        "Database engine created",
        extra={"pool_size": settings.db_pool_size, "worker_id": settings.worker_id}
    )
    return _engine


async def close_database() -> None:
    """Dispose of pooled connections. Called at shutdown."""
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None


@asynccontextmanager
async def unit_of_work() -> AsyncGenerator[AsyncSession, None]:
    """
    One session, one transaction.

    Raises:
        RuntimeError: init_database() has not run
    """
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with _session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency: the request's unit of work.

    The commit happens before the response is sent, so background tasks
    scheduled by the endpoint see the committed rows.
    """
    async with unit_of_work() as session:
        yield session


async def ping_database() -> bool:
    """Readiness probe: True when a trivial query succeeds."""
    if _engine is None:
        return False
    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database ping failed", extra={"error": str(e)})
        return False


async def create_tables() -> None:
    """
    Create all tables. Development only; production runs migrations.
    """
    # Register every model on Base.metadata
    import campusdesk.tickets.infrastructure.models  # noqa: F401
    import campusdesk.notifications.infrastructure.models  # noqa: F401

    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
