"""Database connection and session management."""

from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from building_finance.services.config import load_config


def create_engine_for(database_url: str) -> AsyncEngine:
    """Create an async engine; SQLite gets explicit BEGIN so SAVEPOINTs work.

    The per-flat SAVEPOINTs used during issuance need the driver to stop
    managing transactions itself (see SQLAlchemy's aiosqlite notes).
    """
    if not database_url.startswith("sqlite"):
        return create_async_engine(database_url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if ":memory:" in database_url:
        kwargs["poolclass"] = StaticPool
    engine = create_async_engine(database_url, **kwargs)

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# Engine from DATABASE_URL (or .env), SQLite by default
async_engine = create_engine_for(load_config().database_url)
AsyncSessionLocal = create_session_factory(async_engine)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Get async database session."""
    async with AsyncSessionLocal() as session:
        yield session


__all__ = [
    "async_engine",
    "AsyncSessionLocal",
    "create_engine_for",
    "create_session_factory",
    "get_async_session",
]
