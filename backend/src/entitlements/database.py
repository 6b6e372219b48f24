"""Database session management with async SQLAlchemy."""
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from entitlements.config import settings


def _engine_options(url: str) -> dict[str, Any]:
    """Pool options for the configured backend (SQLite has no sized pool)."""
    if url.startswith("sqlite"):
        return {"connect_args": {"timeout": 30}}
    return {"pool_pre_ping": True, "pool_size": 20, "max_overflow": 10}


def configure_sqlite_transactions(async_engine: AsyncEngine) -> None:
    """
    Make SQLite transactions behave like the production database.

    pysqlite's implicit BEGIN breaks SAVEPOINT handling, so transactions are
    started explicitly. BEGIN IMMEDIATE takes the write lock up front, which
    serializes concurrent writers instead of failing them on lock upgrade.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):  # noqa: ANN001
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _begin_immediate(conn):  # noqa: ANN001
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_for(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for a database URL."""
    async_engine = create_async_engine(url, echo=echo, **_engine_options(url))
    if async_engine.dialect.name == "sqlite":
        configure_sqlite_transactions(async_engine)
    return async_engine


# Create async engine
engine = create_engine_for(settings.database_url, echo=settings.debug)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


# Declarative base for all models
Base = declarative_base()
