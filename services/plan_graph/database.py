"""
Database Configuration Module
Async engine, session factory and declarative base for the plan graph tables
"""
import os
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

# Database URL from environment
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for ``url``.

    PostgreSQL (asyncpg) gets pre-ping and recycling. SQLite gets foreign key
    enforcement, and in-memory databases share one connection so every
    session sees the same data.
    """
    if not _is_sqlite(url):
        return create_async_engine(
            url,
            echo=echo,
            pool_pre_ping=True,              # Verify connections before use
            pool_recycle=3600,               # Recycle connections after 1 hour
        )

    kwargs = {"echo": echo, "connect_args": {"check_same_thread": False}}
    if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
        kwargs["poolclass"] = StaticPool
    else:
        kwargs["connect_args"]["timeout"] = 30

    sqlite_engine = create_async_engine(url, **kwargs)

    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(DATABASE_URL)

# Async session factory
AsyncSessionLocal = build_session_factory(engine)

# Base for models
Base = declarative_base()


async def create_tables(bind: AsyncEngine | None = None) -> None:
    """Create all plan graph tables (idempotent)."""
    import models  # noqa: F401  registers mappers on Base.metadata

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db_connections():
    """
    Gracefully close all database connections.
    Call this on application shutdown.
    """
    await engine.dispose()
