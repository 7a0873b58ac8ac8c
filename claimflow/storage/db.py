# ==== DATABASE CONNECTION AND SESSION MANAGEMENT ==== #

"""
Database connection and session management for claimflow.

This module provides async SQLAlchemy connectivity, driver normalization
for PostgreSQL (asyncpg) and SQLite (aiosqlite), and session lifecycle
management. The workflow engine opens one session per operation and runs
its read-check-write sequence inside a single transaction.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import uuid4

from sqlalchemy.ext.asyncio import (
    create_async_engine, 
    async_sessionmaker, 
    AsyncSession,
    AsyncEngine
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from claimflow.settings import settings
from claimflow.observability.metrics import db_sessions_active


# ==== SQLALCHEMY CONFIGURATION ==== #

# SQLAlchemy base for model definitions
Base = declarative_base()

# Global engine and session factory instances
engine: AsyncEngine | None = None
SessionLocal: async_sessionmaker[AsyncSession] | None = None


# ==== DATABASE INITIALIZATION ==== #

def _normalize_url(db_url: str) -> str:
    """Force the async driver for PostgreSQL URLs."""
    if db_url.startswith("postgresql") and not db_url.startswith("postgresql+asyncpg://"):
        db_url = db_url.replace("postgresql+psycopg://", "postgresql+asyncpg://")
        db_url = db_url.replace("postgresql://", "postgresql+asyncpg://")
    
    # Fix SSL parameter for asyncpg compatibility
    if "sslmode=require" in db_url:
        db_url = db_url.replace("sslmode=require", "ssl=require")
    return db_url


def _connect_args(db_url: str) -> dict:
    if not db_url.startswith("postgresql+asyncpg://"):
        return {}
    
    # PgBouncer compatibility - use unique statement names to avoid collisions
    import asyncpg
    
    class _UniqueStmtConnection(asyncpg.Connection):
        """asyncpg Connection with UUID-based prepared-statement IDs."""
        
        def _get_unique_id(self, prefix: str) -> str:
            return f"__asyncpg_{prefix}_{uuid4().hex}__"
    
    return {
        "statement_cache_size": 0,
        "connection_class": _UniqueStmtConnection,
        "server_settings": {
            "application_name": settings.SERVICE_NAME,
            "timezone": "UTC"
        }
    }


def init_database(database_url: str | None = None) -> None:
    """
    Initialize database engine and session factory.
    
    Sets up the async SQLAlchemy engine for the configured URL. Calling it
    again is a no-op until ``close_database`` has disposed the engine.
    
    Args:
        database_url: Override for ``settings.DATABASE_URL`` (tests, CLI)
    """
    global engine, SessionLocal
    
    if engine is not None:
        return
    
    db_url = _normalize_url(database_url or settings.DATABASE_URL)
    is_pooler = "pooler" in db_url
    
    engine_kwargs = {
        "echo": settings.DATABASE_ECHO,
        "connect_args": _connect_args(db_url),
    }
    if is_pooler:
        # Use NullPool for PgBouncer to avoid double pooling
        engine_kwargs["poolclass"] = NullPool
    
    engine = create_async_engine(db_url, **engine_kwargs)
    
    # Create session factory
    SessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory, initializing the engine on first use."""
    if SessionLocal is None:
        init_database()
    return SessionLocal


async def create_schema() -> None:
    """Create all tables for the registered models (dev and tests)."""
    # Register models on Base.metadata
    from claimflow.storage import models  # noqa: F401
    
    if engine is None:
        init_database()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session with automatic cleanup.
    
    Yields:
        AsyncSession: Database session, committed on clean exit
        
    Raises:
        Exception: Any error raised inside the block, after rollback
    """
    factory = get_session_factory()
    
    async with factory() as session:
        try:
            db_sessions_active.inc()
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            db_sessions_active.dec()


async def close_database() -> None:
    """Close database connections on shutdown."""
    global engine, SessionLocal
    if engine is not None:
        await engine.dispose()
        engine = None
        SessionLocal = None
