"""
Database connection and session management.

Uses SQLite with aiosqlite for async support.
"""

import os
import logging
from datetime import datetime
from typing import AsyncGenerator, Callable, Optional
from contextlib import AbstractAsyncContextManager, asynccontextmanager

import pytz

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from swingsetups.db.models import Base
from swingsetups.core.config import settings

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


def to_db_time(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite stores naive UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.utc).replace(tzinfo=None)


def from_db_time(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    return dt.replace(tzinfo=pytz.utc) if dt.tzinfo is None else dt


# Database path - create data directory if needed
DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "data")

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def _default_url() -> str:
    if settings.database_url:
        return settings.database_url
    os.makedirs(DATA_DIR, exist_ok=True)
    return f"sqlite+aiosqlite:///{os.path.join(DATA_DIR, 'swingsetups.db')}"


def _create_engine(url: str) -> AsyncEngine:
    if url.endswith(":memory:") or url.endswith("://"):
        # In-memory SQLite: one shared connection or every session sees an empty DB
        return create_async_engine(
            url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(
        url,
        echo=False,  # Set to True for SQL debugging
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def _ensure_engine() -> async_sessionmaker:
    global _engine, _session_factory
    if _session_factory is None:
        _engine = _create_engine(_default_url())
        _session_factory = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def init_db(url: Optional[str] = None) -> None:
    """
    Initialize the database - create all tables.
    Called on application startup. Passing a URL replaces the current engine.
    """
    global _engine, _session_factory
    if url is not None:
        if _engine is not None:
            await _engine.dispose()
        _engine = _create_engine(url)
        _session_factory = async_sessionmaker(
            _engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    else:
        _ensure_engine()

    try:
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Database initialized at: {_engine.url}")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db() -> None:
    """
    Close database connections.
    Called on application shutdown.
    """
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connections closed")
    _engine = None
    _session_factory = None


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for database sessions.
    Use when not in a FastAPI route.
    """
    async with _ensure_engine()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
