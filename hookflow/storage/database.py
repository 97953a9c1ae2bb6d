# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Database Connection Management — Async SQLAlchemy 2.0.

PostgreSQL (asyncpg) in production; any async dialect elsewhere.
"""

from __future__ import annotations

from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from hookflow.core.config import settings
from hookflow.core.errors import ConfigError


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all ORM models."""
    pass


# ── Engine & Session Factory ────────────────────────────────

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"echo": False}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,
        "echo": False,
    }


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton."""
    global _engine
    if _engine is None:
        url = settings.DATABASE_URL
        if settings.is_prod and not url.startswith("postgresql"):
            raise ConfigError("Production deployments require a PostgreSQL DATABASE_URL", status_code=500)
        _engine = create_async_engine(url, **_engine_kwargs(url))
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory singleton."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: yields an async DB session, committed on success."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Lifecycle ───────────────────────────────────────────────

async def init_db() -> None:
    """Verify database connection on startup."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))


async def ping_db() -> bool:
    try:
        await init_db()
    except Exception:
        return False
    return True


async def close_db() -> None:
    """Dispose engine on shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def create_all_tables() -> None:
    """Create all tables from ORM metadata (dev/test use)."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all_tables() -> None:
    """Drop all tables (test cleanup only)."""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ── Test Support ────────────────────────────────────────────

def override_engine_for_test(engine: AsyncEngine) -> None:
    """Inject a test engine (e.g. SQLite via aiosqlite)."""
    global _engine, _session_factory
    _engine = engine
    _session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
