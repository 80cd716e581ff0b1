"""Async database engine, session factory, and lifespan management.

Uses SQLAlchemy 2.0 async with asyncpg driver for PostgreSQL.
Redis client for rate limiting and cross-process notification pub/sub.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator, Callable, Coroutine
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from carsure.config import settings

logger = logging.getLogger(__name__)

# Keys in ``AsyncSession.info`` holding coroutines to run once the unit of
# work commits, or once it is rolled back.
AFTER_COMMIT_KEY = "after_commit"
AFTER_ROLLBACK_KEY = "after_rollback"

SessionHook = Callable[[], Coroutine[Any, Any, None]]

# ── Async PostgreSQL engine ──────────────────────────────────────────

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=settings.log_level == "DEBUG",
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
    pool_recycle=3600,
)

# ── Session factory ──────────────────────────────────────────────────

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def add_after_commit(db: AsyncSession, hook: SessionHook) -> None:
    """Queue ``hook`` to run after ``db`` commits successfully."""
    db.info.setdefault(AFTER_COMMIT_KEY, []).append(hook)


def add_after_rollback(db: AsyncSession, hook: SessionHook) -> None:
    """Queue ``hook`` to run if ``db`` is rolled back (e.g. remove written files)."""
    db.info.setdefault(AFTER_ROLLBACK_KEY, []).append(hook)


async def _run_hooks(db: AsyncSession, key: str) -> None:
    hooks: list[SessionHook] = db.info.pop(key, [])
    for hook in hooks:
        try:
            await hook()
        except Exception:
            logger.exception("%s hook %s failed", key, getattr(hook, "__name__", hook))


async def run_after_commit(db: AsyncSession) -> None:
    """Run and clear queued post-commit hooks.

    Hooks are side effects that must only be visible once data is durable
    (live pushes). A failing hook is logged and never affects the others.
    """
    db.info.pop(AFTER_ROLLBACK_KEY, None)
    await _run_hooks(db, AFTER_COMMIT_KEY)


async def run_after_rollback(db: AsyncSession) -> None:
    """Drop queued post-commit hooks and run the rollback ones."""
    db.info.pop(AFTER_COMMIT_KEY, None)
    await _run_hooks(db, AFTER_ROLLBACK_KEY)


async def commit_session(db: AsyncSession) -> None:
    """Commit the request's unit of work, then run its post-commit hooks.

    Mutating handlers call this before building their response, so a
    failed commit reaches the client as an error envelope.
    """
    await db.commit()
    await run_after_commit(db)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI — yields an async DB session.

    Usage:
        @router.put("/example")
        async def handler(session: AsyncSession = Depends(get_session)):
            ...
            await commit_session(session)
            return {...}
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            await run_after_rollback(session)
            raise
        await run_after_commit(session)


# ── Redis client ─────────────────────────────────────────────────────

redis_client: aioredis.Redis = aioredis.from_url(
    settings.db.redis_url,
    decode_responses=True,
)


# ── Lifespan helpers ─────────────────────────────────────────────────


async def init_db() -> None:
    """Initialize database connection pool.

    Called during FastAPI lifespan startup. In production, tables are
    created via Alembic migrations — this only verifies connectivity.
    """
    async with engine.begin() as conn:
        # Import here to ensure all models are registered with Base.metadata
        from carsure.models.base import Base  # noqa: F401
        import carsure.models  # noqa: F401

        if not settings.is_production:
            await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose database engine and Redis connections.

    Called during FastAPI lifespan shutdown.
    """
    await engine.dispose()
    await redis_client.aclose()


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Context manager for database lifecycle.

    Usage in FastAPI lifespan:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with db_lifespan():
                yield
    """
    await init_db()
    try:
        yield
    finally:
        await close_db()
