"""Engine and session scopes for Call Bridge.

Everything that touches the database goes through a *session scope*: a
zero-argument callable returning an async context manager that commits
on success and rolls back on error. The webhook path, the bridge
workers and the CLI all share :func:`get_db_context`; tests build their
own scope over a private engine with :func:`session_scope_for`.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncContextManager, AsyncGenerator, Callable

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from call_bridge.config import get_settings
from call_bridge.db.base import Base


SessionScope = Callable[[], AsyncContextManager[AsyncSession]]

# SQLite waits this long on a locked database before failing
SQLITE_BUSY_TIMEOUT_SECONDS = 15

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an engine with pool options suited to the backend."""
    parsed = make_url(url)
    options: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}

    if parsed.get_backend_name() == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
        }
    else:
        # Webhook bursts and detached bridge tasks share this pool
        options.update(pool_size=10, max_overflow=20, pool_timeout=30, pool_recycle=1800)

    return create_async_engine(url, **options)


def get_engine() -> AsyncEngine:
    global _engine

    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database.url, echo=settings.database.echo)
    return _engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory

    if _session_factory is None:
        _session_factory = make_session_factory(get_engine())
    return _session_factory


def session_scope_for(
    session_factory: async_sessionmaker[AsyncSession] | Callable[[], async_sessionmaker[AsyncSession]],
) -> SessionScope:
    """Build a commit/rollback scope over a session factory.

    ``session_factory`` may also be a zero-argument callable returning the
    factory, which defers engine creation until the first session.
    """

    @asynccontextmanager
    async def scope() -> AsyncGenerator[AsyncSession, None]:
        factory = session_factory
        if not isinstance(factory, async_sessionmaker):
            factory = factory()
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return scope


# Shared scope over the configured database
get_db_context: SessionScope = session_scope_for(get_session_factory)


async def init_db() -> None:
    """Create all tables that do not exist yet."""
    import call_bridge.db.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def create_test_engine(url: str = "sqlite+aiosqlite:///:memory:") -> AsyncEngine:
    """Engine with every table created, for tests."""
    import call_bridge.db.models  # noqa: F401

    engine = build_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine
