"""
Async SQLAlchemy engine and sessions.

PostgreSQL through asyncpg in production. Dedupe reservations, retry tasks and
the audit trail all live here, so this is the one dependency the gateway cannot
ingest without.

CRITICAL: expire_on_commit=False keeps a WebhookEvent readable after the ingest
transaction commits and the event is handed to the worker pool.
"""
import logging
from typing import AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


class Base(DeclarativeBase):
    pass


def _engine_options(settings) -> dict:
    options = {"pool_pre_ping": True}
    # SQLite (local runs) has no connection pool to size
    if make_url(settings.database_url).get_backend_name() != "sqlite":
        options["pool_size"] = settings.database_pool_size
        options["max_overflow"] = settings.database_max_overflow
    return options


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        from hookgate.config import get_settings
        settings = get_settings()
        _engine = create_async_engine(settings.database_url, **_engine_options(settings))
        logger.info(
            "Database engine created for %s",
            make_url(settings.database_url).render_as_string(hide_password=True),
        )
    return _engine


def get_session_factory() -> async_sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _session_factory


def async_session_factory() -> AsyncSession:
    """Open a session outside a request (worker pool, retry worker, maintenance)."""
    return get_session_factory()()


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: request-scoped session, committed on success."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
