"""Async database engine and session management."""

import logging

from sqlalchemy import text
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from callcoach.app.config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by every ORM model."""
    pass


settings = get_settings()

# Auto-detect driver from DATABASE_URL
_is_sqlite = "sqlite" in settings.database_url
_connect_args = {}
if _is_sqlite:
    _connect_args["check_same_thread"] = False
    _connect_args["timeout"] = 30  # seconds to wait for the write lock

_engine_kwargs = {
    "echo": False,  # Set True only when debugging SQL queries, very verbose
    "connect_args": _connect_args,
}
if not _is_sqlite:
    _engine_kwargs["pool_size"] = 5
    _engine_kwargs["max_overflow"] = 10

engine = create_async_engine(settings.database_url, **_engine_kwargs)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """Request-scoped session for FastAPI ``Depends``."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


# Columns added after the first release of sales_calls. Older databases that
# predate them are what the figures aggregator's schema-drift fallback covers.
_MIGRATIONS = [
    "ALTER TABLE sales_calls ADD COLUMN analysis_intent VARCHAR(20)",
    "ALTER TABLE sales_calls ADD COLUMN original_call_id VARCHAR(36)",
    "ALTER TABLE sales_calls ADD COLUMN call_date DATETIME",
    "ALTER TABLE sales_calls ADD COLUMN call_metadata JSON",
    "ALTER TABLE call_analyses ADD COLUMN prospect_difficulty JSON",
]


async def init_db():
    """Create missing tables and apply additive column migrations."""
    import callcoach.domain.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # WAL lets background analysis runs write while requests read.
    if _is_sqlite:
        async with engine.begin() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA busy_timeout=30000"))

        # SQLite has no ADD COLUMN IF NOT EXISTS; a duplicate column error
        # means the migration already ran.
        for stmt in _MIGRATIONS:
            try:
                async with engine.begin() as conn:
                    await conn.execute(text(stmt))
            except (OperationalError, ProgrammingError):
                logger.debug("Migration already applied: %s", stmt)
