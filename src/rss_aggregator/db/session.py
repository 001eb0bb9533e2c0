# ABOUTME: Async SQLite engine and session factory used by the feed store.
# ABOUTME: Enables foreign keys per connection so deleting a feed cascades to its articles.

import structlog
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from rss_aggregator.config import get_settings
from rss_aggregator.db.models import Base

log = structlog.get_logger()

# Seconds a writer waits on a locked database before failing
SQLITE_BUSY_TIMEOUT = 30

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _enable_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine for a SQLite URL."""
    engine = create_async_engine(
        database_url, echo=False, connect_args={"timeout": SQLITE_BUSY_TIMEOUT}
    )
    event.listen(engine.sync_engine, "connect", _enable_foreign_keys)
    return engine


def get_engine() -> AsyncEngine:
    """Get or create the process-wide engine."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_settings().database_url)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """Create all tables if they don't exist."""
    await create_tables(get_engine())
    log.info("database_initialized", url=get_settings().database_url)


async def close_db() -> None:
    """Dispose of the engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        log.info("database_closed")
