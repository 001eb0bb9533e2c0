# ABOUTME: FastAPI application factory with database lifespan.
# ABOUTME: Exposes the cron and admin refresh triggers over HTTP.

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from rss_aggregator.config import Settings, get_settings
from rss_aggregator.db.repository import SqlFeedStore
from rss_aggregator.db.session import close_db, get_session_factory, init_db
from rss_aggregator.services.store import FeedStore

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Set up the database-backed store unless one was injected."""
    logger.info("app_startup")
    owns_db = app.state.store is None
    if owns_db:
        await init_db()
        app.state.store = SqlFeedStore(get_session_factory())
    yield
    logger.info("app_shutdown")
    if owns_db:
        await close_db()


def create_app(settings: Settings | None = None, store: FeedStore | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="rss-aggregator",
        description="Feed refresh scheduling and ingestion",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or get_settings()
    app.state.store = store

    from rss_aggregator.web.routes import router

    app.include_router(router)

    return app


app = create_app()
