# ABOUTME: Shared test fixtures for rss-aggregator.
# ABOUTME: Provides a file-backed async SQLite store, an in-memory fake store, and feed builders.

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime
from email.utils import format_datetime
from typing import Any

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rss_aggregator.config import Settings
from rss_aggregator.db.models import Feed
from rss_aggregator.db.repository import SqlFeedStore
from rss_aggregator.db.session import build_engine, create_tables
from rss_aggregator.errors import PersistenceError
from rss_aggregator.models import FeedMetadataUpdate, FeedStatus, KeyedEntry, ScheduleUpdate


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        db_path=tmp_path / "test.db",
        feed_timeout=2.0,
        refresh_interval_minutes=15,
        retry_interval_minutes=15,
        max_consecutive_errors=3,
        max_concurrent_refreshes=3,
        cron_secret="s3cret",
        admin_token="adm1n-t0ken",
        admin_ids="admin-1, admin-2",
    )


@pytest.fixture
async def session_factory(settings) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Async SQLite database in a temp file; each store call gets its own connection."""
    engine = build_engine(settings.database_url)
    await create_tables(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory) -> SqlFeedStore:
    return SqlFeedStore(session_factory)


def build_rss(items: list[dict[str, Any]], title: str = "Example Feed") -> bytes:
    """Render a minimal RSS 2.0 document. Item keys: title, link, guid, pub_date, description."""
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<rss version="2.0"><channel>',
        f"<title>{title}</title>",
        "<link>https://example.com/</link>",
        "<description>Example description</description>",
    ]
    for item in items:
        parts.append("<item>")
        if "title" in item:
            parts.append(f"<title>{item['title']}</title>")
        if "link" in item:
            parts.append(f"<link>{item['link']}</link>")
        if "guid" in item:
            parts.append(f"<guid>{item['guid']}</guid>")
        if "pub_date" in item:
            parts.append(f"<pubDate>{format_datetime(item['pub_date'])}</pubDate>")
        if "description" in item:
            parts.append(f"<description><![CDATA[{item['description']}]]></description>")
        parts.append("</item>")
    parts.append("</channel></rss>")
    return "".join(parts).encode()


@pytest.fixture
def rss() -> Callable[..., bytes]:
    return build_rss


def feed_transport(routes: dict[str, Any]) -> httpx.MockTransport:
    """Mock transport keyed by URL. Values are bytes, an httpx.Response, or an async handler."""

    async def handler(request: httpx.Request) -> httpx.Response:
        target = routes.get(str(request.url))
        if target is None:
            return httpx.Response(404)
        if isinstance(target, bytes):
            return httpx.Response(
                200, content=target, headers={"content-type": "application/rss+xml"}
            )
        if isinstance(target, httpx.Response):
            return target
        return await target(request)

    return httpx.MockTransport(handler)


@pytest.fixture
def mock_client() -> Callable[[dict[str, Any]], httpx.AsyncClient]:
    """Build an AsyncClient that serves feeds from a URL->payload mapping."""
    return lambda routes: httpx.AsyncClient(transport=feed_transport(routes))


@pytest.fixture
def add_feed(store) -> Callable[..., Any]:
    """Insert a feed row with explicit scheduling state."""

    async def _add(
        url: str,
        title: str = "Feed",
        next_fetch_at: datetime | None = None,
        status: FeedStatus = FeedStatus.ACTIVE,
        **extra: Any,
    ) -> Feed:
        values: dict[str, Any] = {
            "url": url,
            "title": title,
            "next_fetch_at": next_fetch_at,
            "status": status.value,
            "last_refreshed_at": None,
            "last_entry_at": None,
            "refresh_interval_minutes": None,
            "error_count": 0,
            "error_message": None,
            "etag": None,
            "last_modified": None,
            "filter_keywords": None,
            "link": None,
            "description": None,
            "image_url": None,
        }
        values.update(extra)
        async with store._session_factory() as session:
            feed = Feed(**values)
            session.add(feed)
            await session.commit()
            return feed

    return _add


def make_feed(feed_id: int, url: str | None = None, **overrides: Any) -> Feed:
    """Transient Feed with every scheduling field populated."""
    values: dict[str, Any] = {
        "id": feed_id,
        "url": url or f"https://feeds.example.com/{feed_id}.xml",
        "title": f"Feed {feed_id}",
        "status": FeedStatus.ACTIVE.value,
        "next_fetch_at": None,
        "last_refreshed_at": None,
        "last_entry_at": None,
        "refresh_interval_minutes": None,
        "error_count": 0,
        "error_message": None,
        "etag": None,
        "last_modified": None,
        "filter_keywords": None,
        "link": None,
        "description": None,
        "image_url": None,
        "translation_enabled": False,
        "created_at": datetime.now(UTC),
    }
    values.update(overrides)
    return Feed(**values)


class InMemoryFeedStore:
    """FeedStore fake holding feeds and articles in dicts."""

    def __init__(self, feeds: list[Feed] | None = None):
        self.feeds: dict[int, Feed] = {f.id: f for f in feeds or []}
        self.articles: dict[int, dict[str, KeyedEntry]] = {}
        self.schedules: dict[int, ScheduleUpdate] = {}
        self.admin_logs: list[dict[str, Any]] = []
        self.fail_due_query = False
        self.fail_schedule_for: set[int] = set()
        self.fail_audit = False

    async def find_feeds_due_for_refresh(self, now: datetime) -> list[Feed]:
        if self.fail_due_query:
            raise PersistenceError("find_feeds_due_for_refresh failed: database is locked")
        return [
            f
            for f in self.feeds.values()
            if f.status == FeedStatus.ACTIVE and (f.next_fetch_at is None or f.next_fetch_at <= now)
        ]

    async def find_feeds_by_ids(self, feed_ids: list[int]) -> list[Feed]:
        return [self.feeds[i] for i in feed_ids if i in self.feeds]

    async def find_all_feeds(self) -> list[Feed]:
        return list(self.feeds.values())

    async def find_existing_article_keys(self, feed_id: int, keys: list[str]) -> set[str]:
        stored = self.articles.get(feed_id, {})
        return {k for k in keys if k in stored}

    async def insert_articles(self, feed_id: int, entries: list[KeyedEntry]) -> int:
        stored = self.articles.setdefault(feed_id, {})
        inserted = 0
        for keyed in entries:
            if keyed.natural_key not in stored:
                stored[keyed.natural_key] = keyed
                inserted += 1
        return inserted

    async def update_feed_metadata(self, feed_id: int, update_data: FeedMetadataUpdate) -> None:
        for name, value in update_data.model_dump(exclude_none=True).items():
            setattr(self.feeds[feed_id], name, value)

    async def update_feed_schedule(self, feed_id: int, schedule: ScheduleUpdate) -> None:
        if feed_id in self.fail_schedule_for:
            raise PersistenceError("update_feed_schedule failed: disk I/O error")
        feed = self.feeds[feed_id]
        feed.last_refreshed_at = schedule.last_refreshed_at
        feed.next_fetch_at = schedule.next_fetch_at
        feed.status = schedule.status.value
        feed.error_count = schedule.error_count
        feed.error_message = schedule.error_message
        self.schedules[feed_id] = schedule

    async def record_admin_action(self, **entry: Any) -> None:
        if self.fail_audit:
            raise PersistenceError("record_admin_action failed: read-only database")
        self.admin_logs.append(entry)


@pytest.fixture
def memory_store() -> InMemoryFeedStore:
    return InMemoryFeedStore()


@pytest.fixture
def feed_factory() -> Callable[..., Feed]:
    return make_feed
