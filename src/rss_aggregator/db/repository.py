# ABOUTME: SQLAlchemy implementation of the FeedStore persistence port.
# ABOUTME: Each call runs in its own short session; SQLAlchemy errors surface as PersistenceError.

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rss_aggregator.db.models import AdminLog, Article, Feed
from rss_aggregator.errors import PersistenceError
from rss_aggregator.models import FeedMetadataUpdate, FeedStatus, KeyedEntry, ScheduleUpdate

log = structlog.get_logger()

DEFAULT_TITLE = "Untitled"
INSERT_CHUNK_SIZE = 90
KEY_QUERY_CHUNK_SIZE = 500


class SqlFeedStore:
    """Feed and article persistence backed by an async session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            log.error("store_error", operation=operation, error=str(e))
            raise PersistenceError(f"{operation} failed: {e}") from e

    async def find_feeds_due_for_refresh(self, now: datetime) -> list[Feed]:
        async with self._session("find_feeds_due_for_refresh") as session:
            result = await session.execute(
                select(Feed)
                .where(
                    Feed.status == FeedStatus.ACTIVE.value,
                    or_(Feed.next_fetch_at.is_(None), Feed.next_fetch_at <= now),
                )
                .order_by(Feed.id)
            )
            return list(result.scalars().all())

    async def find_feeds_by_ids(self, feed_ids: list[int]) -> list[Feed]:
        if not feed_ids:
            return []
        async with self._session("find_feeds_by_ids") as session:
            result = await session.execute(
                select(Feed).where(Feed.id.in_(feed_ids)).order_by(Feed.id)
            )
            return list(result.scalars().all())

    async def find_all_feeds(self) -> list[Feed]:
        async with self._session("find_all_feeds") as session:
            result = await session.execute(select(Feed).order_by(Feed.id))
            return list(result.scalars().all())

    async def find_existing_article_keys(self, feed_id: int, keys: list[str]) -> set[str]:
        if not keys:
            return set()
        found: set[str] = set()
        async with self._session("find_existing_article_keys") as session:
            for start in range(0, len(keys), KEY_QUERY_CHUNK_SIZE):
                result = await session.execute(
                    select(Article.natural_key).where(
                        Article.feed_id == feed_id,
                        Article.natural_key.in_(keys[start : start + KEY_QUERY_CHUNK_SIZE]),
                    )
                )
                found.update(result.scalars().all())
        return found

    async def insert_articles(self, feed_id: int, entries: list[KeyedEntry]) -> int:
        """Insert entries in source order; rows hitting the unique key are skipped."""
        if not entries:
            return 0

        created_at = datetime.now(UTC)
        rows = [
            {
                "feed_id": feed_id,
                "natural_key": keyed.natural_key,
                "guid": keyed.entry.guid,
                "title": keyed.entry.title or DEFAULT_TITLE,
                "link": keyed.entry.link,
                "author": keyed.entry.author,
                "content": keyed.entry.content,
                "content_snippet": keyed.entry.content_snippet,
                "published_at": keyed.entry.published_at,
                "created_at": created_at,
            }
            for keyed in entries
        ]

        inserted = 0
        async with self._session("insert_articles") as session:
            # Chunks stay under SQLite's 999 bound-parameter limit
            for start in range(0, len(rows), INSERT_CHUNK_SIZE):
                stmt = (
                    sqlite_insert(Article.__table__)
                    .values(rows[start : start + INSERT_CHUNK_SIZE])
                    .on_conflict_do_nothing(index_elements=["feed_id", "natural_key"])
                )
                result = await session.execute(stmt)
                inserted += max(result.rowcount, 0)
            await session.commit()

        if inserted < len(rows):
            log.info("duplicate_articles_skipped", feed_id=feed_id, skipped=len(rows) - inserted)
        return inserted

    async def update_feed_metadata(self, feed_id: int, update_data: FeedMetadataUpdate) -> None:
        values = update_data.model_dump(exclude_none=True)
        if not values:
            return
        async with self._session("update_feed_metadata") as session:
            await session.execute(update(Feed).where(Feed.id == feed_id).values(**values))
            await session.commit()

    async def update_feed_schedule(self, feed_id: int, schedule: ScheduleUpdate) -> None:
        async with self._session("update_feed_schedule") as session:
            await session.execute(
                update(Feed)
                .where(Feed.id == feed_id)
                .values(
                    last_refreshed_at=schedule.last_refreshed_at,
                    next_fetch_at=schedule.next_fetch_at,
                    status=schedule.status.value,
                    error_count=schedule.error_count,
                    error_message=schedule.error_message,
                )
            )
            await session.commit()

    async def record_admin_action(
        self,
        admin_id: str,
        action: str,
        target_type: str | None,
        target_id: str | None,
        details: dict[str, Any] | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        async with self._session("record_admin_action") as session:
            session.add(
                AdminLog(
                    admin_id=admin_id,
                    action=action,
                    target_type=target_type,
                    target_id=target_id,
                    details=details,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )
            await session.commit()

    async def add_feed(
        self,
        url: str,
        title: str,
        refresh_interval_minutes: int | None = None,
        filter_keywords: list[str] | None = None,
    ) -> Feed:
        """Subscribe to a feed. It is eligible for refresh immediately."""
        async with self._session("add_feed") as session:
            feed = Feed(
                url=url,
                title=title,
                status=FeedStatus.ACTIVE.value,
                refresh_interval_minutes=refresh_interval_minutes,
                filter_keywords=filter_keywords or None,
            )
            session.add(feed)
            await session.commit()
            return feed
