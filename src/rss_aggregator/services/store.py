# ABOUTME: Persistence port consumed by the scheduler, orchestrator, and triggers.
# ABOUTME: Implemented by SqlFeedStore; tests may substitute any object with these methods.

from datetime import datetime
from typing import Any, Protocol

from rss_aggregator.db.models import Feed
from rss_aggregator.models import FeedMetadataUpdate, KeyedEntry, ScheduleUpdate


class FeedStore(Protocol):
    async def find_feeds_due_for_refresh(self, now: datetime) -> list[Feed]: ...

    async def find_feeds_by_ids(self, feed_ids: list[int]) -> list[Feed]: ...

    async def find_all_feeds(self) -> list[Feed]: ...

    async def find_existing_article_keys(self, feed_id: int, keys: list[str]) -> set[str]: ...

    async def insert_articles(self, feed_id: int, entries: list[KeyedEntry]) -> int:
        """Insert entries in order, skipping keys already stored. Returns rows inserted."""
        ...

    async def update_feed_metadata(self, feed_id: int, update_data: FeedMetadataUpdate) -> None: ...

    async def update_feed_schedule(self, feed_id: int, schedule: ScheduleUpdate) -> None: ...

    async def record_admin_action(
        self,
        admin_id: str,
        action: str,
        target_type: str | None,
        target_id: str | None,
        details: dict[str, Any] | None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None: ...
