# ABOUTME: Feed scheduler: selects due feeds and computes the next fetch time.
# ABOUTME: Failed feeds retry after a fixed interval and go to ERROR after repeated failures.

from datetime import datetime, timedelta

import structlog

from rss_aggregator.config import Settings, get_settings
from rss_aggregator.db.models import Feed
from rss_aggregator.models import FeedStatus, RefreshOutcome, ScheduleUpdate
from rss_aggregator.services.store import FeedStore

log = structlog.get_logger()


def is_due(feed: Feed, now: datetime) -> bool:
    """Whether a feed would be picked by select_due at `now`."""
    if feed.status != FeedStatus.ACTIVE:
        return False
    return feed.next_fetch_at is None or feed.next_fetch_at <= now


class FeedScheduler:
    """Owns refresh eligibility and cadence for feeds."""

    def __init__(self, store: FeedStore, settings: Settings | None = None):
        self.store = store
        self.settings = settings or get_settings()

    async def select_due(self, now: datetime) -> list[Feed]:
        """All ACTIVE feeds whose next fetch time is unset or not after `now`."""
        feeds = await self.store.find_feeds_due_for_refresh(now)
        log.info("due_feeds_selected", count=len(feeds), now=now.isoformat())
        return feeds

    def cadence(self, feed: Feed) -> timedelta:
        minutes = feed.refresh_interval_minutes or self.settings.refresh_interval_minutes
        return timedelta(minutes=max(minutes, 1))

    def retry_interval(self) -> timedelta:
        return timedelta(minutes=max(self.settings.retry_interval_minutes, 1))

    def compute_next_fetch_at(self, feed: Feed, outcome: RefreshOutcome, now: datetime) -> datetime:
        if outcome.success:
            return now + self.cadence(feed)
        return now + self.retry_interval()

    def next_schedule(self, feed: Feed, outcome: RefreshOutcome, now: datetime) -> ScheduleUpdate:
        """Scheduling fields to persist after a refresh attempt."""
        next_fetch_at = self.compute_next_fetch_at(feed, outcome, now)

        if outcome.success:
            # A forced refresh never un-pauses a feed, but it does clear ERROR
            paused = feed.status == FeedStatus.PAUSED
            return ScheduleUpdate(
                last_refreshed_at=now,
                next_fetch_at=next_fetch_at,
                status=FeedStatus.PAUSED if paused else FeedStatus.ACTIVE,
                error_count=0,
                error_message=None,
            )

        error_count = (feed.error_count or 0) + 1
        status = FeedStatus(feed.status)
        if status == FeedStatus.ACTIVE and error_count >= self.settings.max_consecutive_errors:
            status = FeedStatus.ERROR
            log.warning("feed_disabled_after_errors", feed_id=feed.id, error_count=error_count)

        return ScheduleUpdate(
            last_refreshed_at=now,
            next_fetch_at=next_fetch_at,
            status=status,
            error_count=error_count,
            error_message=outcome.error,
        )

    async def reschedule(
        self, feed: Feed, outcome: RefreshOutcome, now: datetime
    ) -> ScheduleUpdate:
        """Persist the next schedule for `feed`. Raises PersistenceError on write failure."""
        schedule = self.next_schedule(feed, outcome, now)
        await self.store.update_feed_schedule(feed.id, schedule)
        log.debug(
            "feed_rescheduled",
            feed_id=feed.id,
            next_fetch_at=schedule.next_fetch_at.isoformat(),
            status=schedule.status,
        )
        return schedule
