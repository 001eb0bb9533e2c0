# ABOUTME: Refresh orchestrator: fetch, dedup, persist, and reschedule each feed of a batch.
# ABOUTME: Per-feed failures become failed outcomes; parallelism is bounded by a semaphore.

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import httpx
import structlog

from rss_aggregator.config import Settings, get_settings
from rss_aggregator.db.models import Feed
from rss_aggregator.errors import RefreshError
from rss_aggregator.models import FeedMetadataUpdate, FetchResult, RefreshOutcome, RefreshSummary
from rss_aggregator.services.dedup import (
    apply_keyword_filter,
    filter_new,
    key_entries,
    parse_filter_keywords,
)
from rss_aggregator.services.fetcher import fetch_feed
from rss_aggregator.services.scheduler import FeedScheduler, is_due
from rss_aggregator.services.store import FeedStore

log = structlog.get_logger()

Fetcher = Callable[..., Awaitable[FetchResult]]


class RefreshOrchestrator:
    """Runs refresh batches over a set of feeds."""

    def __init__(
        self,
        store: FeedStore,
        scheduler: FeedScheduler | None = None,
        settings: Settings | None = None,
        fetcher: Fetcher | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.scheduler = scheduler or FeedScheduler(store, self.settings)
        self.fetcher = fetcher or fetch_feed
        self.client = client

    def _http_client(self):
        if self.client is not None:
            return contextlib.nullcontext(self.client)
        limit = max(self.settings.max_concurrent_refreshes, 1)
        return httpx.AsyncClient(
            timeout=self.settings.feed_timeout,
            follow_redirects=True,
            limits=httpx.Limits(max_connections=limit),
        )

    async def refresh(
        self,
        feeds: list[Feed],
        force_refresh: bool = False,
        now: datetime | None = None,
    ) -> list[RefreshOutcome]:
        """Refresh every feed independently. Returns one outcome per feed, in input order.

        Without `force_refresh`, feeds that are no longer due at `now` are skipped.
        """
        now = now or datetime.now(UTC)
        semaphore = asyncio.Semaphore(max(self.settings.max_concurrent_refreshes, 1))

        async with self._http_client() as client:

            async def bounded(feed: Feed) -> RefreshOutcome:
                async with semaphore:
                    return await self._refresh_one(feed, force_refresh, now, client)

            outcomes = await asyncio.gather(*(bounded(feed) for feed in feeds))

        return list(outcomes)

    async def run(self, feeds: list[Feed], force_refresh: bool = False) -> RefreshSummary:
        """Refresh a batch and summarize it with wall-clock timing."""
        executed_at = datetime.now(UTC)
        started = time.monotonic()
        outcomes = await self.refresh(feeds, force_refresh=force_refresh, now=executed_at)
        summary = summarize(outcomes, executed_at, time.monotonic() - started)
        log.info(
            "refresh_batch_complete",
            force_refresh=force_refresh,
            total_feeds=summary.total_feeds,
            skipped=summary.skipped_feeds,
            succeeded=summary.successful_refreshes,
            failed=summary.failed_refreshes,
            new_articles=summary.new_articles,
            duration=summary.duration,
        )
        return summary

    async def _refresh_one(
        self,
        feed: Feed,
        force_refresh: bool,
        now: datetime,
        client: httpx.AsyncClient,
    ) -> RefreshOutcome:
        started = time.monotonic()
        feed_log = log.bind(feed_id=feed.id, url=feed.url)

        if not force_refresh and not is_due(feed, now):
            feed_log.info("feed_not_due", status=feed.status)
            return RefreshOutcome(
                feed_id=feed.id,
                feed_title=feed.title,
                success=False,
                skipped=True,
                error="Feed is not due for refresh",
                error_kind="not_due",
            )

        try:
            outcome = await self._ingest(feed, client)
        except RefreshError as e:
            feed_log.warning("feed_refresh_failed", kind=e.kind, error=str(e))
            outcome = _failed(feed, str(e), e.kind)
        except Exception as e:
            feed_log.exception("feed_refresh_crashed")
            outcome = _failed(feed, f"{type(e).__name__}: {e}", "unexpected")

        try:
            await self.scheduler.reschedule(feed, outcome, now)
        except Exception as e:
            feed_log.error("feed_reschedule_failed", error=str(e))
            outcome = outcome.model_copy(
                update={
                    "success": False,
                    "error": f"Schedule update failed: {e}",
                    "error_kind": getattr(e, "kind", "unexpected"),
                }
            )

        outcome.duration_ms = int((time.monotonic() - started) * 1000)
        if outcome.success:
            feed_log.info(
                "feed_refreshed",
                new_articles=outcome.new_articles_count,
                not_modified=outcome.not_modified,
                duration_ms=outcome.duration_ms,
            )
        return outcome

    async def _ingest(self, feed: Feed, client: httpx.AsyncClient) -> RefreshOutcome:
        result = await self.fetcher(
            feed.url,
            timeout=self.settings.feed_timeout,
            etag=feed.etag,
            last_modified=feed.last_modified,
            client=client,
            settings=self.settings,
        )

        if result.not_modified:
            return RefreshOutcome(
                feed_id=feed.id, feed_title=feed.title, success=True, not_modified=True
            )

        entries = result.feed.entries[: self.settings.max_articles_per_feed]
        entries = apply_keyword_filter(entries, parse_filter_keywords(feed.filter_keywords))

        keyed, invalid = key_entries(feed.id, entries)
        known = await self.store.find_existing_article_keys(
            feed.id, [item.natural_key for item in keyed]
        )
        dedup = filter_new(feed.id, keyed, known, invalid_count=invalid)
        inserted = await self.store.insert_articles(feed.id, dedup.new_entries)

        await self.store.update_feed_metadata(feed.id, _metadata_update(feed, result))

        return RefreshOutcome(
            feed_id=feed.id,
            feed_title=feed.title,
            success=True,
            new_articles_count=inserted,
        )


def _failed(feed: Feed, error: str, kind: str) -> RefreshOutcome:
    return RefreshOutcome(
        feed_id=feed.id, feed_title=feed.title, success=False, error=error, error_kind=kind
    )


def _metadata_update(feed: Feed, result: FetchResult) -> FeedMetadataUpdate:
    """Only fields that changed, plus fresh cache validators."""
    parsed = result.feed
    published = [e.published_at for e in parsed.entries if e.published_at is not None]
    latest = max(published) if published else None
    if latest is not None and feed.last_entry_at is not None and latest <= feed.last_entry_at:
        latest = None

    def changed(new, old):
        return new if new is not None and new != old else None

    return FeedMetadataUpdate(
        title=changed(parsed.title, feed.title),
        link=changed(parsed.link, feed.link),
        description=changed(parsed.description, feed.description),
        image_url=changed(parsed.image_url, feed.image_url),
        etag=result.etag,
        last_modified=result.last_modified,
        last_entry_at=latest,
    )


def summarize(
    outcomes: list[RefreshOutcome], executed_at: datetime, duration_seconds: float
) -> RefreshSummary:
    """Aggregate per-feed outcomes into a batch summary."""
    attempted = [o for o in outcomes if not o.skipped]
    return RefreshSummary(
        executed_at=executed_at,
        duration=f"{int(duration_seconds * 1000)}ms",
        total_feeds=len(attempted),
        skipped_feeds=len(outcomes) - len(attempted),
        successful_refreshes=sum(1 for o in attempted if o.success),
        failed_refreshes=sum(1 for o in attempted if not o.success),
        new_articles=sum(o.new_articles_count for o in attempted),
        results=outcomes,
    )
