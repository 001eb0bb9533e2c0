# ABOUTME: In-process entry points for the timed (cron) and administrative refresh triggers.
# ABOUTME: Both run the same orchestrator; the admin path forces refresh and writes an audit entry.

import secrets
from datetime import UTC, datetime

import structlog
from pydantic import SecretStr

from rss_aggregator.config import Settings, get_settings
from rss_aggregator.errors import ConfigurationError, FeedNotFoundError
from rss_aggregator.models import RefreshSummary, RequestContext
from rss_aggregator.services.audit import AuditLogger
from rss_aggregator.services.refresh import RefreshOrchestrator
from rss_aggregator.services.scheduler import FeedScheduler
from rss_aggregator.services.store import FeedStore

log = structlog.get_logger()

REFRESH_ACTION = "refresh_feeds"


def _check_bearer(authorization: str | None, secret: SecretStr | None, name: str) -> bool:
    if secret is None or not secret.get_secret_value():
        log.error("trigger_secret_missing", setting=name)
        raise ConfigurationError(f"{name} is not configured")

    expected = f"Bearer {secret.get_secret_value()}"
    return secrets.compare_digest((authorization or "").encode(), expected.encode())


def verify_cron_credential(authorization: str | None, settings: Settings | None = None) -> bool:
    """Check an `Authorization: Bearer <secret>` header against the configured cron secret.

    Raises ConfigurationError when no secret is configured.
    """
    settings = settings or get_settings()
    return _check_bearer(authorization, settings.cron_secret, "CRON_SECRET")


def verify_admin_credential(authorization: str | None, settings: Settings | None = None) -> bool:
    """Check an `Authorization: Bearer <token>` header against the admin token."""
    settings = settings or get_settings()
    return _check_bearer(authorization, settings.admin_token, "ADMIN_TOKEN")


async def run_scheduled_refresh(
    store: FeedStore,
    settings: Settings | None = None,
    now: datetime | None = None,
    orchestrator: RefreshOrchestrator | None = None,
) -> RefreshSummary:
    """Refresh every due feed. Failure of the due-set query propagates."""
    settings = settings or get_settings()
    orchestrator = orchestrator or RefreshOrchestrator(store, settings=settings)
    now = now or datetime.now(UTC)

    feeds = await orchestrator.scheduler.select_due(now)
    return await orchestrator.run(feeds, force_refresh=False)


async def run_admin_refresh(
    store: FeedStore,
    admin_id: str,
    feed_id: int | None = None,
    settings: Settings | None = None,
    request_context: RequestContext | None = None,
    orchestrator: RefreshOrchestrator | None = None,
) -> RefreshSummary:
    """Force-refresh one feed, or every feed when `feed_id` is None, then audit it."""
    settings = settings or get_settings()
    orchestrator = orchestrator or RefreshOrchestrator(
        store, scheduler=FeedScheduler(store, settings), settings=settings
    )

    if feed_id is not None:
        feeds = await store.find_feeds_by_ids([feed_id])
        if not feeds:
            raise FeedNotFoundError(feed_id)
    else:
        feeds = await store.find_all_feeds()

    log.info("admin_refresh_started", admin_id=admin_id, feed_id=feed_id, feeds=len(feeds))
    summary = await orchestrator.run(feeds, force_refresh=True)

    await AuditLogger(store).record(
        admin_id=admin_id,
        action=REFRESH_ACTION,
        target_type="feed",
        target_id=str(feed_id) if feed_id is not None else None,
        details=summary.to_detailed(),
        request_context=request_context,
    )
    return summary
