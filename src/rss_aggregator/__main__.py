# ABOUTME: CLI entry point for rss-aggregator.
# ABOUTME: Supports 'serve', 'refresh', 'schedule', and 'add-feed' commands.

import argparse
import asyncio
import json
import sys

import structlog
import uvicorn

from rss_aggregator.config import get_settings
from rss_aggregator.logging_config import configure_logging

log = structlog.get_logger()

CLI_ADMIN_ID = "cli"


def cmd_serve(args: argparse.Namespace) -> None:
    """Start the HTTP trigger server."""
    settings = get_settings()
    host = args.host or settings.host
    port = args.port or settings.port
    log.info("starting_server", host=host, port=port)
    uvicorn.run("rss_aggregator.web.app:app", host=host, port=port, reload=args.reload)


def cmd_refresh(args: argparse.Namespace) -> None:
    """Run one refresh batch and print its summary as JSON."""
    summary = asyncio.run(_run_refresh(force=args.force, feed_id=args.feed_id))
    print(json.dumps(summary, indent=2, ensure_ascii=False))


async def _run_refresh(force: bool, feed_id: int | None) -> dict:
    from rss_aggregator.db.repository import SqlFeedStore
    from rss_aggregator.db.session import close_db, get_session_factory, init_db
    from rss_aggregator.services.triggers import run_admin_refresh, run_scheduled_refresh

    await init_db()
    try:
        store = SqlFeedStore(get_session_factory())
        if force or feed_id is not None:
            summary = await run_admin_refresh(store, admin_id=CLI_ADMIN_ID, feed_id=feed_id)
            return summary.to_detailed()
        summary = await run_scheduled_refresh(store)
        return summary.to_public()
    finally:
        await close_db()


def cmd_schedule(_args: argparse.Namespace) -> None:
    """Refresh due feeds every refresh interval until interrupted."""
    try:
        asyncio.run(_run_schedule())
    except KeyboardInterrupt:
        log.info("scheduler_stopped")


async def _run_schedule() -> None:
    from rss_aggregator.db.repository import SqlFeedStore
    from rss_aggregator.db.session import close_db, get_session_factory, init_db
    from rss_aggregator.errors import PersistenceError
    from rss_aggregator.services.triggers import run_scheduled_refresh

    settings = get_settings()
    period = settings.refresh_interval_minutes * 60
    await init_db()
    try:
        store = SqlFeedStore(get_session_factory())
        while True:
            try:
                await run_scheduled_refresh(store, settings)
            except PersistenceError as e:
                log.error("scheduled_refresh_failed", error=str(e))
            await asyncio.sleep(period)
    finally:
        await close_db()


def cmd_add_feed(args: argparse.Namespace) -> None:
    """Subscribe to a feed URL."""
    asyncio.run(_run_add_feed(args.url, args.title, args.interval, args.exclude))


async def _run_add_feed(
    url: str, title: str | None, interval: int | None, exclude: list[str] | None
) -> None:
    from rss_aggregator.db.repository import SqlFeedStore
    from rss_aggregator.db.session import close_db, get_session_factory, init_db

    await init_db()
    try:
        store = SqlFeedStore(get_session_factory())
        feed = await store.add_feed(
            url=url,
            title=title or url,
            refresh_interval_minutes=interval,
            filter_keywords=exclude,
        )
        log.info("feed_added", feed_id=feed.id, url=url)
    finally:
        await close_db()


def main() -> None:
    """Main CLI entry point."""
    configure_logging()

    parser = argparse.ArgumentParser(prog="rss-aggregator", description="RSS/Atom feed aggregator")
    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the trigger HTTP server")
    serve_parser.add_argument("--host", type=str, default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")

    # refresh
    refresh_parser = subparsers.add_parser("refresh", help="Refresh due feeds once")
    refresh_parser.add_argument("--force", action="store_true", help="Ignore schedules")
    refresh_parser.add_argument("--feed-id", type=int, default=None, help="Force one feed")

    # schedule
    subparsers.add_parser("schedule", help="Refresh due feeds periodically")

    # add-feed
    add_parser = subparsers.add_parser("add-feed", help="Subscribe to a feed")
    add_parser.add_argument("url")
    add_parser.add_argument("--title", type=str, default=None)
    add_parser.add_argument("--interval", type=int, default=None, help="Cadence in minutes")
    add_parser.add_argument(
        "--exclude", action="append", default=None, help="Skip entries containing this keyword"
    )

    args = parser.parse_args()
    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "refresh":
        cmd_refresh(args)
    elif args.command == "schedule":
        cmd_schedule(args)
    elif args.command == "add-feed":
        cmd_add_feed(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
