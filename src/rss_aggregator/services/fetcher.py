# ABOUTME: Feed source fetcher: downloads a feed over HTTP and parses RSS/Atom.
# ABOUTME: Download and parse share one deadline; overruns raise FetchTimeout.

import asyncio
import contextlib
import time
from datetime import UTC, datetime

import feedparser
import httpx
import structlog
from bs4 import BeautifulSoup

from rss_aggregator.config import Settings, get_settings
from rss_aggregator.errors import FetchTimeout, NetworkError, ParseError
from rss_aggregator.models import FetchResult, ParsedEntry, ParsedFeed

log = structlog.get_logger()

SNIPPET_LENGTH = 500


async def fetch_feed(
    url: str,
    timeout: float | None = None,
    etag: str | None = None,
    last_modified: str | None = None,
    client: httpx.AsyncClient | None = None,
    settings: Settings | None = None,
) -> FetchResult:
    """Fetch and parse a feed within `timeout` seconds.

    Sends conditional request headers when validators are known and reports
    HTTP 304 as `not_modified`. Raises FetchTimeout, NetworkError or ParseError.
    """
    settings = settings or get_settings()
    timeout = settings.feed_timeout if timeout is None else timeout
    started = time.monotonic()

    try:
        result = await asyncio.wait_for(
            _fetch_and_parse(url, timeout, etag, last_modified, client, settings), timeout
        )
    except TimeoutError as e:
        log.warning("feed_fetch_timeout", url=url, timeout=timeout)
        raise FetchTimeout(url, timeout) from e

    log.debug(
        "feed_fetched",
        url=url,
        not_modified=result.not_modified,
        entries=len(result.feed.entries),
        elapsed_ms=int((time.monotonic() - started) * 1000),
    )
    return result


async def _fetch_and_parse(
    url: str,
    timeout: float,
    etag: str | None,
    last_modified: str | None,
    client: httpx.AsyncClient | None,
    settings: Settings,
) -> FetchResult:
    headers = {"User-Agent": settings.feed_user_agent}
    if etag:
        headers["If-None-Match"] = etag
    if last_modified:
        headers["If-Modified-Since"] = last_modified

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as own_client:
                response = await own_client.get(url, headers=headers)
        else:
            response = await client.get(url, headers=headers)
    except httpx.TimeoutException as e:
        raise FetchTimeout(url, timeout) from e
    except httpx.HTTPError as e:
        raise NetworkError(f"{type(e).__name__}: {e}") from e

    if response.status_code == 304:
        return FetchResult(not_modified=True, etag=etag, last_modified=last_modified)

    if not response.is_success:
        raise NetworkError(
            f"HTTP {response.status_code}: {response.reason_phrase}",
            status_code=response.status_code,
        )

    response_headers = {}
    if content_type := response.headers.get("content-type"):
        response_headers["content-type"] = content_type

    parsed = await asyncio.to_thread(
        feedparser.parse, response.content, response_headers=response_headers
    )

    return FetchResult(
        feed=parse_feed_document(parsed, url),
        etag=response.headers.get("etag"),
        last_modified=response.headers.get("last-modified"),
    )


def parse_feed_document(parsed: feedparser.FeedParserDict, url: str) -> ParsedFeed:
    """Convert a feedparser result into a ParsedFeed, rejecting non-feeds.

    A recognised feed with no items is valid even when feedparser flags it bozo,
    e.g. for a text/html content type.
    """
    if not parsed.entries and (not parsed.version or (parsed.bozo and not parsed.feed)):
        reason = parsed.get("bozo_exception") or "document is not an RSS or Atom feed"
        log.error("feed_parse_error", url=url, error=str(reason))
        raise ParseError(f"Could not parse feed: {reason}")

    meta = parsed.feed
    image = meta.get("image") or {}
    return ParsedFeed(
        title=meta.get("title") or None,
        link=meta.get("link") or None,
        description=meta.get("subtitle") or meta.get("description") or None,
        image_url=image.get("href") or image.get("url") or None,
        entries=[normalize_entry(entry) for entry in parsed.entries],
    )


def normalize_entry(entry) -> ParsedEntry:
    """Normalize one feedparser entry."""
    published_at = None
    stamp = entry.get("published_parsed") or entry.get("updated_parsed")
    if stamp:
        with contextlib.suppress(ValueError, TypeError):
            published_at = datetime(*stamp[:6], tzinfo=UTC)

    content = None
    if entry.get("content"):
        content = entry["content"][0].get("value")
    if not content:
        content = entry.get("summary")

    return ParsedEntry(
        title=(entry.get("title") or "").strip() or None,
        link=(entry.get("link") or "").strip() or None,
        guid=entry.get("id") or None,
        author=entry.get("author") or None,
        published_at=published_at,
        content=content or None,
        content_snippet=_snippet(content),
    )


def _snippet(html: str | None) -> str | None:
    """Plain-text preview of HTML content."""
    if not html:
        return None
    text = BeautifulSoup(html, "html.parser").get_text(" ", strip=True)
    return text[:SNIPPET_LENGTH] or None
