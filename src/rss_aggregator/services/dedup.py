# ABOUTME: Article deduplication: natural key derivation and new-entry filtering.
# ABOUTME: Keys are deterministic so an unchanged feed never yields new articles twice.

import hashlib

import structlog

from rss_aggregator.errors import EntryKeyError
from rss_aggregator.models import DedupResult, KeyedEntry, ParsedEntry

log = structlog.get_logger()

FINGERPRINT_PREFIX = "sha256:"


def derive_natural_key(entry: ParsedEntry) -> str:
    """Derive the stable identity of an entry.

    The link wins when present. Otherwise the key is a fingerprint of title and
    publish date. An entry with neither link, title nor date raises EntryKeyError.
    """
    link = (entry.link or "").strip()
    if link:
        return link

    title = (entry.title or "").strip()
    published = entry.published_at.isoformat() if entry.published_at else ""
    if not title and not published:
        raise EntryKeyError("Entry has no link, title or publish date")

    digest = hashlib.sha256(f"{title}\n{published}".encode()).hexdigest()
    return FINGERPRINT_PREFIX + digest


def key_entries(feed_id: int, entries: list[ParsedEntry]) -> tuple[list[KeyedEntry], int]:
    """Pair entries with natural keys. Returns (keyed, invalid_count)."""
    keyed: list[KeyedEntry] = []
    invalid = 0
    for entry in entries:
        try:
            keyed.append(KeyedEntry(natural_key=derive_natural_key(entry), entry=entry))
        except EntryKeyError:
            invalid += 1

    if invalid:
        log.warning("entries_without_key", feed_id=feed_id, skipped=invalid)
    return keyed, invalid


def filter_new(
    feed_id: int, keyed: list[KeyedEntry], known_keys: set[str], invalid_count: int = 0
) -> DedupResult:
    """Keep entries whose key is not yet stored, first occurrence only, in source order."""
    result = DedupResult(invalid_count=invalid_count)
    seen: set[str] = set()

    for item in keyed:
        if item.natural_key in known_keys:
            result.known_count += 1
            continue
        if item.natural_key in seen:
            continue
        seen.add(item.natural_key)
        result.new_entries.append(item)

    log.debug(
        "entries_filtered",
        feed_id=feed_id,
        new=len(result.new_entries),
        known=result.known_count,
        invalid=invalid_count,
    )
    return result


def parse_filter_keywords(raw: list | None) -> list[str]:
    """Normalize a feed's stored keyword list, ignoring malformed values."""
    if not isinstance(raw, list):
        if raw:
            log.warning("invalid_filter_keywords", raw=str(raw)[:100])
        return []
    return [str(k).strip() for k in raw if str(k).strip()]


def apply_keyword_filter(entries: list[ParsedEntry], keywords: list[str]) -> list[ParsedEntry]:
    """Drop entries whose title, content or snippet contains any keyword (case-insensitive)."""
    if not keywords:
        return entries

    lowered = [k.lower() for k in keywords]
    kept = []
    for entry in entries:
        haystack = " ".join(
            part.lower() for part in (entry.title, entry.content, entry.content_snippet) if part
        )
        if not any(k in haystack for k in lowered):
            kept.append(entry)
    return kept
