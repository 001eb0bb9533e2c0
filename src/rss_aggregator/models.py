# ABOUTME: Pydantic schemas for data validation and serialization.
# ABOUTME: Defines parsed feed entries, refresh outcomes, batch summaries, and feed status.

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FeedStatus(StrEnum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ERROR = "ERROR"


class ParsedEntry(BaseModel):
    """One normalized entry of a fetched feed."""

    title: str | None = None
    link: str | None = None
    guid: str | None = None
    author: str | None = None
    published_at: datetime | None = None
    content: str | None = None
    content_snippet: str | None = None


class ParsedFeed(BaseModel):
    """Feed-level metadata plus its entries in source order."""

    title: str | None = None
    link: str | None = None
    description: str | None = None
    image_url: str | None = None
    entries: list[ParsedEntry] = Field(default_factory=list)


class FetchResult(BaseModel):
    """Outcome of a successful fetch, including HTTP cache validators."""

    feed: ParsedFeed = Field(default_factory=ParsedFeed)
    not_modified: bool = False
    etag: str | None = None
    last_modified: str | None = None


class KeyedEntry(BaseModel):
    """A parsed entry paired with its derived natural key."""

    natural_key: str
    entry: ParsedEntry


class DedupResult(BaseModel):
    """Entries of one payload that are not yet stored, with skip counts."""

    new_entries: list[KeyedEntry] = Field(default_factory=list)
    known_count: int = 0
    invalid_count: int = 0


class FeedMetadataUpdate(BaseModel):
    """Feed fields refreshed from a fetched payload. None means unchanged."""

    title: str | None = None
    link: str | None = None
    description: str | None = None
    image_url: str | None = None
    etag: str | None = None
    last_modified: str | None = None
    last_entry_at: datetime | None = None


class ScheduleUpdate(BaseModel):
    """Scheduling fields written after a refresh attempt."""

    last_refreshed_at: datetime
    next_fetch_at: datetime
    status: FeedStatus
    error_count: int
    error_message: str | None = None


class RefreshOutcome(BaseModel):
    """Result of one refresh attempt for a single feed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    feed_id: int
    feed_title: str
    success: bool
    skipped: bool = False
    not_modified: bool = False
    new_articles_count: int = 0
    error: str | None = None
    error_kind: str | None = None
    duration_ms: int = 0


class RefreshSummary(BaseModel):
    """Aggregate of one refresh batch, returned to triggers and written to the audit log."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    executed_at: datetime
    duration: str
    total_feeds: int
    skipped_feeds: int = 0
    successful_refreshes: int
    failed_refreshes: int
    new_articles: int
    results: list[RefreshOutcome] = Field(default_factory=list)

    def to_public(self) -> dict:
        """Aggregate-only payload for the timed trigger."""
        return self.model_dump(mode="json", by_alias=True, exclude={"results"})

    def to_detailed(self) -> dict:
        """Aggregate plus per-feed results for operators."""
        return self.model_dump(mode="json", by_alias=True)


class RequestContext(BaseModel):
    """Where an administrative request came from, for the audit trail."""

    ip_address: str | None = None
    user_agent: str | None = None


class AdminRefreshRequest(BaseModel):
    """Body of the administrative refresh request."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    feed_id: int | None = None
