# ABOUTME: Error taxonomy for feed refresh and ingestion.
# ABOUTME: Each error carries a short kind used in per-feed refresh outcomes.


class RefreshError(Exception):
    """Base class for errors raised while refreshing a feed."""

    kind = "unexpected"


class FetchTimeout(RefreshError):
    """Fetching or parsing a feed exceeded its deadline."""

    kind = "timeout"

    def __init__(self, url: str, timeout: float):
        super().__init__(f"Timed out after {timeout:g}s fetching {url}")
        self.url = url
        self.timeout = timeout


class NetworkError(RefreshError):
    """DNS, connection, or HTTP status failure."""

    kind = "network"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(RefreshError):
    """Feed body could not be parsed as RSS or Atom."""

    kind = "parse"


class EntryKeyError(ParseError):
    """A single entry has nothing stable to derive a natural key from."""


class PersistenceError(RefreshError):
    """Storage read or write failed."""

    kind = "persistence"


class ConfigurationError(RefreshError):
    """Required configuration is missing."""

    kind = "configuration"


class FeedNotFoundError(RefreshError):
    """An explicitly requested feed does not exist."""

    kind = "not_found"

    def __init__(self, feed_id: int):
        super().__init__(f"Feed {feed_id} not found")
        self.feed_id = feed_id
