"""RSS/Atom feed fetching and parsing using httpx and feedparser."""

import calendar
import io
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from urllib.parse import urlparse

import feedparser
import httpx

from rssfeed_reader.models import FeedItem

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 15.0


class FeedError(Exception):
    """Base class for feed errors."""


class FeedURLError(FeedError):
    """Raised when a feed URL is malformed."""


class FeedFetchError(FeedError):
    """Raised when a feed cannot be downloaded."""


class FeedValidationError(FeedError):
    """Raised when a new feed does not look like a feed at all."""


def parse(data: bytes) -> list[FeedItem]:
    """Parse raw feed bytes into items, in document order.

    Never raises: input that cannot be tokenized yields an empty list.
    """
    try:
        parsed = feedparser.parse(io.BytesIO(data))
    except Exception as e:
        logger.debug("Could not tokenize feed: %s", e)
        return []

    if parsed.bozo:
        logger.debug("Feed has formatting issues: %s", parsed.get("bozo_exception"))

    return _extract_items(parsed.entries)


def validate_url(url: str) -> None:
    """Validate that the URL has a valid format."""
    try:
        result = urlparse(url)
    except ValueError:
        raise FeedURLError("Invalid URL format")
    if not result.scheme or not result.netloc:
        raise FeedURLError("Invalid URL format")
    if result.scheme not in ("http", "https"):
        raise FeedURLError("Invalid URL format: only http and https are supported")


def fetch_feed(url: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> bytes:
    """Download the raw feed bytes with a plain GET.

    ``timeout`` bounds the whole download, not just each read.

    Raises:
        FeedFetchError: On transport errors, timeouts, or HTTP errors.
    """
    deadline = time.monotonic() + timeout
    try:
        with httpx.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
            if response.status_code >= 400:
                raise FeedFetchError(f"Could not reach URL: HTTP {response.status_code}")
            chunks = []
            for chunk in response.iter_bytes():
                if time.monotonic() > deadline:
                    raise FeedFetchError(f"Timed out after {timeout:g}s")
                chunks.append(chunk)
    except httpx.TimeoutException:
        raise FeedFetchError(f"Timed out after {timeout:g}s")
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise FeedFetchError(f"Could not reach URL: {e}")
    return b"".join(chunks)


def fetch_and_parse(url: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> list[FeedItem]:
    """Fetch and parse a feed. Blocking; run it in a worker thread."""
    validate_url(url)
    return parse(fetch_feed(url, timeout))


def validate_feed(
    url: str,
    fetcher: Callable[[str], list[FeedItem]] | None = None,
) -> list[FeedItem]:
    """Check that a URL a user is about to add serves a usable feed.

    Args:
        url: The feed URL.
        fetcher: Fetch-and-parse callable, defaults to ``fetch_and_parse``.

    Returns:
        The parsed items.

    Raises:
        FeedURLError: If the URL is malformed.
        FeedValidationError: If the feed is unreachable or has no items.
    """
    validate_url(url)
    fetcher = fetcher or fetch_and_parse
    try:
        items = fetcher(url)
    except FeedFetchError as e:
        raise FeedValidationError(f"Error fetching feed: {e}")
    if not items:
        raise FeedValidationError("Feed format not recognized")
    return items


def _extract_items(entries: list) -> list[FeedItem]:
    """Build FeedItems from feedparser entries, skipping ones without a link."""
    items = []
    for entry in entries:
        link = (entry.get("link") or "").strip()
        if not link:
            logger.debug("Skipping entry with no link: %s", entry.get("title", "unknown"))
            continue
        items.append(
            FeedItem(
                title=(entry.get("title") or "").strip(),
                link=link,
                published_at=_parse_date(entry),
            )
        )
    return items


def _parse_date(entry: dict) -> datetime | None:
    """Parse publication date from a feedparser entry as an aware UTC datetime."""
    for field in ("published_parsed", "updated_parsed"):
        time_struct = entry.get(field)
        if isinstance(time_struct, time.struct_time):
            try:
                return datetime.fromtimestamp(calendar.timegm(time_struct), tz=timezone.utc)
            except (ValueError, OverflowError):
                continue
    return None
