"""Per-url feed cache: fetch-or-serve decisions and merging of fetched items."""

import asyncio
import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from rssfeed_reader.models import FeedItem
from rssfeed_reader.store import (
    Store,
    dict_to_item,
    dt_to_str,
    empty_cache,
    item_to_dict,
    str_to_dt,
)

logger = logging.getLogger(__name__)

CACHE_DURATION = timedelta(minutes=10)
MAX_CACHED_ITEMS = 200
NEVER_FETCHED = datetime.fromtimestamp(0, tz=timezone.utc)


class Action(enum.Enum):
    FETCH = "fetch"
    SERVE_CACHE = "serve-cache"


@dataclass(frozen=True)
class Resolution:
    """What to do for a url, and the cached items when serving from cache."""

    action: Action
    items: tuple[FeedItem, ...] = ()


def merge_items(
    existing: list[FeedItem],
    fresh: list[FeedItem],
    limit: int = MAX_CACHED_ITEMS,
) -> list[FeedItem]:
    """Put brand-new items (by link) in front of the existing ones.

    Items already known keep their existing copy and position. The result is
    capped at ``limit``, dropping the oldest entries from the tail.
    """
    known = {item.link for item in existing}
    brand_new = []
    for item in fresh:
        if item.link in known:
            continue
        known.add(item.link)
        brand_new.append(item)
    return (brand_new + list(existing))[:limit]


class FeedCache:
    """Cached items and last-fetch times, keyed by feed url.

    Entries are addressed by url, not by source, so renaming a source keeps
    its cache while changing its url targets a different entry.
    """

    def __init__(self, store: Store | None = None):
        self.store = store
        self._items: dict[str, list[FeedItem]] = {}
        self._last_fetch: dict[str, datetime] = {}
        self._persist_lock = asyncio.Lock()

    def has_entry(self, url: str) -> bool:
        return url in self._items

    def items_for(self, url: str) -> list[FeedItem]:
        return list(self._items.get(url, []))

    def last_fetch(self, url: str) -> datetime:
        return self._last_fetch.get(url, NEVER_FETCHED)

    def urls(self) -> list[str]:
        return list(self._items)

    def resolve(self, url: str, force_refresh: bool, now: datetime) -> Resolution:
        """Decide whether ``url`` needs a network fetch."""
        if force_refresh or url not in self._items:
            return Resolution(Action.FETCH)
        if now - self.last_fetch(url) >= CACHE_DURATION:
            return Resolution(Action.FETCH)
        return Resolution(Action.SERVE_CACHE, tuple(self._items[url]))

    def on_fetch_success(
        self, url: str, fresh_items: list[FeedItem], now: datetime
    ) -> list[FeedItem]:
        """Merge a successful fetch into the entry for ``url`` and return it."""
        existing = self._items.get(url, [])
        merged = merge_items(existing, fresh_items)
        self._items[url] = merged
        self._last_fetch[url] = now

        known = {item.link for item in existing}
        new_count = sum(1 for item in merged if item.link not in known)
        logger.info("Feed %s: %d new items, %d cached", url, new_count, len(merged))
        return list(merged)

    def on_fetch_failure(self, url: str) -> None:
        """Leave the entry as it is; the stale copy stays authoritative."""
        logger.debug("Keeping cached entry for %s after failed fetch", url)

    def invalidate(self, url: str) -> None:
        """Force the next resolve for ``url`` to fetch."""
        if url in self._items:
            self._last_fetch[url] = NEVER_FETCHED

    async def persist(self, is_read: Callable[[str], bool] | None = None) -> bool:
        """Write the whole cache through to the store, off the event loop.

        Writes are serialized; each one snapshots the cache when it starts.
        """
        if self.store is None:
            return False
        async with self._persist_lock:
            document = self.to_document(is_read)
            return await asyncio.to_thread(self.store.save_cache, document)

    def to_document(self, is_read: Callable[[str], bool] | None = None) -> dict:
        return {
            "feedCache": {
                url: [
                    item_to_dict(item, is_read(item.link) if is_read else None)
                    for item in items
                ]
                for url, items in self._items.items()
            },
            "lastFetchTimes": {
                url: dt_to_str(dt) for url, dt in self._last_fetch.items()
            },
        }

    def load_document(self, document: dict | None) -> None:
        """Replace the in-memory cache with a stored document."""
        document = document or empty_cache()
        self._items = {}
        self._last_fetch = {}
        for url, raw_items in document.get("feedCache", {}).items():
            if not isinstance(raw_items, list):
                logger.warning("Skipping unreadable cache entry for %s", url)
                continue
            items = []
            for raw in raw_items:
                try:
                    items.append(dict_to_item(raw))
                except (KeyError, TypeError, AttributeError):
                    logger.warning("Skipping unreadable cached item for %s", url)
            self._items[url] = items[:MAX_CACHED_ITEMS]
        for url, value in document.get("lastFetchTimes", {}).items():
            dt = str_to_dt(value)
            if dt is not None and dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            self._last_fetch[url] = dt or NEVER_FETCHED
