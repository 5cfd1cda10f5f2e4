"""Feed synchronization: the engine the UI talks to."""

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone

from rssfeed_reader.cache import Action, FeedCache
from rssfeed_reader.feed_parser import (
    DEFAULT_FETCH_TIMEOUT,
    FeedError,
    fetch_and_parse,
    validate_feed,
    validate_url,
)
from rssfeed_reader.ledger import ReadLedger
from rssfeed_reader.models import FeedItem, FeedSnapshot, FeedSource, SourceState
from rssfeed_reader.poller import DEFAULT_POLL_INTERVAL, start_polling
from rssfeed_reader.store import Store

logger = logging.getLogger(__name__)

STALE_CACHE_MESSAGE = "Using cached data"

Listener = Callable[[FeedSnapshot], None]
Fetcher = Callable[[str], list[FeedItem]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeedSync:
    """Owns the feed list, cache, and read ledger for one process.

    All methods must be called from the event loop that owns this object.
    Network fetches run in worker threads and their results are applied back
    on the loop, so merges never overlap.
    """

    def __init__(
        self,
        store: Store,
        fetcher: Fetcher | None = None,
        clock: Callable[[], datetime] = utcnow,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
    ):
        self.store = store
        self.cache = FeedCache(store)
        self.ledger = ReadLedger()
        self.sources: list[FeedSource] = []
        self.selected: FeedSource | None = None
        self.items: list[FeedItem] = []

        self._fetcher = fetcher or functools.partial(fetch_and_parse, timeout=timeout)
        self._clock = clock
        self._states: dict[str, SourceState] = {}
        self._unread_source_ids: set[str] = set()
        self._status_message: str | None = None
        self._busy = 0
        self._listeners: list[Listener] = []
        self._sources_lock = asyncio.Lock()
        self._ledger_lock = asyncio.Lock()
        self._poll_task: asyncio.Task | None = None

    # --- Observation ---

    @property
    def is_loading(self) -> bool:
        return self._busy > 0

    @property
    def snapshot(self) -> FeedSnapshot:
        return FeedSnapshot(
            sources=tuple(self.sources),
            selected=self.selected,
            items=tuple(self.items),
            is_loading=self.is_loading,
            unread_source_ids=frozenset(self._unread_source_ids),
            states=dict(self._states),
            status_message=self._status_message,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a new snapshot after every change.

        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener failed")

    # --- Lifecycle ---

    async def load(self) -> None:
        """Restore persisted state and show the first source."""
        sources, read_state, cache = await asyncio.gather(
            asyncio.to_thread(self.store.load_sources),
            asyncio.to_thread(self.store.load_read_state),
            asyncio.to_thread(self.store.load_cache),
        )
        self.sources = sources
        self.ledger = ReadLedger.from_document(read_state)
        self.cache.load_document(cache)
        logger.info(
            "Loaded %d sources, %d read links, %d cached feeds",
            len(self.sources),
            len(self.ledger.read_links),
            len(self.cache.urls()),
        )
        self._recompute_unread()
        if self.sources:
            await self.select_source(self.sources[0])
        else:
            self._notify()

    def start(self, interval: float = DEFAULT_POLL_INTERVAL) -> None:
        """Start refreshing every source in the background."""
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(start_polling(self, interval))

    async def stop(self) -> None:
        """Stop the background refresh and wait for it to finish."""
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        try:
            await self._poll_task
        except asyncio.CancelledError:
            pass
        self._poll_task = None

    # --- Source operations ---

    async def validate_feed(self, url: str) -> list[FeedItem]:
        """Check a URL before adding it. Zero items is a rejection.

        Raises:
            FeedURLError: If the URL is malformed.
            FeedValidationError: If the feed is unreachable or empty.
        """
        return await asyncio.to_thread(validate_feed, url.strip(), self._fetcher)

    async def add_source(self, name: str, url: str) -> FeedSource | None:
        """Add a source, select it, and fetch it.

        Returns None (and changes nothing) if the name is empty or the url is
        already subscribed.

        Raises:
            FeedURLError: If the URL is malformed.
        """
        name, url = name.strip(), url.strip()
        validate_url(url)
        if not name:
            return None
        if any(s.url == url for s in self.sources):
            logger.info("Already subscribed to %s", url)
            return None

        source = FeedSource(name=name, url=url)
        self.sources.append(source)
        self.selected = source
        self.items = self.cache.items_for(url)
        self._status_message = None
        self._recompute_unread()
        self._notify()
        await self._save_sources()
        await self._load_url(url, force=True)
        return source

    async def update_source(
        self, source: FeedSource, new_name: str, new_url: str
    ) -> FeedSource | None:
        """Rename a source and/or change its url, keeping its id.

        The cache entry for the old url is left in place.

        Raises:
            FeedURLError: If the new URL is malformed.
        """
        new_name, new_url = new_name.strip(), new_url.strip()
        validate_url(new_url)
        index = self._index_of(source)
        if index is None:
            return None
        if any(s.url == new_url and s.id != source.id for s in self.sources):
            logger.info("Another source already uses %s", new_url)
            return None

        updated = replace(self.sources[index], name=new_name or source.name, url=new_url)
        self.sources[index] = updated
        is_selected = self.selected is not None and self.selected.id == updated.id
        if is_selected:
            self.selected = updated
            self.items = self.cache.items_for(new_url)
            self._status_message = None
        self._recompute_unread()
        self._notify()
        await self._save_sources()
        if is_selected:
            await self._load_url(new_url, force=True)
        return updated

    async def delete_source(self, source: FeedSource) -> None:
        """Remove a source. Its cache entry is kept."""
        index = self._index_of(source)
        if index is None:
            return
        removed = self.sources.pop(index)
        if self.selected is not None and self.selected.id == removed.id:
            self.selected = None
            self.items = []
            self._status_message = None
        if not any(s.url == removed.url for s in self.sources):
            self._states.pop(removed.url, None)
        self._recompute_unread()
        self._notify()
        await self._save_sources()

    async def select_source(self, source: FeedSource | None) -> None:
        """Show a source, from cache when fresh enough; None clears the view."""
        if source is None:
            self.selected = None
            self.items = []
            self._status_message = None
            self._notify()
            return

        index = self._index_of(source)
        if index is None:
            return
        self.selected = self.sources[index]
        self.items = self.cache.items_for(self.selected.url)
        self._status_message = None
        self._notify()
        await self._load_url(self.selected.url, force=False)

    async def force_refresh_selected(self) -> None:
        if self.selected is not None:
            await self._load_url(self.selected.url, force=True)

    async def refresh_all(self, background: bool = False) -> None:
        """Fetch every source now, keeping the current selection.

        A foreground refresh shows the global loading indicator.
        """
        if not background:
            self._busy += 1
            self._notify()
        try:
            urls = list(dict.fromkeys(s.url for s in self.sources))
            await asyncio.gather(
                *(self._load_url(url, force=True, show_loading=False) for url in urls)
            )
        finally:
            if not background:
                self._busy -= 1

        if self.selected is not None:
            self.items = self.cache.items_for(self.selected.url)
        self._recompute_unread()
        self._notify()

    # --- Read state ---

    def is_read(self, item: FeedItem) -> bool:
        return self.ledger.is_read(item.link)

    def has_unread(self, source: FeedSource) -> bool:
        return source.id in self._unread_source_ids

    def state_for(self, source: FeedSource) -> SourceState:
        return self._states.get(source.url, SourceState.NO_CACHE)

    async def mark_read(self, item: FeedItem) -> None:
        self.ledger.mark_read(item.link, self._clock())
        await self._read_state_changed()

    async def mark_unread(self, item: FeedItem) -> None:
        self.ledger.mark_unread(item.link)
        await self._read_state_changed()

    async def mark_all_as_read(self, source: FeedSource | None = None) -> int:
        """Mark every cached item of a source read (default: the selection)."""
        source = source or self.selected
        if source is None:
            return 0
        links = [item.link for item in self.cache.items_for(source.url)]
        changed = self.ledger.mark_all_read(links, self._clock())
        await self._read_state_changed()
        return changed

    async def _read_state_changed(self) -> None:
        self._recompute_unread()
        self._notify()
        await self._save_read_state()

    def _recompute_unread(self) -> None:
        self._unread_source_ids = {
            source.id
            for source in self.sources
            if any(
                not self.ledger.is_read(item.link)
                for item in self.cache.items_for(source.url)
            )
        }

    # --- Fetching ---

    async def _load_url(self, url: str, force: bool, show_loading: bool = True) -> None:
        """Serve ``url`` from cache or fetch it, then update state. Never raises."""
        resolution = self.cache.resolve(url, force, self._clock())
        if resolution.action is Action.SERVE_CACHE:
            logger.debug("Serving %s from cache", url)
            if self._states.get(url) is not SourceState.LOADING:
                self._states[url] = SourceState.READY
            if self._is_selected_url(url):
                self.items = list(resolution.items)
                self._status_message = None
            self._notify()
            return

        self._states[url] = SourceState.LOADING
        if show_loading:
            self._busy += 1
        self._notify()
        try:
            fresh = await asyncio.to_thread(self._fetcher, url)
        except FeedError as e:
            logger.warning("Feed %s error: %s", url, e)
            self._on_failure(url, e)
        except Exception as e:
            logger.warning("Feed %s unexpected error: %s", url, e)
            self._on_failure(url, e)
        else:
            if self._on_success(url, fresh):
                self._notify()
                await self.cache.persist(self.ledger.is_read)
        finally:
            if show_loading:
                self._busy -= 1
            self._notify()

    def _on_success(self, url: str, fresh: list[FeedItem]) -> bool:
        if not self._is_known_url(url):
            logger.info("Discarding fetch result for removed url %s", url)
            self._states.pop(url, None)
            return False
        merged = self.cache.on_fetch_success(url, fresh, self._clock())
        self._states[url] = SourceState.READY
        if self._is_selected_url(url):
            self.items = merged
            self._status_message = None
        self._recompute_unread()
        return True

    def _on_failure(self, url: str, error: Exception) -> None:
        self.cache.on_fetch_failure(url)
        if not self._is_known_url(url):
            self._states.pop(url, None)
            return
        if self.cache.has_entry(url):
            self._states[url] = SourceState.ERROR_STALE
            message = STALE_CACHE_MESSAGE
        else:
            self._states[url] = SourceState.ERROR
            message = f"Could not load feed: {error}"
        if self._is_selected_url(url):
            self.items = self.cache.items_for(url)
            self._status_message = message

    # --- Helpers ---

    def _index_of(self, source: FeedSource) -> int | None:
        for i, s in enumerate(self.sources):
            if s.id == source.id:
                return i
        return None

    def _is_known_url(self, url: str) -> bool:
        return any(s.url == url for s in self.sources)

    def _is_selected_url(self, url: str) -> bool:
        return self.selected is not None and self.selected.url == url

    async def _save_sources(self) -> None:
        async with self._sources_lock:
            await asyncio.to_thread(self.store.save_sources, list(self.sources))

    async def _save_read_state(self) -> None:
        async with self._ledger_lock:
            await asyncio.to_thread(self.store.save_read_state, self.ledger.to_document())
