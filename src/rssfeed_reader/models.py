"""Data models for the RSS feed reader."""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime


def _new_source_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class FeedSource:
    """A named feed subscription, identified by its url."""

    name: str
    url: str
    id: str = field(default_factory=_new_source_id)


@dataclass(frozen=True)
class FeedItem:
    """A single entry from a feed. Two items with the same link are the same item."""

    title: str
    link: str
    published_at: datetime | None = None


class SourceState(str, enum.Enum):
    """Load state of one source, as seen by the UI."""

    NO_CACHE = "no-cache"
    LOADING = "loading"
    READY = "ready"
    ERROR_STALE = "error-with-stale-cache"
    ERROR = "error"


@dataclass(frozen=True)
class FeedSnapshot:
    """Immutable view of everything the UI renders."""

    sources: tuple[FeedSource, ...] = ()
    selected: FeedSource | None = None
    items: tuple[FeedItem, ...] = ()
    is_loading: bool = False
    unread_source_ids: frozenset[str] = frozenset()
    states: dict[str, SourceState] = field(default_factory=dict)
    status_message: str | None = None

    def state_for(self, source: FeedSource) -> SourceState:
        return self.states.get(source.url, SourceState.NO_CACHE)
