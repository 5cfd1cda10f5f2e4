"""JSON document storage for the RSS feed reader."""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from rssfeed_reader.models import FeedItem, FeedSource

logger = logging.getLogger(__name__)

SOURCES_FILE = "feeds.json"
READ_STATE_FILE = "readstate.json"
CACHE_FILE = "feedcache.json"


def empty_read_state() -> dict:
    return {"readLinks": [], "lastReadDates": {}}


def empty_cache() -> dict:
    return {"feedCache": {}, "lastFetchTimes": {}}


class Store:
    """Loads and saves the three persisted documents.

    Each document lives in its own file under ``data_dir``. Saves are atomic
    (write to a temp file, then rename). Loads never raise: a missing or
    corrupt file yields the default document.
    """

    def __init__(self, data_dir: str | os.PathLike):
        self.data_dir = Path(data_dir)

    def _path(self, filename: str) -> Path:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        return self.data_dir / filename

    # --- Feed sources ---

    def save_sources(self, sources: list[FeedSource]) -> bool:
        """Save the ordered feed source list."""
        return self._write(SOURCES_FILE, [_source_to_dict(s) for s in sources])

    def load_sources(self) -> list[FeedSource]:
        """Load the feed source list, or an empty list."""
        data = self._read(SOURCES_FILE, [])
        try:
            return [_dict_to_source(d) for d in data]
        except (TypeError, KeyError, AttributeError) as e:
            logger.warning("Ignoring corrupt %s: %s", SOURCES_FILE, e)
            return []

    # --- Read-state ledger ---

    def save_read_state(self, document: dict) -> bool:
        """Save a ``{readLinks, lastReadDates}`` document."""
        return self._write(READ_STATE_FILE, document)

    def load_read_state(self) -> dict:
        document = self._read(READ_STATE_FILE, empty_read_state())
        if not isinstance(document, dict):
            logger.warning("Ignoring corrupt %s", READ_STATE_FILE)
            return empty_read_state()
        return {
            "readLinks": _field(document, "readLinks", list, READ_STATE_FILE),
            "lastReadDates": _field(document, "lastReadDates", dict, READ_STATE_FILE),
        }

    # --- Fetch cache ---

    def save_cache(self, document: dict) -> bool:
        """Save a ``{feedCache, lastFetchTimes}`` document."""
        return self._write(CACHE_FILE, document)

    def load_cache(self) -> dict:
        document = self._read(CACHE_FILE, empty_cache())
        if not isinstance(document, dict):
            logger.warning("Ignoring corrupt %s", CACHE_FILE)
            return empty_cache()
        return {
            "feedCache": _field(document, "feedCache", dict, CACHE_FILE),
            "lastFetchTimes": _field(document, "lastFetchTimes", dict, CACHE_FILE),
        }

    # --- File helpers ---

    def _read(self, filename: str, default: Any) -> Any:
        try:
            path = self._path(filename)
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return default
        except (OSError, ValueError) as e:
            logger.warning("Failed to load %s: %s", filename, e)
            return default

    def _write(self, filename: str, document: Any) -> bool:
        """Atomically replace ``filename``. Returns False if the write failed."""
        tmp_path = None
        try:
            path = self._path(filename)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{filename}.", suffix=".tmp", dir=self.data_dir
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to save %s: %s", filename, e)
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
            return False


# --- Helper functions ---


def _field(document: dict, key: str, expected: type, filename: str):
    """Return a copy of ``document[key]``, or an empty one if it has the wrong type."""
    value = document.get(key)
    if value is None:
        return expected()
    if not isinstance(value, expected):
        logger.warning("Ignoring corrupt %s field in %s", key, filename)
        return expected()
    return expected(value)


def dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to datetime, None if unreadable."""
    if not s:
        return None
    try:
        return datetime.fromisoformat(s)
    except (TypeError, ValueError):
        return None


def item_to_dict(item: FeedItem, is_read: bool | None = None) -> dict:
    d = {"title": item.title, "link": item.link}
    if is_read is not None:
        d["isRead"] = is_read
    if item.published_at:
        d["pubDate"] = dt_to_str(item.published_at)
    return d


def dict_to_item(d: dict) -> FeedItem:
    if not isinstance(d["link"], str):
        raise TypeError("item link must be a string")
    return FeedItem(
        title=d.get("title", ""),
        link=d["link"],
        published_at=str_to_dt(d.get("pubDate")),
    )


def _source_to_dict(source: FeedSource) -> dict:
    return {"id": source.id, "name": source.name, "url": source.url}


def _dict_to_source(d: dict) -> FeedSource:
    return FeedSource(id=str(d["id"]), name=d["name"], url=d["url"])
