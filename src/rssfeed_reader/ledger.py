"""Read/unread ledger, keyed by item link."""

from collections.abc import Iterable
from datetime import datetime

from rssfeed_reader.store import dt_to_str, empty_read_state, str_to_dt


class ReadLedger:
    """Set of links the user has read.

    Read state lives here rather than on the items so that re-fetching a
    feed never resets it.
    """

    def __init__(self):
        self.read_links: set[str] = set()
        self.last_read_dates: dict[str, datetime] = {}

    def is_read(self, link: str) -> bool:
        return link in self.read_links

    def mark_read(self, link: str, now: datetime) -> bool:
        """Mark a link read. Returns True if it was unread."""
        self.last_read_dates[link] = now
        if link in self.read_links:
            return False
        self.read_links.add(link)
        return True

    def mark_unread(self, link: str) -> bool:
        """Mark a link unread. Returns True if it was read."""
        if link not in self.read_links:
            return False
        self.read_links.discard(link)
        return True

    def mark_all_read(self, links: Iterable[str], now: datetime) -> int:
        """Mark every link read. Returns the number that were unread."""
        changed = 0
        for link in links:
            if self.mark_read(link, now):
                changed += 1
        return changed

    def to_document(self) -> dict:
        return {
            "readLinks": sorted(self.read_links),
            "lastReadDates": {
                link: dt_to_str(dt) for link, dt in self.last_read_dates.items()
            },
        }

    @classmethod
    def from_document(cls, document: dict | None) -> "ReadLedger":
        document = document or empty_read_state()
        ledger = cls()
        ledger.read_links = {
            link for link in document.get("readLinks", []) if isinstance(link, str)
        }
        for link, value in document.get("lastReadDates", {}).items():
            dt = str_to_dt(value)
            if dt is not None:
                ledger.last_read_dates[link] = dt
        return ledger
