"""Shared test fixtures for RSS feed reader tests."""

from datetime import datetime, timedelta, timezone

import pytest

from rssfeed_reader.feed_parser import FeedFetchError
from rssfeed_reader.models import FeedItem
from rssfeed_reader.store import Store
from rssfeed_reader.sync import FeedSync


SAMPLE_RSS_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>  First Article  </title>
      <link>
        https://example.com/article-1
      </link>
      <guid>article-1</guid>
      <description>Description of the first article</description>
      <pubDate>Fri, 13 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <summary>Summary of entry 1</summary>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_NOT_A_FEED_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<html>
  <body>This is not a feed</body>
</html>"""

SAMPLE_GARBAGE = b"\x00\x01 definitely not markup \xff\xfe"


def make_item(n: int, prefix: str = "http://a/") -> FeedItem:
    """Build an item whose link is ``prefix + n``."""
    return FeedItem(title=f"Item {n}", link=f"{prefix}{n}")


class FakeFetcher:
    """Stands in for fetch_and_parse: returns canned items or raises."""

    def __init__(self):
        self.responses: dict[str, list[FeedItem] | Exception] = {}
        self.calls: list[str] = []

    def __call__(self, url: str) -> list[FeedItem]:
        self.calls.append(url)
        response = self.responses.get(url, FeedFetchError("no route to host"))
        if isinstance(response, Exception):
            raise response
        return list(response)


class FakeClock:
    """Controllable clock for cache-duration tests."""

    def __init__(self):
        self.now = datetime(2026, 2, 13, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def data_dir(tmp_path):
    """Directory for persisted documents; not created until first use."""
    return tmp_path / "data"


@pytest.fixture
def store(data_dir):
    return Store(data_dir)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sync(store, fetcher, clock):
    """A FeedSync wired to a temp store, fake network, and fake clock."""
    return FeedSync(store, fetcher=fetcher, clock=clock)


@pytest.fixture
def snapshots(sync):
    """Every snapshot the engine publishes, in order."""
    received = []
    sync.subscribe(received.append)
    return received
