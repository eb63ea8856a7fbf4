"""Shared test fixtures for Subfeed Agent tests."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from subfeed_agent.config import PollingConfig
from subfeed_agent.database import Database
from subfeed_agent.delivery import DeliveryError
from subfeed_agent.models import FeedItem
from subfeed_agent.poller import PollEngine
from subfeed_agent.service import SubscriptionService

T0 = datetime(2026, 2, 13, 10, 0, 0, tzinfo=timezone.utc)

SAMPLE_REDDIT_ATOM = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <category term="python" label="r/python"/>
  <updated>2026-02-13T10:05:00+00:00</updated>
  <id>/r/python/new/.rss</id>
  <link rel="self" href="https://www.reddit.com/r/python/new/.rss" type="application/atom+xml"/>
  <title>newest submissions : python</title>
  <entry>
    <author><name>/u/alice</name><uri>https://www.reddit.com/user/alice</uri></author>
    <id>t3_aaa111</id>
    <link href="https://www.reddit.com/r/Python/comments/aaa111/older_post/"/>
    <updated>2026-02-13T09:00:00+00:00</updated>
    <published>2026-02-13T09:00:00+00:00</published>
    <title>Older post</title>
  </entry>
  <entry>
    <author><name>/u/bob</name><uri>https://www.reddit.com/user/bob</uri></author>
    <id>t3_bbb222</id>
    <link href="https://www.reddit.com/r/Python/comments/bbb222/newer_post/"/>
    <updated>2026-02-13T10:00:00+00:00</updated>
    <published>2026-02-13T10:00:00+00:00</published>
    <title>Newer post</title>
  </entry>
</feed>"""

SAMPLE_NOT_A_FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<html>
  <body>This is not a feed</body>
</html>"""


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeFetcher:
    """Returns canned items per feed key, or raises a canned error."""

    def __init__(self):
        self.items: dict[str, list[FeedItem]] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []

    def __call__(self, feed_key: str) -> list[FeedItem]:
        self.calls.append(feed_key)
        if feed_key in self.errors:
            raise self.errors[feed_key]
        return list(self.items.get(feed_key, []))


class RecordingSink:
    """Records sent messages.

    Destinations in `failing` raise DeliveryError, destinations in `crashing`
    raise RuntimeError like a buggy sink would.
    """

    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.failing: set[str] = set()
        self.crashing: set[str] = set()

    def send(self, destination: str, text: str) -> None:
        if destination in self.crashing:
            raise RuntimeError("sink bug")
        if destination in self.failing:
            raise DeliveryError(f"{destination} rejected the message")
        self.sent.append((destination, text))

    def messages_for(self, destination: str) -> list[str]:
        return [text for dest, text in self.sent if dest == destination]


def make_item(n: int, minutes_after: float, with_id: bool = True) -> FeedItem:
    """Post number n published minutes_after T0 (negative for before)."""
    return FeedItem(
        id=f"t3_p{n}" if with_id else None,
        title=f"Post {n}",
        link=f"https://www.reddit.com/r/python/comments/p{n}/",
        author=f"user{n}",
        published_at=T0 + timedelta(minutes=minutes_after),
    )


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def db():
    """Connected in-memory database."""
    database = Database(":memory:")
    database.connect()
    yield database
    database.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def config():
    return PollingConfig()


@pytest.fixture
def engine(db, fetcher, sink, config, clock):
    return PollEngine(db, fetcher, sink, config, clock=clock)


@pytest.fixture
def service(db, engine):
    return SubscriptionService(db, engine)


@pytest.fixture
def sample_reddit_atom():
    """Sample Reddit "new posts" Atom document."""
    return SAMPLE_REDDIT_ATOM


@pytest.fixture
def sample_not_a_feed_xml():
    """Sample XML that is not a feed."""
    return SAMPLE_NOT_A_FEED_XML
