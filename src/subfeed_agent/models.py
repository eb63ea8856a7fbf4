"""Data models for Subfeed Agent."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

# Bumped whenever the stored shape of any record below changes.
SCHEMA_VERSION = 1


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FeedItem:
    """A single post as delivered by the feed transport."""

    title: str
    link: str
    author: str
    published_at: datetime | None = None
    id: str | None = None


@dataclass
class Subscriber:
    """One destination following one feed key."""

    feed_key: str
    destination: str
    last_checked_at: datetime = field(default_factory=utcnow)
    last_seen_item_id: str | None = None


@dataclass
class PollState:
    """Scheduling record for a feed key with active polling."""

    feed_key: str
    last_polled_at: datetime
    next_poll_at: datetime
    retry_count: int = 0
    error_count: int = 0


@dataclass(frozen=True)
class ById:
    """Marker pointing at the last item id a subscriber has seen."""

    item_id: str


@dataclass(frozen=True)
class ByTimestamp:
    """Marker holding the time a subscriber last received items."""

    checked_at: datetime


Marker = ById | ByTimestamp
