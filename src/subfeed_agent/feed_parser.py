"""Subreddit feed fetching and parsing using requests and feedparser."""

import calendar
import re
from datetime import datetime, timezone
from time import struct_time

import feedparser
import requests

from subfeed_agent.config import DEFAULT_USER_AGENT
from subfeed_agent.models import FeedItem

FEED_URL_TEMPLATE = "https://www.reddit.com/r/{feed_key}/new/.rss"
DEFAULT_TIMEOUT = 30.0

_PREFIX_RE = re.compile(r"^/?r/", re.IGNORECASE)
_AUTHOR_PREFIX_RE = re.compile(r"^/?u/", re.IGNORECASE)


class FeedFetchError(Exception):
    """Raised when a feed cannot be fetched or parsed."""


def normalize_feed_key(raw: str) -> str:
    """Canonical feed key for a subreddit name.

    Lower-cases, trims whitespace and slashes, and strips leading ``r/`` or
    ``/r/`` prefixes until none remain, so the result is a fixed point.
    """
    key = raw.strip().lower()
    previous = None
    while key != previous:
        previous = key
        key = _PREFIX_RE.sub("", key).strip("/ ")
    return key


def feed_url(feed_key: str) -> str:
    """Return the "new posts" RSS URL for a feed key."""
    return FEED_URL_TEMPLATE.format(feed_key=feed_key)


def fetch_and_parse(
    feed_key: str,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = DEFAULT_USER_AGENT,
) -> list[FeedItem]:
    """Fetch and parse the newest posts of a subreddit.

    Args:
        feed_key: Normalized subreddit name.
        timeout: Socket timeout in seconds for the HTTP request.
        user_agent: User-Agent header sent upstream.

    Returns:
        Items in document order.

    Raises:
        FeedFetchError: On network failure, HTTP error status or a document
            that is not a feed.
    """
    url = feed_url(feed_key)
    try:
        resp = requests.get(url, headers={"User-Agent": user_agent}, timeout=timeout)
    except requests.RequestException as e:
        raise FeedFetchError(f"Could not reach {url}: {e}") from e

    if resp.status_code in (401, 403):
        raise FeedFetchError(f"r/{feed_key} is private or quarantined (HTTP {resp.status_code})")
    if resp.status_code == 404:
        raise FeedFetchError(f"r/{feed_key} does not exist")
    if resp.status_code >= 400:
        raise FeedFetchError(f"Could not reach {url}: HTTP {resp.status_code}")

    return parse_feed_document(resp.content)


def parse_feed_document(content: bytes | str) -> list[FeedItem]:
    """Parse an RSS or Atom document into FeedItems.

    Raises:
        FeedFetchError: If the document is not a recognizable feed.
    """
    parsed = feedparser.parse(content)

    if not parsed.get("version") and not parsed.entries:
        if parsed.bozo and parsed.bozo_exception:
            raise FeedFetchError(f"Malformed feed: {parsed.bozo_exception}")
        raise FeedFetchError("Document is not an RSS or Atom feed")

    return [_to_item(entry) for entry in parsed.entries]


def _to_item(entry) -> FeedItem:
    return FeedItem(
        id=entry.get("id") or entry.get("guid") or None,
        title=entry.get("title") or "",
        link=entry.get("link") or "",
        author=_AUTHOR_PREFIX_RE.sub("", entry.get("author") or ""),
        published_at=_parse_date(entry),
    )


def _parse_date(entry) -> datetime | None:
    """Parse publication date from a feedparser entry as aware UTC."""
    for field in ("published_parsed", "updated_parsed"):
        time_struct = entry.get(field)
        if isinstance(time_struct, struct_time):
            try:
                # feedparser normalizes to UTC
                return datetime.fromtimestamp(calendar.timegm(time_struct), tz=timezone.utc)
            except (ValueError, OverflowError):
                continue
    return None
