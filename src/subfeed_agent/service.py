"""Subscription operations shared by the command handlers and agent tools."""

import logging
import re

from subfeed_agent.database import Database
from subfeed_agent.detection import sort_items
from subfeed_agent.feed_parser import normalize_feed_key
from subfeed_agent.models import FeedItem, Subscriber
from subfeed_agent.poller import Fetcher, PollEngine

logger = logging.getLogger(__name__)

# Subreddit names, optionally joined with "+" into a multireddit.
_FEED_KEY_RE = re.compile(r"^[a-z0-9_]+(\+[a-z0-9_]+)*$")


class InvalidFeedKey(ValueError):
    """Raised when a subreddit name cannot be used as a feed key."""


class SubscriptionService:
    """Subscribe, unsubscribe and list, keeping polling in step with the registry."""

    def __init__(self, db: Database, engine: PollEngine, fetcher: Fetcher | None = None):
        self.db = db
        self.engine = engine
        self.fetcher = fetcher or engine.fetcher

    def resolve(self, raw: str) -> str:
        """Normalize a user-supplied subreddit name.

        Raises:
            InvalidFeedKey: If nothing usable remains after normalization.
        """
        feed_key = normalize_feed_key(raw)
        if not _FEED_KEY_RE.match(feed_key):
            raise InvalidFeedKey(f"'{raw}' is not a valid subreddit name")
        return feed_key

    def subscribe(self, raw: str, destination: str) -> bool:
        """Subscribe a destination. Returns False if it was already subscribed."""
        feed_key = self.resolve(raw)
        subscriber = Subscriber(
            feed_key=feed_key,
            destination=destination,
            last_checked_at=self.engine.clock(),
        )
        if not self.db.add_subscriber(subscriber):
            return False

        # Also revives a feed that was dropped after repeated errors.
        self.engine.track(feed_key)
        logger.info("%s subscribed to r/%s", destination, feed_key)
        return True

    def unsubscribe(self, raw: str, destination: str) -> bool:
        """Unsubscribe a destination. Returns False if it was not subscribed."""
        feed_key = self.resolve(raw)
        if not self.db.remove_subscriber(feed_key, destination):
            return False

        if not self.db.list_subscribers(feed_key):
            logger.info("Last subscriber left r/%s, stopping polling", feed_key)
            self.engine.untrack(feed_key)
        return True

    def list_subscriptions(self, destination: str) -> list[str]:
        return self.db.list_feed_keys_for_destination(destination)

    def latest_post(self, raw: str) -> FeedItem | None:
        """Fetch the newest post of a subreddit, or None if there is none or the fetch fails."""
        try:
            feed_key = self.resolve(raw)
            items = self.fetcher(feed_key)
        except Exception as e:
            logger.warning("Error fetching latest post from r/%s: %s", raw, e)
            return None

        items = sort_items(items)
        return items[0] if items else None
