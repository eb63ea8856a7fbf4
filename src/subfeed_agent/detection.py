"""New-item detection against a subscriber's marker."""

import logging
from datetime import datetime, timezone

from subfeed_agent.models import ById, ByTimestamp, FeedItem, Marker, Subscriber

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def sort_items(items: list[FeedItem]) -> list[FeedItem]:
    """Newest first. Undated items sort last; ties keep fetch order."""
    return sorted(items, key=lambda item: item.published_at or _EPOCH, reverse=True)


def marker_for(subscriber: Subscriber) -> Marker:
    """Pick the id marker when the subscriber has one, the timestamp otherwise."""
    if subscriber.last_seen_item_id:
        return ById(subscriber.last_seen_item_id)
    return ByTimestamp(subscriber.last_checked_at)


def find_new_items(sorted_items: list[FeedItem], marker: Marker) -> list[FeedItem]:
    """Return the items newer than the marker, newest first.

    An id marker that no longer appears in the feed means the item aged out
    of the window; every fetched item is then treated as new.
    """
    if isinstance(marker, ById):
        for index, item in enumerate(sorted_items):
            if item.id == marker.item_id:
                return sorted_items[:index]
        logger.info(
            "Last seen id %s no longer in feed, treating all %d items as new",
            marker.item_id,
            len(sorted_items),
        )
        return list(sorted_items)

    return [
        item
        for item in sorted_items
        if item.published_at is not None and item.published_at > marker.checked_at
    ]


def advance_marker(
    subscriber: Subscriber, new_items: list[FeedItem], polled_at: datetime
) -> bool:
    """Move the subscriber's marker past new_items. Returns False when nothing changed.

    The id marker follows the newest item; when that item carries no id the
    marker falls back to the poll timestamp.
    """
    if not new_items:
        return False
    subscriber.last_checked_at = polled_at
    subscriber.last_seen_item_id = new_items[0].id
    return True
