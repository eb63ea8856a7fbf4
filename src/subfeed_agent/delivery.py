"""Rendering of posts and delivery to notification sinks."""

import logging
import re
from dataclasses import dataclass
from typing import Protocol

import requests

from subfeed_agent.models import FeedItem

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
DEFAULT_SEND_TIMEOUT = 10.0

# Characters reserved by Telegram MarkdownV2.
_MARKDOWN_V2_RE = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


class DeliveryError(Exception):
    """Raised by a sink when a message could not be delivered."""


class NotificationSink(Protocol):
    def send(self, destination: str, text: str) -> None:
        """Deliver text to destination or raise DeliveryError."""


def escape_markdown(text: str) -> str:
    """Escape text for MarkdownV2 formatting."""
    return _MARKDOWN_V2_RE.sub(r"\\\1", text)


def format_post(item: FeedItem, feed_key: str) -> str:
    """Format a post as a MarkdownV2 message."""
    title = escape_markdown(item.title or "No title")
    author = escape_markdown(item.author or "unknown")
    return (
        f"*New post in r/{escape_markdown(feed_key)}*\n"
        f"*{title}*\n"
        f"Posted by u/{author}\n"
        f"{escape_markdown(item.link or '')}"
    )


def format_overflow_notice(withheld: int, feed_key: str) -> str:
    return (
        f"_{withheld} more posts not shown\\. "
        f"Visit r/{escape_markdown(feed_key)} to see all\\._"
    )


def format_drop_notice(feed_key: str) -> str:
    """Notice sent to subscribers when a feed is dropped after repeated errors."""
    subreddit = escape_markdown(feed_key)
    return (
        f"_Stopped checking r/{subreddit} after repeated errors\\. "
        f"Send /unsub {subreddit} and /sub {subreddit} to try again\\._"
    )


@dataclass
class DeliveryReport:
    """Outcome of delivering one batch to one destination."""

    destination: str
    sent: int = 0
    withheld: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def deliver_items(
    sink: NotificationSink,
    destination: str,
    feed_key: str,
    items: list[FeedItem],
    cap: int = 5,
) -> DeliveryReport:
    """Send up to cap of the newest items, then one notice for the rest.

    Stops at the first failed send for this destination; the failure is
    reported, never raised.
    """
    report = DeliveryReport(destination=destination, withheld=max(len(items) - cap, 0))
    try:
        for item in items[:cap]:
            sink.send(destination, format_post(item, feed_key))
            report.sent += 1
        if report.withheld:
            sink.send(destination, format_overflow_notice(report.withheld, feed_key))
    except DeliveryError as e:
        logger.warning("Delivery to %s for r/%s failed: %s", destination, feed_key, e)
        report.error = str(e)
    except Exception as e:
        logger.exception("Unexpected error delivering to %s for r/%s", destination, feed_key)
        report.error = f"{type(e).__name__}: {e}"
    return report


class ConsoleSink:
    """Prints messages to stdout; used when no chat platform is configured."""

    def send(self, destination: str, text: str) -> None:
        print(f"\n[{destination}] {text}\n")


class TelegramSink:
    """Sends messages through the Telegram Bot API."""

    def __init__(self, token: str, timeout: float = DEFAULT_SEND_TIMEOUT):
        self._url = TELEGRAM_API_URL.format(token=token)
        self.timeout = timeout

    def send(self, destination: str, text: str) -> None:
        try:
            resp = requests.post(
                self._url,
                json={
                    "chat_id": destination,
                    "text": text,
                    "parse_mode": "MarkdownV2",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DeliveryError(f"Telegram unreachable: {e}") from e

        if resp.status_code != 200:
            raise DeliveryError(f"Telegram HTTP {resp.status_code}: {resp.text[:150]}")
