"""Slash-command handling: /sub, /unsub, /subslist and /latest."""

import asyncio
import logging

from subfeed_agent.service import InvalidFeedKey, SubscriptionService

logger = logging.getLogger(__name__)

COMMANDS = ("sub", "unsub", "subslist", "latest")


async def handle_command(text: str, service: SubscriptionService, destination: str) -> str | None:
    """Run a slash command and return the reply, or None if text is not a command."""
    if not text.startswith("/"):
        return None

    parts = text[1:].split()
    if not parts:
        return None
    command, args = parts[0].lower(), parts[1:]
    if command not in COMMANDS:
        return None

    if command == "subslist":
        return _list(service, destination)

    if not args:
        return f"Please provide a subreddit name. Usage: /{command} SUBREDDIT_NAME"
    subreddit = args[0].strip()

    if command == "sub":
        return _subscribe(service, subreddit, destination)
    if command == "unsub":
        return _unsubscribe(service, subreddit, destination)
    return await _latest(service, subreddit)


def _subscribe(service: SubscriptionService, subreddit: str, destination: str) -> str:
    try:
        if service.subscribe(subreddit, destination):
            return f"✅ Successfully subscribed to r/{subreddit}. New posts will be sent to this chat."
        return f"You're already subscribed to r/{subreddit} in this chat."
    except InvalidFeedKey as e:
        return f"❌ {e}."
    except Exception:
        logger.exception("Error subscribing to subreddit")
        return "❌ There was an error processing your subscription. Please try again later."


def _unsubscribe(service: SubscriptionService, subreddit: str, destination: str) -> str:
    try:
        if service.unsubscribe(subreddit, destination):
            return f"✅ Successfully unsubscribed from r/{subreddit}."
        return f"You're not subscribed to r/{subreddit} in this chat."
    except InvalidFeedKey as e:
        return f"❌ {e}."
    except Exception:
        logger.exception("Error unsubscribing from subreddit")
        return "❌ There was an error processing your request. Please try again later."


def _list(service: SubscriptionService, destination: str) -> str:
    try:
        subscriptions = service.list_subscriptions(destination)
    except Exception:
        logger.exception("Error listing subscriptions")
        return "❌ There was an error retrieving your subscriptions. Please try again later."

    if not subscriptions:
        return "This chat is not subscribed to any subreddits."
    formatted = "\n".join(f"• r/{feed_key}" for feed_key in subscriptions)
    return f"Subreddit Subscriptions\n{formatted}"


async def _latest(service: SubscriptionService, subreddit: str) -> str:
    post = await asyncio.to_thread(service.latest_post, subreddit)
    if post is None:
        return f"Could not find any posts in r/{subreddit}."
    return f"{post.title}\nPosted by u/{post.author or 'unknown'}\n{post.link}"
