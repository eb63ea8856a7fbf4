"""Agent tool implementations for Subfeed Agent."""

import json

from langchain_core.tools import tool

from subfeed_agent.service import InvalidFeedKey, SubscriptionService

# Module-level service reference and the chat the agent is acting for,
# set during agent initialization
_service: SubscriptionService | None = None
_destination: str | None = None


def set_service(service: SubscriptionService, destination: str) -> None:
    """Set the service and destination used by all tools."""
    global _service, _destination
    _service = service
    _destination = destination


def _get_service() -> tuple[SubscriptionService, str]:
    """Get the service and destination, raising if not set."""
    if _service is None or _destination is None:
        raise RuntimeError("Service not initialized. Call set_service() first.")
    return _service, _destination


@tool
def subscribe_to_subreddit(subreddit: str) -> str:
    """Subscribe this chat to new posts from a subreddit.

    Args:
        subreddit: Subreddit name, with or without the leading "r/".
    """
    service, destination = _get_service()
    try:
        subscribed = service.subscribe(subreddit, destination)
    except InvalidFeedKey as e:
        return json.dumps({"status": "error", "message": str(e)})

    if not subscribed:
        return json.dumps({
            "status": "error",
            "message": f"Already subscribed to r/{service.resolve(subreddit)}",
        })
    return json.dumps({"status": "subscribed", "subreddit": service.resolve(subreddit)})


@tool
def unsubscribe_from_subreddit(subreddit: str) -> str:
    """Stop sending new posts from a subreddit to this chat.

    Args:
        subreddit: Subreddit name, with or without the leading "r/".
    """
    service, destination = _get_service()
    try:
        removed = service.unsubscribe(subreddit, destination)
    except InvalidFeedKey as e:
        return json.dumps({"status": "error", "message": str(e)})

    if not removed:
        return json.dumps({
            "status": "error",
            "message": f"Not subscribed to r/{service.resolve(subreddit)}",
        })
    return json.dumps({"status": "unsubscribed", "subreddit": service.resolve(subreddit)})


@tool
def list_subscriptions() -> str:
    """List the subreddits this chat is subscribed to, with their polling status.

    Status is "active" while polling is healthy, "erroring" while fetches are
    failing and being retried, and "stopped" once polling gave up.
    """
    service, destination = _get_service()
    feeds = []
    for feed_key in service.list_subscriptions(destination):
        state = service.engine.states.get(feed_key)
        if state is None:
            status = "stopped"
        elif state.error_count > 0:
            status = "erroring"
        else:
            status = "active"
        feeds.append({
            "subreddit": feed_key,
            "status": status,
            "next_poll_at": state.next_poll_at.isoformat() if state else None,
            "error_count": state.error_count if state else None,
        })
    return json.dumps({"subscriptions": feeds, "total": len(feeds)})


@tool
def get_latest_post(subreddit: str) -> str:
    """Fetch the newest post of a subreddit right now.

    Args:
        subreddit: Subreddit name, with or without the leading "r/".
    """
    service, _ = _get_service()
    post = service.latest_post(subreddit)
    if post is None:
        return json.dumps({
            "status": "error",
            "message": f"Could not fetch posts from r/{subreddit}",
        })
    return json.dumps({
        "title": post.title,
        "link": post.link,
        "author": post.author,
        "published_at": post.published_at.isoformat() if post.published_at else None,
    })
