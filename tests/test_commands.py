"""Tests for slash-command handling."""

import asyncio

from conftest import make_item
from subfeed_agent.commands import handle_command


def _run(text, service, destination="chat"):
    return asyncio.run(handle_command(text, service, destination))


def test_plain_text_is_not_a_command(service):
    assert _run("show me python news", service) is None
    assert _run("/unknown thing", service) is None
    assert _run("/", service) is None


def test_sub(service):
    assert _run("/sub Python", service) == (
        "✅ Successfully subscribed to r/Python. New posts will be sent to this chat."
    )
    assert _run("/sub python", service) == "You're already subscribed to r/python in this chat."


def test_sub_requires_name(service):
    assert _run("/sub", service) == "Please provide a subreddit name. Usage: /sub SUBREDDIT_NAME"


def test_sub_invalid_name(service):
    assert _run("/sub bad/name", service).startswith("❌")


def test_sub_store_error(service, monkeypatch):
    def broken(raw, destination):
        raise RuntimeError("store down")

    monkeypatch.setattr(service, "subscribe", broken)
    assert _run("/sub python", service) == (
        "❌ There was an error processing your subscription. Please try again later."
    )


def test_unsub(service):
    _run("/sub python", service)
    assert _run("/unsub r/python", service) == "✅ Successfully unsubscribed from r/python."
    assert _run("/unsub python", service) == "You're not subscribed to r/python in this chat."


def test_unsub_requires_name(service):
    assert _run("/unsub", service) == "Please provide a subreddit name. Usage: /unsub SUBREDDIT_NAME"


def test_subslist(service):
    assert _run("/subslist", service) == "This chat is not subscribed to any subreddits."
    _run("/sub python", service)
    _run("/sub rust", service)
    assert _run("/subslist", service) == "Subreddit Subscriptions\n• r/python\n• r/rust"


def test_subslist_is_per_destination(service):
    _run("/sub python", service, destination="other")
    assert _run("/subslist", service) == "This chat is not subscribed to any subreddits."


def test_latest(service, fetcher):
    fetcher.items["python"] = [make_item(1, 1), make_item(2, 2)]
    reply = _run("/latest python", service)
    assert reply.startswith("Post 2\nPosted by u/user2")


def test_latest_without_posts(service):
    assert _run("/latest python", service) == "Could not find any posts in r/python."
