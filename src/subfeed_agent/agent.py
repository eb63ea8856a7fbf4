"""LangGraph agent definition for Subfeed Agent."""

import sqlite3
from typing import Literal

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import SystemMessage, ToolMessage
from langgraph.checkpoint.sqlite import SqliteSaver
from langgraph.graph import END, START, MessagesState, StateGraph

from subfeed_agent.tools import (
    get_latest_post,
    list_subscriptions,
    subscribe_to_subreddit,
    unsubscribe_from_subreddit,
)

SYSTEM_PROMPT = """You are Subfeed Agent, a helpful assistant that follows subreddits for the user.

New posts from subscribed subreddits are delivered to this chat automatically.

You help users:
- Subscribe to a subreddit to receive its new posts
- Unsubscribe from subreddits they no longer want
- See which subreddits they follow and whether polling is healthy
- Look up the newest post of any subreddit

When a user wants to follow a subreddit, use the subscribe_to_subreddit tool.
When a user wants to stop following one, use the unsubscribe_from_subreddit tool.
When a user asks what they follow, use the list_subscriptions tool. A "stopped" status
means polling gave up after repeated errors; suggest unsubscribing and subscribing again.
When a user asks what is new on a subreddit right now, use the get_latest_post tool.
Users can also type /sub, /unsub, /subslist and /latest directly.
When the user's intent is unclear, ask a clarifying question rather than guessing.
Be concise."""

TOOLS = [subscribe_to_subreddit, unsubscribe_from_subreddit, list_subscriptions, get_latest_post]
TOOLS_BY_NAME = {t.name: t for t in TOOLS}

MODEL = "claude-sonnet-4-5-20250929"


def _route(state: MessagesState) -> Literal["run_tools", "__end__"]:
    return "run_tools" if state["messages"][-1].tool_calls else END


def _run_tools(state: MessagesState):
    calls = state["messages"][-1].tool_calls
    return {
        "messages": [
            ToolMessage(
                content=str(TOOLS_BY_NAME[call["name"]].invoke(call["args"])),
                tool_call_id=call["id"],
            )
            for call in calls
        ]
    }


def create_agent(checkpoint_db_path: str = "subfeed_agent_checkpoints.db"):
    """Compile the subscription agent, checkpointing conversations to SQLite."""
    model = ChatAnthropic(model=MODEL, temperature=0).bind_tools(TOOLS)

    def chat(state: MessagesState):
        reply = model.invoke([SystemMessage(content=SYSTEM_PROMPT)] + state["messages"])
        return {"messages": [reply]}

    graph = StateGraph(MessagesState)
    graph.add_node("chat", chat)
    graph.add_node("run_tools", _run_tools)
    graph.add_edge(START, "chat")
    graph.add_conditional_edges("chat", _route, ["run_tools", END])
    graph.add_edge("run_tools", "chat")

    conn = sqlite3.connect(checkpoint_db_path, check_same_thread=False)
    return graph.compile(checkpointer=SqliteSaver(conn))
