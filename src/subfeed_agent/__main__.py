"""Entry point for Subfeed Agent: python -m subfeed_agent"""

import asyncio
import functools
import logging
import os
import uuid

from langchain_core.messages import HumanMessage

from subfeed_agent.agent import create_agent
from subfeed_agent.commands import handle_command
from subfeed_agent.config import AppConfig, load_config
from subfeed_agent.database import Database
from subfeed_agent.delivery import ConsoleSink, NotificationSink, TelegramSink
from subfeed_agent.feed_parser import fetch_and_parse
from subfeed_agent.poller import PollEngine, Scheduler
from subfeed_agent.service import SubscriptionService
from subfeed_agent.tools import set_service

logger = logging.getLogger("subfeed_agent")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quiet noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("langchain").setLevel(logging.WARNING)


def build_sink(config: AppConfig) -> NotificationSink:
    if config.telegram_bot_token:
        logger.info("Delivering posts to Telegram chat %s", config.chat_id)
        return TelegramSink(config.telegram_bot_token)
    return ConsoleSink()


def build_agent(config: AppConfig):
    """Create the chat agent, or None when no model credentials are configured."""
    if not os.environ.get("ANTHROPIC_API_KEY"):
        logger.info("ANTHROPIC_API_KEY not set, only slash commands are available")
        return None

    return create_agent(checkpoint_db_path=config.checkpoint_path)


async def chat_loop(service: SubscriptionService, destination: str, agent=None) -> None:
    """Run the interactive chat loop."""
    print("Subfeed Agent ready! Try /sub python, /subslist or /unsub python (Ctrl+C to quit).\n")
    thread_config = {"configurable": {"thread_id": uuid.uuid4().hex}}

    while True:
        try:
            user_input = await asyncio.to_thread(input, "You: ")
        except EOFError:
            break

        if not user_input.strip():
            continue

        reply = await handle_command(user_input.strip(), service, destination)
        if reply is not None:
            print(f"\nAgent: {reply}\n")
            continue

        if agent is None:
            print("\nAgent: Unknown command. Use /sub, /unsub, /subslist or /latest.\n")
            continue

        try:
            response = await asyncio.to_thread(
                agent.invoke,
                {"messages": [HumanMessage(content=user_input)]},
                thread_config,
            )
            last_message = response["messages"][-1]
            print(f"\nAgent: {last_message.content}\n")
        except Exception as e:
            error_msg = str(e)
            if "tool_use" in error_msg and "tool_result" in error_msg:
                # Corrupted checkpoint, start a fresh thread
                thread_config["configurable"]["thread_id"] = uuid.uuid4().hex
                print("\nAgent: Sorry, I had an issue with my memory. Let me start fresh. Please try again.\n")
            else:
                print(f"\nAgent: Sorry, I encountered an error: {error_msg}\n")


async def main() -> None:
    """Initialize and run Subfeed Agent."""
    config = load_config()
    configure_logging(config.log_level)

    db = Database(config.db_path)
    db.connect()

    fetcher = functools.partial(
        fetch_and_parse,
        timeout=config.polling.fetch_timeout,
        user_agent=config.user_agent,
    )
    engine = PollEngine(db, fetcher, build_sink(config), config.polling)
    service = SubscriptionService(db, engine)
    set_service(service, config.chat_id)

    engine.rehydrate()
    scheduler = Scheduler(engine)
    scheduler.start()

    try:
        await chat_loop(service, config.chat_id, build_agent(config))
    except KeyboardInterrupt:
        print("\nGoodbye!")
    finally:
        await scheduler.stop()
        db.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
