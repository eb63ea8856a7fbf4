"""Background polling engine and scheduler lifecycle for Subfeed Agent."""

import asyncio
import enum
import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable, Literal

from subfeed_agent.config import PollingConfig
from subfeed_agent.database import Database
from subfeed_agent.delivery import (
    NotificationSink,
    deliver_items,
    format_drop_notice,
)
from subfeed_agent.detection import advance_marker, find_new_items, marker_for, sort_items
from subfeed_agent.feed_parser import FeedFetchError
from subfeed_agent.models import FeedItem, PollState, utcnow
from subfeed_agent.scheduling import Clock, DueQueue, PollStateStore

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], list[FeedItem]]

PollStatus = Literal["ok", "failed", "dropped", "idle", "store_error", "error"]


@dataclass
class PollOutcome:
    """What happened to one feed key during a cycle."""

    feed_key: str
    status: PollStatus
    new_items: int = 0
    delivered: int = 0


class PollEngine:
    """Polls due feed keys, delivers new items and reschedules.

    Every feed key moves through Idle -> Scheduled -> Polling and back to
    Scheduled, or to Dropped once its error count reaches the ceiling. A key
    is popped from the due queue before it is fetched and re-queued only
    after the attempt finishes, so a key is never polled twice at once.
    """

    def __init__(
        self,
        db: Database,
        fetcher: Fetcher,
        sink: NotificationSink,
        config: PollingConfig | None = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.fetcher = fetcher
        self.sink = sink
        self.config = config or PollingConfig()
        self.clock = clock
        self.states = PollStateStore(db, self.config, clock)
        self.queue = DueQueue(db)
        self._in_flight: set[str] = set()

    # --- Tracking ---

    def track(self, feed_key: str) -> PollState:
        """Start polling a feed key unless it is already scheduled."""
        state = self.states.get(feed_key)
        if state is None:
            state = self.states.initialize(feed_key)
            self.queue.upsert(feed_key, state.next_poll_at)
        elif feed_key not in self._in_flight and feed_key not in self.queue:
            self.queue.upsert(feed_key, state.next_poll_at)
        return state

    def untrack(self, feed_key: str) -> None:
        """Stop polling a feed key. Safe to call for unknown keys."""
        self.states.remove(feed_key)
        self.queue.remove(feed_key)

    def is_tracked(self, feed_key: str) -> bool:
        return self.states.get(feed_key) is not None

    def rehydrate(self) -> int:
        """Rebuild polling state from the registry after a restart.

        Feed keys with subscribers get their due entry back from their poll
        state, or fresh poll state when it is missing. State left behind by
        feed keys without subscribers is removed. Returns the number of feed
        keys being polled.
        """
        active = set(self.db.list_feed_keys_with_subscribers())

        for state in self.states.all():
            if state.feed_key not in active:
                self.untrack(state.feed_key)
        for feed_key, _ in self.db.list_due():
            if feed_key not in active:
                self.queue.remove(feed_key)

        for feed_key in sorted(active):
            state = self.states.get(feed_key) or self.states.initialize(feed_key)
            self.queue.upsert(feed_key, state.next_poll_at)

        logger.info("Rehydrated polling for %d feeds", len(active))
        return len(active)

    # --- Polling ---

    async def run_cycle(self) -> list[PollOutcome]:
        """Poll every feed key that is due now."""
        due = self.queue.pop_due_before(self.clock())
        if not due:
            return []

        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def guarded(feed_key: str) -> PollOutcome:
            async with semaphore:
                return await self.poll_feed(feed_key)

        results = await asyncio.gather(*(guarded(key) for key in due), return_exceptions=True)
        outcomes = []
        for feed_key, result in zip(due, results):
            if isinstance(result, BaseException):
                logger.error("Poll of r/%s raised: %r", feed_key, result)
                outcomes.append(PollOutcome(feed_key, "error"))
            else:
                outcomes.append(result)

        delivered = sum(o.delivered for o in outcomes)
        if delivered:
            logger.info(
                "Poll cycle complete: %d feeds, %d posts delivered", len(due), delivered
            )
        return outcomes

    async def poll_feed(self, feed_key: str) -> PollOutcome:
        """Run one poll attempt for a feed key that has been taken off the queue."""
        self._in_flight.add(feed_key)
        try:
            return await self._poll_feed(feed_key)
        except sqlite3.Error:
            logger.exception("Store error while polling r/%s", feed_key)
            self._requeue(feed_key)
            return PollOutcome(feed_key, "store_error")
        except Exception:
            logger.exception("Unexpected error while polling r/%s", feed_key)
            self._requeue(feed_key)
            return PollOutcome(feed_key, "error")
        finally:
            self._in_flight.discard(feed_key)

    async def _poll_feed(self, feed_key: str) -> PollOutcome:
        subscribers = self.db.list_subscribers(feed_key)
        if not subscribers:
            logger.info("No subscribers left for r/%s, removing from polling", feed_key)
            self.untrack(feed_key)
            return PollOutcome(feed_key, "idle")

        if self.states.get(feed_key) is None:
            self.states.initialize(feed_key)

        try:
            items = await asyncio.wait_for(
                asyncio.to_thread(self.fetcher, feed_key),
                timeout=self.config.fetch_timeout,
            )
        except FeedFetchError as e:
            logger.warning("Feed r/%s error: %s", feed_key, e)
            return await self._record_failure(feed_key, subscribers)
        except asyncio.TimeoutError:
            logger.warning(
                "Feed r/%s timed out after %.0fs", feed_key, self.config.fetch_timeout
            )
            return await self._record_failure(feed_key, subscribers)
        except Exception as e:
            logger.warning("Feed r/%s unexpected error: %s", feed_key, e)
            return await self._record_failure(feed_key, subscribers)

        polled_at = self.clock()
        sorted_items = sort_items(items)
        if not sorted_items:
            logger.info("No items found in the feed for r/%s", feed_key)

        outcome = PollOutcome(feed_key, "ok")
        for subscriber in subscribers:
            new_items = find_new_items(sorted_items, marker_for(subscriber))
            if not new_items:
                continue
            report = await asyncio.to_thread(
                deliver_items,
                self.sink,
                subscriber.destination,
                feed_key,
                new_items,
                self.config.delivery_cap,
            )
            outcome.new_items += len(new_items)
            outcome.delivered += report.sent
            # Delivery is best effort: the marker advances even if sending failed.
            advance_marker(subscriber, new_items, polled_at)
            self.db.update_subscriber_marker(subscriber)

        state = self.states.record_success(feed_key)
        self.queue.upsert(feed_key, state.next_poll_at)
        return outcome

    async def _record_failure(self, feed_key: str, subscribers) -> PollOutcome:
        state = self.states.record_failure(feed_key)
        if self.states.exhausted(state):
            logger.warning(
                "Removing r/%s from polling after %d consecutive errors",
                feed_key,
                state.error_count,
            )
            self.untrack(feed_key)
            if self.config.drop_policy == "notify":
                await self._notify_dropped(feed_key, subscribers)
            return PollOutcome(feed_key, "dropped")

        self.queue.upsert(feed_key, state.next_poll_at)
        logger.info(
            "Retrying r/%s at %s (attempt %d)",
            feed_key,
            state.next_poll_at.isoformat(),
            state.retry_count,
        )
        return PollOutcome(feed_key, "failed")

    async def _notify_dropped(self, feed_key: str, subscribers) -> None:
        text = format_drop_notice(feed_key)
        for subscriber in subscribers:
            try:
                await asyncio.to_thread(self.sink.send, subscriber.destination, text)
            except Exception as e:
                logger.warning(
                    "Drop notice to %s for r/%s failed: %s",
                    subscriber.destination,
                    feed_key,
                    e,
                )

    def _requeue(self, feed_key: str) -> None:
        try:
            if self.is_tracked(feed_key):
                self.queue.upsert(feed_key, self.clock() + self.config.base_interval)
        except sqlite3.Error:
            logger.exception("Could not requeue r/%s; it resumes on restart", feed_key)


class SchedulerState(enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"


class Scheduler:
    """Lifecycle handle for the polling loop: NotStarted -> Running -> Stopped."""

    def __init__(self, engine: PollEngine, tick_interval: float | None = None):
        self.engine = engine
        self.tick_interval = (
            engine.config.tick_interval if tick_interval is None else tick_interval
        )
        self._state = SchedulerState.NOT_STARTED
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    def start(self) -> asyncio.Task:
        """Launch the loop on the running event loop.

        Raises:
            RuntimeError: If the scheduler was already started or stopped.
        """
        if self._state is not SchedulerState.NOT_STARTED:
            raise RuntimeError(f"Scheduler cannot start from state {self._state.value}")
        self._task = asyncio.create_task(self._run(), name="subfeed-poller")
        self._state = SchedulerState.RUNNING
        return self._task

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish. Idempotent."""
        task, self._task = self._task, None
        self._state = SchedulerState.STOPPED
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        logger.info("Poller started (tick: %.1fs)", self.tick_interval)
        while True:
            try:
                await self.engine.run_cycle()
            except Exception as e:
                logger.error("Poll cycle failed: %s", e)

            await asyncio.sleep(self.tick_interval)
