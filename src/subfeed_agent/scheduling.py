"""Poll state bookkeeping and the due queue for scheduled feed keys."""

import logging
from datetime import datetime, timedelta
from typing import Callable

from subfeed_agent.config import PollingConfig
from subfeed_agent.database import Database
from subfeed_agent.models import PollState, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def backoff_delay(config: PollingConfig, retry_count: int) -> timedelta:
    """Delay before the next attempt after retry_count consecutive failures."""
    base = config.base_interval.total_seconds()
    ceiling = config.max_interval.total_seconds()
    try:
        seconds = base * config.backoff_factor ** retry_count
    except OverflowError:
        seconds = ceiling
    return timedelta(seconds=min(seconds, ceiling))


class PollStateStore:
    """Owns the scheduling record of every actively polled feed key."""

    def __init__(
        self,
        db: Database,
        config: PollingConfig | None = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.config = config or PollingConfig()
        self.clock = clock

    def initialize(self, feed_key: str) -> PollState:
        """Create fresh state for a feed key; existing state is returned untouched."""
        now = self.clock()
        state = PollState(
            feed_key=feed_key,
            last_polled_at=now,
            next_poll_at=now + self.config.base_interval,
        )
        if self.db.insert_poll_state(state):
            logger.info("Polling initialized for r/%s", feed_key)
            return state
        return self.db.get_poll_state(feed_key) or state

    def get(self, feed_key: str) -> PollState | None:
        return self.db.get_poll_state(feed_key)

    def record_success(self, feed_key: str) -> PollState:
        """Reset counters and schedule the next poll one base interval out."""
        now = self.clock()
        state = PollState(
            feed_key=feed_key,
            last_polled_at=now,
            next_poll_at=now + self.config.base_interval,
        )
        self.db.save_poll_state(state)
        return state

    def record_failure(self, feed_key: str) -> PollState:
        """Bump counters and push the next poll out with exponential backoff."""
        now = self.clock()
        state = self.db.get_poll_state(feed_key) or PollState(
            feed_key=feed_key, last_polled_at=now, next_poll_at=now
        )
        state.error_count += 1
        state.retry_count += 1
        state.next_poll_at = now + backoff_delay(self.config, state.retry_count)
        self.db.save_poll_state(state)
        return state

    def exhausted(self, state: PollState) -> bool:
        """True once a feed has failed often enough to be dropped."""
        return state.error_count >= self.config.max_retries

    def remove(self, feed_key: str) -> None:
        self.db.delete_poll_state(feed_key)

    def all(self) -> list[PollState]:
        return self.db.list_poll_states()


class DueQueue:
    """Feed keys ordered by next due time; each key appears at most once."""

    def __init__(self, db: Database):
        self.db = db

    def upsert(self, feed_key: str, due_at: datetime) -> None:
        self.db.upsert_due(feed_key, due_at)

    def pop_due_before(self, timestamp: datetime) -> list[str]:
        """Remove and return every key due at or before timestamp, earliest first.

        Ties keep insertion order.
        """
        return self.db.pop_due_before(timestamp)

    def remove(self, feed_key: str) -> None:
        """Drop a key if present; absent keys are ignored."""
        self.db.delete_due(feed_key)

    def due_at(self, feed_key: str) -> datetime | None:
        return self.db.get_due(feed_key)

    def __contains__(self, feed_key: str) -> bool:
        return self.db.get_due(feed_key) is not None

    def __len__(self) -> int:
        return len(self.db.list_due())
