"""Tests for poll state bookkeeping and the due queue."""

from datetime import timedelta

import pytest

from conftest import T0
from subfeed_agent.config import PollingConfig
from subfeed_agent.scheduling import DueQueue, PollStateStore, backoff_delay


@pytest.fixture
def states(db, config, clock):
    return PollStateStore(db, config, clock)


@pytest.fixture
def queue(db):
    return DueQueue(db)


class TestBackoffDelay:
    def test_grows_then_caps(self):
        config = PollingConfig()
        delays = [backoff_delay(config, n).total_seconds() for n in range(1, 6)]
        assert delays == [360, 720, 1440, 1800, 1800]

    def test_huge_retry_count_stays_at_ceiling(self):
        config = PollingConfig()
        assert backoff_delay(config, 10_000) == config.max_interval


class TestPollStateStore:
    def test_initialize(self, states):
        state = states.initialize("python")
        assert state.last_polled_at == T0
        assert state.next_poll_at == T0 + timedelta(minutes=3)
        assert state.retry_count == 0
        assert state.error_count == 0
        assert states.get("python") == state

    def test_initialize_keeps_existing_state(self, states, clock):
        states.initialize("python")
        states.record_failure("python")
        clock.advance(60)
        again = states.initialize("python")
        assert again.error_count == 1
        assert again.last_polled_at == T0

    def test_get_missing(self, states):
        assert states.get("python") is None

    def test_failures_back_off_then_drop(self, states, clock):
        states.initialize("python")
        deltas = []
        for _ in range(4):
            state = states.record_failure("python")
            deltas.append((state.next_poll_at - clock()).total_seconds())
            assert not states.exhausted(state)
            clock.advance(1)
        assert deltas == [360, 720, 1440, 1800]

        state = states.record_failure("python")
        assert state.error_count == 5
        assert states.exhausted(state)

    def test_failure_keeps_last_polled_at(self, states, clock):
        states.initialize("python")
        clock.advance(100)
        state = states.record_failure("python")
        assert state.last_polled_at == T0

    def test_success_resets_backoff(self, states, clock):
        states.initialize("python")
        for _ in range(3):
            states.record_failure("python")
        clock.advance(600)
        state = states.record_success("python")
        assert state.retry_count == 0
        assert state.error_count == 0
        assert state.last_polled_at == clock()
        assert state.next_poll_at == clock() + timedelta(minutes=3)
        assert states.get("python") == state

    def test_remove(self, states):
        states.initialize("python")
        states.remove("python")
        assert states.get("python") is None
        states.remove("python")


class TestDueQueue:
    def test_pop_due_in_order(self, queue):
        queue.upsert("c", T0 + timedelta(seconds=30))
        queue.upsert("a", T0 + timedelta(seconds=10))
        queue.upsert("b", T0 + timedelta(seconds=20))
        queue.upsert("later", T0 + timedelta(minutes=10))

        assert queue.pop_due_before(T0 + timedelta(seconds=30)) == ["a", "b", "c"]
        assert "a" not in queue
        assert "later" in queue
        assert len(queue) == 1

    def test_pop_is_inclusive(self, queue):
        queue.upsert("a", T0)
        assert queue.pop_due_before(T0) == ["a"]

    def test_nothing_due(self, queue):
        queue.upsert("a", T0 + timedelta(seconds=1))
        assert queue.pop_due_before(T0) == []
        assert "a" in queue

    def test_ties_follow_insertion_order(self, queue):
        for key in ("x", "y", "z"):
            queue.upsert(key, T0)
        assert queue.pop_due_before(T0) == ["x", "y", "z"]

    def test_upsert_moves_entry(self, queue):
        queue.upsert("a", T0)
        queue.upsert("b", T0)
        queue.upsert("a", T0)
        assert queue.pop_due_before(T0) == ["b", "a"]

        queue.upsert("a", T0)
        queue.upsert("a", T0 + timedelta(minutes=5))
        assert queue.pop_due_before(T0) == []
        assert queue.due_at("a") == T0 + timedelta(minutes=5)

    def test_key_appears_once(self, queue):
        queue.upsert("a", T0)
        queue.upsert("a", T0 + timedelta(seconds=1))
        assert len(queue) == 1

    def test_remove_is_idempotent(self, queue):
        queue.upsert("a", T0)
        queue.remove("a")
        queue.remove("a")
        queue.remove("never-added")
        assert "a" not in queue

    def test_popped_key_not_popped_again(self, queue):
        queue.upsert("a", T0)
        assert queue.pop_due_before(T0) == ["a"]
        assert queue.pop_due_before(T0 + timedelta(hours=1)) == []
