"""Unit tests for the IssueStateStore."""

import itertools
import threading
from datetime import UTC, datetime, timedelta

import pytest

from src.interfaces import IssuePhase, IssueStatus
from src.state_manager import IssueStateStore


@pytest.fixture
def store(clock):
    return IssueStateStore(clock=clock)


@pytest.mark.unit
class TestSetAndGetState:
    """Tests for set_state() / get_state()."""

    def test_unknown_issue_is_pending(self, store):
        """An issue never written reports PENDING for every phase."""
        for phase in IssuePhase:
            assert store.get_state(99, phase) == IssueStatus.PENDING

    def test_set_state_upserts(self, store):
        """Writing a phase twice keeps the latest status."""
        store.set_state(1, IssuePhase.PLAN, IssueStatus.PROCESSING)
        store.set_state(1, IssuePhase.PLAN, IssueStatus.COMPLETED)

        assert store.get_state(1, IssuePhase.PLAN) == IssueStatus.COMPLETED

    def test_phases_are_independent(self, store):
        """Each phase of an issue keeps its own status."""
        store.set_state(1, IssuePhase.PLAN, IssueStatus.COMPLETED)
        store.set_state(1, IssuePhase.IMPLEMENTATION, IssueStatus.FAILED)

        assert store.get_state(1, IssuePhase.PLAN) == IssueStatus.COMPLETED
        assert store.get_state(1, IssuePhase.IMPLEMENTATION) == IssueStatus.FAILED
        assert store.get_state(1, IssuePhase.REVIEW) == IssueStatus.PENDING

    def test_set_state_stamps_last_action(self, store, clock):
        """last_action is the clock time of the latest write."""
        store.set_state(1, IssuePhase.PLAN, IssueStatus.PROCESSING)
        clock.advance(minutes=5)
        store.set_state(1, IssuePhase.PLAN, IssueStatus.COMPLETED)

        state = store.get_issue_state(1, IssuePhase.PLAN)
        assert state is not None
        assert state.last_action == clock.now
        assert state.issue_number == 1
        assert state.phase == IssuePhase.PLAN

    def test_get_issue_state_returns_copy(self, store):
        """Mutating a returned record does not change the store."""
        store.set_state(1, IssuePhase.PLAN, IssueStatus.PROCESSING)
        state = store.get_issue_state(1, IssuePhase.PLAN)
        state.status = IssueStatus.FAILED

        assert store.get_state(1, IssuePhase.PLAN) == IssueStatus.PROCESSING

    def test_get_issue_state_missing(self, store):
        assert store.get_issue_state(1, IssuePhase.REVIEW) is None


@pytest.mark.unit
class TestQueries:
    """Tests for is_processing() / has_been_processed() and the mark helpers."""

    def test_is_processing_any_phase(self, store):
        """is_processing() is True when any phase is PROCESSING."""
        store.set_state(1, IssuePhase.PLAN, IssueStatus.COMPLETED)
        assert not store.is_processing(1)

        store.set_state(1, IssuePhase.REVIEW, IssueStatus.PROCESSING)
        assert store.is_processing(1)

    def test_is_processing_unknown_issue(self, store):
        assert not store.is_processing(42)

    def test_has_been_processed_only_for_completed(self, store):
        """Only COMPLETED counts as processed; FAILED can be retried."""
        store.mark_as_failed(1, IssuePhase.PLAN)
        assert not store.has_been_processed(1, IssuePhase.PLAN)

        store.mark_as_completed(1, IssuePhase.PLAN)
        assert store.has_been_processed(1, IssuePhase.PLAN)
        assert not store.has_been_processed(1, IssuePhase.IMPLEMENTATION)

    def test_clear_removes_every_phase(self, store):
        store.mark_as_completed(1, IssuePhase.PLAN)
        store.mark_as_failed(1, IssuePhase.IMPLEMENTATION)
        store.mark_as_completed(2, IssuePhase.PLAN)

        store.clear(1)

        assert store.get_state(1, IssuePhase.PLAN) == IssueStatus.PENDING
        assert store.get_state(1, IssuePhase.IMPLEMENTATION) == IssueStatus.PENDING
        assert store.get_state(2, IssuePhase.PLAN) == IssueStatus.COMPLETED
        assert len(store) == 1

    def test_clear_unknown_issue_is_noop(self, store):
        store.clear(123)
        assert len(store) == 0


@pytest.mark.unit
class TestGetAllStates:
    """Tests for get_all_states()."""

    def test_returns_nested_status_map(self, store):
        store.mark_as_completed(1, IssuePhase.PLAN)
        store.set_state(2, IssuePhase.REVIEW, IssueStatus.PROCESSING)

        assert store.get_all_states() == {
            1: {IssuePhase.PLAN: IssueStatus.COMPLETED},
            2: {IssuePhase.REVIEW: IssueStatus.PROCESSING},
        }

    def test_result_is_a_deep_copy(self, store):
        """Mutating the returned maps does not affect the store."""
        store.mark_as_completed(1, IssuePhase.PLAN)

        states = store.get_all_states()
        states[1][IssuePhase.PLAN] = IssueStatus.FAILED
        states[2] = {}

        assert store.get_all_states() == {1: {IssuePhase.PLAN: IssueStatus.COMPLETED}}


@pytest.mark.unit
class TestCleanupOldStates:
    """Tests for cleanup_old_states()."""

    def test_removes_old_terminal_entries(self, store, clock):
        """COMPLETED and FAILED entries past the retention window are removed."""
        store.mark_as_completed(1, IssuePhase.PLAN)
        store.mark_as_failed(2, IssuePhase.PLAN)
        clock.advance(hours=25)

        removed = store.cleanup_old_states(timedelta(hours=24))

        assert removed == 2
        assert store.get_all_states() == {}
        assert len(store) == 0

    def test_keeps_pending_and_processing_regardless_of_age(self, store, clock):
        store.set_state(1, IssuePhase.PLAN, IssueStatus.PROCESSING)
        store.set_state(2, IssuePhase.PLAN, IssueStatus.PENDING)
        clock.advance(days=30)

        assert store.cleanup_old_states(timedelta(hours=1)) == 0
        assert store.get_state(1, IssuePhase.PLAN) == IssueStatus.PROCESSING
        assert len(store) == 2

    def test_keeps_recent_terminal_entries(self, store, clock):
        store.mark_as_completed(1, IssuePhase.PLAN)
        clock.advance(hours=23)

        assert store.cleanup_old_states(timedelta(hours=24)) == 0
        assert store.has_been_processed(1, IssuePhase.PLAN)

    def test_sweeps_per_phase(self, store, clock):
        """An old phase is swept while a newer phase of the same issue stays."""
        store.mark_as_completed(1, IssuePhase.PLAN)
        clock.advance(hours=20)
        store.mark_as_completed(1, IssuePhase.IMPLEMENTATION)
        clock.advance(hours=5)

        removed = store.cleanup_old_states(timedelta(hours=24))

        assert removed == 1
        assert store.get_all_states() == {
            1: {IssuePhase.IMPLEMENTATION: IssueStatus.COMPLETED}
        }

    def test_processing_phase_keeps_issue(self, store, clock):
        """An issue with a live phase survives even if its other phases are swept."""
        store.mark_as_completed(1, IssuePhase.PLAN)
        store.set_state(1, IssuePhase.IMPLEMENTATION, IssueStatus.PROCESSING)
        clock.advance(hours=48)

        store.cleanup_old_states(timedelta(hours=24))

        assert store.get_all_states() == {
            1: {IssuePhase.IMPLEMENTATION: IssueStatus.PROCESSING}
        }


@pytest.mark.unit
class TestConcurrency:
    """Thread-safety tests."""

    def test_concurrent_writers_and_readers(self):
        """Many threads writing distinct issues leave every write visible."""
        store = IssueStateStore()
        errors: list[Exception] = []

        def worker(n: int) -> None:
            try:
                store.set_state(n, IssuePhase.PLAN, IssueStatus.PROCESSING)
                store.get_all_states()
                store.is_processing(n)
                store.mark_as_completed(n, IssuePhase.PLAN)
                store.cleanup_old_states(timedelta(hours=1))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(100)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(store) == 100
        assert all(store.has_been_processed(n, IssuePhase.PLAN) for n in range(100))

    def test_last_action_follows_write_order(self):
        """The surviving record carries the latest timestamp handed out."""
        base = datetime(2024, 1, 1, tzinfo=UTC)
        ticks = itertools.count()
        issued: list[datetime] = []

        def clock() -> datetime:
            stamp = base + timedelta(microseconds=next(ticks))
            issued.append(stamp)
            return stamp

        store = IssueStateStore(clock=clock)
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            for _ in range(200):
                store.set_state(1, IssuePhase.PLAN, IssueStatus.PROCESSING)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        state = store.get_issue_state(1, IssuePhase.PLAN)
        assert state is not None
        assert state.last_action == max(issued)

    def test_clock_is_read_under_lock(self):
        store = IssueStateStore()
        held: list[bool] = []

        def clock() -> datetime:
            held.append(store._lock.locked())
            return datetime(2024, 1, 1, tzinfo=UTC)

        store._clock = clock
        store.set_state(1, IssuePhase.PLAN, IssueStatus.PROCESSING)

        assert held == [True]
