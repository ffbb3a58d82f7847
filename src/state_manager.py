"""Per-issue workflow state tracking for the watcher.

This module provides the IssueStateStore class that records, for every
tracked issue, the processing status of each workflow phase. It is used to:
- Prevent an issue from being transitioned twice for the same phase
- Prevent a second transition while one is in flight for the issue
- Allow a failed phase to be retried on a later poll cycle
- Keep history of later phases when an issue re-enters an earlier one

Status is keyed by (issue_number, phase). State is purely in-memory and
every method is safe to call from multiple threads.
"""

import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from src.interfaces.state import IssuePhase, IssueState, IssueStatus
from src.logger import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class IssueStateStore:
    """Thread-safe store of issue_number -> phase -> IssueState.

    A single lock guards the mapping. Accessors that return collections
    always return copies so callers never alias internal storage.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        """Initialize an empty store.

        Args:
            clock: Optional callable returning the current time. Defaults to
                timezone-aware UTC now.
        """
        self._lock = threading.Lock()
        self._states: dict[int, dict[IssuePhase, IssueState]] = {}
        self._clock = clock or _utcnow

    def set_state(self, issue_number: int, phase: IssuePhase, status: IssueStatus) -> None:
        """Upsert the status of a phase and stamp last_action with the current time."""
        with self._lock:
            now = self._clock()
            phases = self._states.setdefault(issue_number, {})
            phases[phase] = IssueState(
                issue_number=issue_number,
                phase=phase,
                status=status,
                last_action=now,
            )
        logger.debug(f"State set: #{issue_number} {phase.value} -> {status.value}")

    def get_state(self, issue_number: int, phase: IssuePhase) -> IssueStatus:
        """Get the status of a phase, PENDING when nothing has been recorded."""
        with self._lock:
            state = self._states.get(issue_number, {}).get(phase)
            return state.status if state else IssueStatus.PENDING

    def get_issue_state(self, issue_number: int, phase: IssuePhase) -> IssueState | None:
        """Get a copy of the full record for a phase, or None if absent."""
        with self._lock:
            state = self._states.get(issue_number, {}).get(phase)
            if state is None:
                return None
            return IssueState(
                issue_number=state.issue_number,
                phase=state.phase,
                status=state.status,
                last_action=state.last_action,
            )

    def is_processing(self, issue_number: int) -> bool:
        """Check whether any phase of the issue is currently PROCESSING."""
        with self._lock:
            phases = self._states.get(issue_number, {})
            return any(s.status == IssueStatus.PROCESSING for s in phases.values())

    def has_been_processed(self, issue_number: int, phase: IssuePhase) -> bool:
        """Check whether the given phase of the issue is COMPLETED."""
        return self.get_state(issue_number, phase) == IssueStatus.COMPLETED

    def mark_as_completed(self, issue_number: int, phase: IssuePhase) -> None:
        self.set_state(issue_number, phase, IssueStatus.COMPLETED)

    def mark_as_failed(self, issue_number: int, phase: IssuePhase) -> None:
        self.set_state(issue_number, phase, IssueStatus.FAILED)

    def clear(self, issue_number: int) -> None:
        """Forget every phase recorded for an issue."""
        with self._lock:
            self._states.pop(issue_number, None)

    def get_all_states(self) -> dict[int, dict[IssuePhase, IssueStatus]]:
        """Return a deep copy of issue_number -> phase -> status."""
        with self._lock:
            return {
                issue_number: {phase: state.status for phase, state in phases.items()}
                for issue_number, phases in self._states.items()
            }

    def cleanup_old_states(self, retention: timedelta) -> int:
        """Delete terminal phase entries whose last_action is older than retention.

        PENDING and PROCESSING entries are kept regardless of age. Issues left
        without any phase entry are dropped.

        Args:
            retention: Maximum age of a terminal entry

        Returns:
            Number of phase entries removed
        """
        cutoff = self._clock() - retention
        removed = 0
        with self._lock:
            for issue_number in list(self._states):
                phases = self._states[issue_number]
                for phase in list(phases):
                    state = phases[phase]
                    if state.last_action < cutoff and state.status.is_terminal:
                        del phases[phase]
                        removed += 1
                if not phases:
                    del self._states[issue_number]

        if removed:
            logger.info(f"Cleaned up {removed} old issue state(s) (retention={retention})")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
