"""Label transition metrics for the watcher.

This module aggregates the outcome of every attempted label transition:
- Total, successful and failed transition counts
- Failure counts per reason tag (e.g. 'api_error', 'timeout')
- Attempt counts per transition type ('<from>-><to>')

One LabelTransitionMetrics instance is created per watcher and passed to
the decision layer explicitly. get_snapshot() hands out an immutable copy
that can be analyzed without touching the live recorder.
"""

import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from types import MappingProxyType
from typing import Any, NamedTuple


class RankedCount(NamedTuple):
    """A key and its occurrence count in a ranking."""

    key: str
    count: int


# Aliases kept for readability at call sites
FailureReason = RankedCount
TransitionCount = RankedCount


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _rank(counts: Mapping[str, int], limit: int) -> list[RankedCount]:
    """Rank entries by count descending, key ascending, clamped to limit."""
    if limit <= 0 or not counts:
        return []
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [RankedCount(key, count) for key, count in ordered[:limit]]


def _format_rate(rate: float) -> str:
    return f"{rate:.2f}%"


def _success_rate(successful: int, total: int) -> float:
    if total == 0:
        return 0.0
    return successful / total * 100.0


@dataclass(frozen=True)
class LabelTransitionMetricsSnapshot:
    """Read-only point-in-time copy of LabelTransitionMetrics.

    The two mappings are read-only views over private copies, so nothing
    recorded after the snapshot was taken is visible through it.
    """

    total_transitions: int
    successful_transitions: int
    failed_transitions: int
    failure_reasons: Mapping[str, int]
    transition_types: Mapping[str, int]
    start_time: datetime
    last_transition_time: datetime | None
    success_rate: float
    uptime: timedelta = field(default=timedelta(0))

    def get_success_rate_formatted(self) -> str:
        return _format_rate(self.success_rate)

    def get_top_failure_reasons(self, limit: int) -> list[FailureReason]:
        return _rank(self.failure_reasons, limit)

    def get_most_frequent_transitions(self, limit: int) -> list[TransitionCount]:
        return _rank(self.transition_types, limit)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the snapshot into plain built-in types."""
        return {
            "total_transitions": self.total_transitions,
            "successful_transitions": self.successful_transitions,
            "failed_transitions": self.failed_transitions,
            "success_rate": self.success_rate,
            "success_rate_formatted": self.get_success_rate_formatted(),
            "failure_reasons": dict(self.failure_reasons),
            "transition_types": dict(self.transition_types),
        }


class LabelTransitionMetrics:
    """Thread-safe running counters of attempted label transitions.

    Every record_* call increments total_transitions and exactly one of
    successful_transitions / failed_transitions, so
    total == successful + failed holds after every call.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        """Initialize empty metrics.

        Args:
            clock: Optional callable returning the current time. Defaults to
                timezone-aware UTC now.
        """
        self._lock = threading.Lock()
        self._clock = clock or _utcnow
        self.total_transitions = 0
        self.successful_transitions = 0
        self.failed_transitions = 0
        self.failure_reasons: dict[str, int] = {}
        self.transition_types: dict[str, int] = {}
        self.start_time = self._clock()
        self.last_transition_time: datetime | None = None

    def record_success(self, issue_number: int, transition_type: str) -> None:  # noqa: ARG002
        """Record a successful transition.

        Args:
            issue_number: Issue the transition was for (not retained)
            transition_type: Transition descriptor, '<from>-><to>'
        """
        with self._lock:
            now = self._clock()
            self.total_transitions += 1
            self.successful_transitions += 1
            self.transition_types[transition_type] = (
                self.transition_types.get(transition_type, 0) + 1
            )
            self.last_transition_time = now

    def record_failure(
        self,
        issue_number: int,  # noqa: ARG002
        transition_type: str,
        reason: str,
    ) -> None:
        """Record a failed transition.

        Args:
            issue_number: Issue the transition was for (not retained)
            transition_type: Transition descriptor, '<from>-><to>'
            reason: Bounded failure reason tag
        """
        with self._lock:
            now = self._clock()
            self.total_transitions += 1
            self.failed_transitions += 1
            self.failure_reasons[reason] = self.failure_reasons.get(reason, 0) + 1
            self.transition_types[transition_type] = (
                self.transition_types.get(transition_type, 0) + 1
            )
            self.last_transition_time = now

    def get_success_rate(self) -> float:
        """Success percentage in [0, 100]; 0.0 when nothing was recorded."""
        with self._lock:
            return _success_rate(self.successful_transitions, self.total_transitions)

    def get_success_rate_formatted(self) -> str:
        """Success rate with two decimals and a percent sign, e.g. '75.00%'."""
        return _format_rate(self.get_success_rate())

    def get_top_failure_reasons(self, limit: int) -> list[FailureReason]:
        """The `limit` most frequent failure reasons, most frequent first."""
        with self._lock:
            return _rank(self.failure_reasons, limit)

    def get_most_frequent_transitions(self, limit: int) -> list[TransitionCount]:
        """The `limit` most frequent transition types, most frequent first."""
        with self._lock:
            return _rank(self.transition_types, limit)

    def get_uptime(self) -> timedelta:
        return self._clock() - self.start_time

    def reset(self) -> None:
        """Zero all counters and clear both maps. start_time is kept."""
        with self._lock:
            self.total_transitions = 0
            self.successful_transitions = 0
            self.failed_transitions = 0
            self.failure_reasons = {}
            self.transition_types = {}
            self.last_transition_time = None

    def get_snapshot(self) -> LabelTransitionMetricsSnapshot:
        """Capture every counter and map under a single lock acquisition."""
        with self._lock:
            now = self._clock()
            return LabelTransitionMetricsSnapshot(
                total_transitions=self.total_transitions,
                successful_transitions=self.successful_transitions,
                failed_transitions=self.failed_transitions,
                failure_reasons=MappingProxyType(dict(self.failure_reasons)),
                transition_types=MappingProxyType(dict(self.transition_types)),
                start_time=self.start_time,
                last_transition_time=self.last_transition_time,
                success_rate=_success_rate(self.successful_transitions, self.total_transitions),
                uptime=now - self.start_time,
            )
