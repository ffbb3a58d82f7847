"""Issue events emitted by the watcher.

The watcher emits an ISSUE_DETECTED event for every issue it observes and,
when label change tracking is enabled, one event per label difference
between two polls. Subscribers are plain callables registered with an
EventNotifier.
"""

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from src.labels import is_status_label
from src.logger import get_logger

logger = get_logger(__name__)


class EventType(str, Enum):
    ISSUE_DETECTED = "issue_detected"
    LABEL_ADDED = "label_added"
    LABEL_REMOVED = "label_removed"
    # A status label swapped for another status label
    LABEL_CHANGED = "label_changed"


@dataclass
class IssueEvent:
    """Something observed about an issue during a poll.

    Attributes:
        type: Kind of event
        issue_number: Issue number (0 for events built by detect_label_changes)
        issue_title: Issue title
        repo: Repository in 'hostname/owner/repo' format
        from_label: Removed label (LABEL_REMOVED, LABEL_CHANGED)
        to_label: Added label (LABEL_ADDED, LABEL_CHANGED)
        timestamp: When the event was observed
    """

    type: EventType
    issue_number: int = 0
    issue_title: str = ""
    repo: str = ""
    from_label: str = ""
    to_label: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __str__(self) -> str:
        head = f"[{self.type.value}] Issue #{self.issue_number} '{self.issue_title}' ({self.repo})"
        at = self.timestamp.isoformat(timespec="seconds")
        if self.type == EventType.LABEL_ADDED:
            return f"{head}: Label added '{self.to_label}' at {at}"
        if self.type == EventType.LABEL_REMOVED:
            return f"{head}: Label removed '{self.from_label}' at {at}"
        if self.type == EventType.LABEL_CHANGED:
            return f"{head}: Label changed from '{self.from_label}' to '{self.to_label}' at {at}"
        return f"{head} detected at {at}"


def _first_status_label(labels: set[str]) -> str | None:
    return next((label for label in sorted(labels) if is_status_label(label)), None)


def detect_label_changes(old_labels: Iterable[str], new_labels: Iterable[str]) -> list[IssueEvent]:
    """Compare two label sets and describe the differences as events.

    A swap of one status label for another is reported as a single
    LABEL_CHANGED event instead of a removal and an addition. Events carry
    only label fields; callers fill in the issue details.

    Args:
        old_labels: Labels seen on the previous poll
        new_labels: Labels seen now

    Returns:
        LABEL_CHANGED first (if any), then removals, then additions, each sorted
    """
    old_set = set(old_labels)
    new_set = set(new_labels)
    events: list[IssueEvent] = []

    old_status = _first_status_label(old_set)
    new_status = _first_status_label(new_set)
    if old_status and new_status and old_status != new_status:
        events.append(
            IssueEvent(type=EventType.LABEL_CHANGED, from_label=old_status, to_label=new_status)
        )
        old_set.discard(old_status)
        new_set.discard(new_status)

    for label in sorted(old_set - new_set):
        events.append(IssueEvent(type=EventType.LABEL_REMOVED, from_label=label))
    for label in sorted(new_set - old_set):
        events.append(IssueEvent(type=EventType.LABEL_ADDED, to_label=label))
    return events


EventSubscriber = Callable[[IssueEvent], None]


class EventNotifier:
    """Thread-safe fan-out of IssueEvents to subscribers.

    Subscribers run synchronously on the sending thread. A subscriber that
    raises is logged and does not affect the others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[EventSubscriber] = []
        self._closed = False

    def subscribe(self, subscriber: EventSubscriber) -> None:
        with self._lock:
            if not self._closed:
                self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: EventSubscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def send(self, event: IssueEvent) -> bool:
        """Deliver an event to every subscriber.

        Returns:
            False if the notifier is closed, True otherwise
        """
        with self._lock:
            if self._closed:
                return False
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception as e:
                logger.error(f"Event subscriber failed for {event.type.value}: {e}", exc_info=True)
        return True

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._subscribers = []

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed
