"""Polling watcher for one repository.

IssueWatcher asks the tracker for issues carrying any of the watched labels
every poll_interval seconds. For each observed issue it:
- fires the detection callback and an ISSUE_DETECTED event
- hands the issue to the TransitionDecider
- optionally reports label differences since the previous poll

It also keeps poll cycle statistics for health checks.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from tenacity import wait_exponential

from src.decision import TransitionDecider
from src.events import EventNotifier, EventType, IssueEvent, detect_label_changes
from src.interfaces import Issue, IssueTrackerClient
from src.logger import clear_issue_context, get_logger, set_issue_context
from src.telemetry import record_poll
from src.ticket_clients.errors import NetworkError

logger = get_logger(__name__)

IssueCallback = Callable[[Issue], None]

DEFAULT_POLL_INTERVAL = 5.0
MIN_POLL_INTERVAL = 1.0


class _BackoffState:
    """Minimal state object for tenacity's wait_exponential.

    Tenacity's wait functions expect a RetryCallState with an attempt_number.
    This provides a lightweight alternative to avoid importing the full class.
    """

    def __init__(self, attempt_number: int):
        self.attempt_number = attempt_number


@dataclass
class HealthStats:
    """Poll cycle counters of a watcher."""

    total_executions: int
    successful_executions: int
    failed_executions: int
    last_execution_time: datetime | None
    start_time: datetime


@dataclass
class HealthStatus:
    is_healthy: bool
    message: str


class IssueWatcher:
    """Polls one repository and routes observed issues to the decider."""

    def __init__(
        self,
        client: IssueTrackerClient,
        repo: str,
        labels: list[str],
        decider: TransitionDecider,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        on_issue_detected: IssueCallback | None = None,
        notifier: EventNotifier | None = None,
        label_change_tracking: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the watcher.

        Args:
            client: Tracker client used to list issues
            repo: Repository in 'hostname/owner/repo' format
            labels: Labels to watch; issues carrying any of them are observed
            decider: Decision layer for this repository
            poll_interval: Seconds between polls, at least 1
            on_issue_detected: Callback fired for every observed issue
            notifier: Event fan-out (a private one is created when omitted)
            label_change_tracking: Emit label added/removed/changed events
            clock: Optional callable returning the current time

        Raises:
            ValueError: If repo or labels are empty, or poll_interval is below 1s
        """
        if not repo:
            raise ValueError("repo is required")
        if not labels:
            raise ValueError("at least one label is required")

        self.client = client
        self.repo = repo
        self.labels = list(labels)
        self.decider = decider
        self.on_issue_detected = on_issue_detected
        self.notifier = notifier or EventNotifier()
        self.label_change_tracking = label_change_tracking
        self._clock = clock or (lambda: datetime.now(UTC))
        self.poll_interval = DEFAULT_POLL_INTERVAL
        self.set_poll_interval(poll_interval)

        # Labels seen per issue on the previous poll
        self._issue_labels: dict[int, set[str]] = {}

        self._stats_lock = threading.Lock()
        self._total_executions = 0
        self._successful_executions = 0
        self._failed_executions = 0
        self._last_execution_time: datetime | None = None
        self._start_time = self._clock()

    def set_poll_interval(self, seconds: float) -> None:
        if seconds < MIN_POLL_INTERVAL:
            raise ValueError("poll interval must be at least 1 second")
        self.poll_interval = seconds

    def check_issues(self) -> bool:
        """Run one poll cycle.

        Returns:
            True if the issue list was fetched, False if the cycle failed

        Raises:
            NetworkError: If the tracker could not be reached
        """
        try:
            issues = self.client.list_issues_by_labels(self.repo, self.labels)
        except NetworkError:
            self._record_execution(success=False)
            logger.warning(f"Network error while listing issues for {self.repo}")
            raise
        except Exception as e:
            self._record_execution(success=False)
            logger.error(f"Failed to list issues for {self.repo}: {e}", exc_info=True)
            return False

        self._record_execution(success=True)
        logger.debug(f"Observed {len(issues)} issue(s) in {self.repo}")
        self._forget_unlisted(issues)

        for issue in issues:
            if issue is None or issue.number is None:
                continue
            set_issue_context(self.repo, issue.number)
            try:
                self._handle_issue(issue)
            finally:
                clear_issue_context()
        return True

    def _handle_issue(self, issue: Issue) -> None:
        assert issue.number is not None

        if self.on_issue_detected is not None:
            try:
                self.on_issue_detected(issue)
            except Exception as e:
                logger.error(f"Issue callback failed for #{issue.number}: {e}", exc_info=True)

        self.notifier.send(self._event(EventType.ISSUE_DETECTED, issue))

        try:
            outcome = self.decider.process_issue(issue)
        except Exception as e:
            logger.error(f"Failed to process #{issue.number}: {e}", exc_info=True)
        else:
            if outcome is not None and outcome.error is not None:
                logger.warning(
                    f"Transition {outcome.info.descriptor} for #{issue.number} "
                    f"failed ({outcome.reason}); will retry on a later poll"
                )

        if self.label_change_tracking:
            self._track_label_changes(issue)

    def _forget_unlisted(self, issues: list[Issue]) -> None:
        """Drop remembered labels of issues that left the watched set.

        A closed issue, or one without any watched label, is no longer listed.
        If it comes back later it is treated as a first observation.
        """
        listed = {issue.number for issue in issues if issue is not None}
        self._issue_labels = {
            number: labels for number, labels in self._issue_labels.items() if number in listed
        }

    def _track_label_changes(self, issue: Issue) -> None:
        assert issue.number is not None
        previous = self._issue_labels.get(issue.number)
        self._issue_labels[issue.number] = set(issue.labels)
        if previous is None:
            return

        for change in detect_label_changes(previous, issue.labels):
            event = self._event(
                change.type, issue, from_label=change.from_label, to_label=change.to_label
            )
            logger.info(str(event))
            self.notifier.send(event)

    def _event(
        self, event_type: EventType, issue: Issue, from_label: str = "", to_label: str = ""
    ) -> IssueEvent:
        return IssueEvent(
            type=event_type,
            issue_number=issue.number or 0,
            issue_title=issue.title,
            repo=self.repo,
            from_label=from_label,
            to_label=to_label,
            timestamp=self._clock(),
        )

    def _record_execution(self, success: bool) -> None:
        with self._stats_lock:
            self._total_executions += 1
            if success:
                self._successful_executions += 1
            else:
                self._failed_executions += 1
            self._last_execution_time = self._clock()
        record_poll(self.repo, success)

    def run(self, stop_event: threading.Event) -> None:
        """Poll until stop_event is set.

        Consecutive failed cycles back off exponentially (2, 4, 8... up to 300s)
        instead of waiting poll_interval.

        Args:
            stop_event: Event that ends the loop when set
        """
        backoff_strategy = wait_exponential(multiplier=1, min=2, max=300)
        consecutive_failures = 0
        logger.info(f"Watching {self.repo} for labels {self.labels} every {self.poll_interval}s")

        while not stop_event.is_set():
            try:
                succeeded = self.check_issues()
            except NetworkError as e:
                logger.warning(f"Network error during poll of {self.repo}: {e}")
                succeeded = False

            if succeeded:
                consecutive_failures = 0
                wait_seconds = self.poll_interval
            else:
                consecutive_failures += 1
                wait_seconds = backoff_strategy(_BackoffState(consecutive_failures + 1))  # type: ignore[arg-type]
                logger.info(
                    f"Poll of {self.repo} failed ({consecutive_failures} consecutive). "
                    f"Backing off for {wait_seconds:.0f}s before retry..."
                )

            # Efficient interruptible sleep using Event.wait()
            if stop_event.wait(timeout=wait_seconds):
                break

        logger.info(f"Stopped watching {self.repo}")

    def get_health_stats(self) -> HealthStats:
        with self._stats_lock:
            return HealthStats(
                total_executions=self._total_executions,
                successful_executions=self._successful_executions,
                failed_executions=self._failed_executions,
                last_execution_time=self._last_execution_time,
                start_time=self._start_time,
            )

    def check_health(self, max_inactivity: timedelta) -> HealthStatus:
        """Judge whether the watcher is polling normally.

        Unhealthy when it never ran, when the last cycle is older than
        max_inactivity, or when fewer than 10% of more than 10 cycles succeeded.
        """
        stats = self.get_health_stats()
        if stats.last_execution_time is None:
            return HealthStatus(False, "Watcher has never been executed")

        since_last = self._clock() - stats.last_execution_time
        if since_last > max_inactivity:
            return HealthStatus(
                False,
                f"Watcher has been inactive for {since_last} (threshold: {max_inactivity})",
            )

        success_rate = stats.successful_executions / stats.total_executions * 100
        if stats.total_executions > 10 and success_rate < 10:
            return HealthStatus(
                False,
                f"Success rate is too low: {success_rate:.2f}% "
                f"({stats.successful_executions}/{stats.total_executions} executions)",
            )

        return HealthStatus(
            True,
            f"Watcher is healthy (success rate: {success_rate:.2f}%, "
            f"last execution: {since_last} ago)",
        )
