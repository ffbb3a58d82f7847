"""Property-based tests using Hypothesis.

This module contains property-based tests that verify invariants and discover
edge cases across transition metrics, ranking, state cleanup, repository
parsing, config parsing, and the label workflow driven by TransitionDecider.
"""

import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from hypothesis import assume, example, given
from hypothesis import strategies as st
from hypothesis.stateful import RuleBasedStateMachine, invariant, rule

from src.config import normalize_repo, parse_config_file
from src.decision import DEFAULT_RULES, TransitionDecider
from src.interfaces import Issue, IssuePhase, IssueStatus, TransitionInfo
from src.state_manager import IssueStateStore
from src.ticket_clients import GitHubAPIError, GitHubErrorType
from src.ticket_clients.errors import FailureReasons
from src.transition_metrics import LabelTransitionMetrics

# =============================================================================
# Custom Strategies
# =============================================================================

# Strategy for valid organization names (alphanumeric, hyphens)
org_name_strategy = st.from_regex(r"[a-zA-Z][a-zA-Z0-9\-]{0,38}", fullmatch=True)

# Strategy for valid repo names
repo_name_strategy = st.from_regex(r"[a-zA-Z][a-zA-Z0-9\-_\.]{0,38}", fullmatch=True)

# Strategy for hostnames containing at least one dot
hostname_strategy = st.from_regex(r"[a-z][a-z0-9\-]{0,20}\.[a-z]{2,10}", fullmatch=True)

# Strategy for transition descriptors
transition_type_strategy = st.sampled_from([r.info.descriptor for r in DEFAULT_RULES])

# Strategy for failure reason tags
reason_strategy = st.sampled_from(sorted(FailureReasons.ALL))

# A recorded outcome: (success, transition_type, reason)
outcome_strategy = st.tuples(st.booleans(), transition_type_strategy, reason_strategy)

# Strategy for config keys (uppercase with underscores)
config_key_strategy = st.from_regex(r"[A-Z][A-Z0-9_]{0,30}", fullmatch=True)

# Strategy for config values without quotes, newlines or '#'
config_value_strategy = st.text(
    alphabet=st.characters(
        blacklist_categories=("Cs", "Cc", "Zl", "Zp"),
        blacklist_characters="\"'\n\r#",
    ),
    max_size=50,
).map(str.strip)


class _Clock:
    """Settable clock shared by the tests below."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


# =============================================================================
# Transition Metrics Property Tests
# =============================================================================


@pytest.mark.unit
@pytest.mark.hypothesis
class TestTransitionMetricsProperties:
    """Property-based tests for LabelTransitionMetrics."""

    @given(outcomes=st.lists(outcome_strategy, max_size=60))
    @example(outcomes=[])
    def test_counters_stay_consistent(self, outcomes: list[tuple[bool, str, str]]):
        """Property: total == successful + failed after any sequence of records."""
        metrics = LabelTransitionMetrics()
        for number, (success, transition_type, reason) in enumerate(outcomes, start=1):
            if success:
                metrics.record_success(number, transition_type)
            else:
                metrics.record_failure(number, transition_type, reason)

        snapshot = metrics.get_snapshot()
        expected_ok = sum(1 for success, _, _ in outcomes if success)

        assert snapshot.total_transitions == len(outcomes)
        assert snapshot.successful_transitions == expected_ok
        assert snapshot.total_transitions == (
            snapshot.successful_transitions + snapshot.failed_transitions
        )
        assert sum(snapshot.failure_reasons.values()) == snapshot.failed_transitions
        assert sum(snapshot.transition_types.values()) == snapshot.total_transitions

    @given(outcomes=st.lists(outcome_strategy, max_size=40))
    def test_success_rate_in_range(self, outcomes: list[tuple[bool, str, str]]):
        """Property: Success rate is always between 0 and 100."""
        metrics = LabelTransitionMetrics()
        for success, transition_type, reason in outcomes:
            if success:
                metrics.record_success(1, transition_type)
            else:
                metrics.record_failure(1, transition_type, reason)

        rate = metrics.get_success_rate()
        assert 0.0 <= rate <= 100.0
        assert metrics.get_success_rate_formatted().endswith("%")

    @given(outcomes=st.lists(outcome_strategy, min_size=1, max_size=40))
    def test_reset_clears_everything(self, outcomes: list[tuple[bool, str, str]]):
        """Property: reset() always returns the recorder to its empty state."""
        metrics = LabelTransitionMetrics()
        start_time = metrics.start_time
        for success, transition_type, reason in outcomes:
            if success:
                metrics.record_success(1, transition_type)
            else:
                metrics.record_failure(1, transition_type, reason)

        metrics.reset()

        snapshot = metrics.get_snapshot()
        assert snapshot.total_transitions == 0
        assert dict(snapshot.failure_reasons) == {}
        assert dict(snapshot.transition_types) == {}
        assert snapshot.start_time == start_time


# =============================================================================
# Ranking Property Tests
# =============================================================================


@pytest.mark.unit
@pytest.mark.hypothesis
class TestRankingProperties:
    """Property-based tests for failure reason and transition rankings."""

    @given(
        counts=st.dictionaries(reason_strategy, st.integers(min_value=1, max_value=8)),
        limit=st.integers(min_value=-3, max_value=10),
    )
    @example(counts={}, limit=3)
    @example(counts={"timeout": 2, "api_error": 2}, limit=1)
    def test_top_failure_reasons(self, counts: dict[str, int], limit: int):
        """Property: Rankings are sorted, truncated and faithful to the counts."""
        metrics = LabelTransitionMetrics()
        for reason, count in counts.items():
            for _ in range(count):
                metrics.record_failure(1, "a->b", reason)

        ranked = metrics.get_top_failure_reasons(limit)

        assert len(ranked) == max(0, min(limit, len(counts)))
        keys = [(-entry.count, entry.key) for entry in ranked]
        assert keys == sorted(keys)
        for entry in ranked:
            assert counts[entry.key] == entry.count

    @given(
        counts=st.dictionaries(transition_type_strategy, st.integers(min_value=1, max_value=8)),
        limit=st.integers(min_value=1, max_value=10),
    )
    def test_top_entry_is_a_maximum(self, counts: dict[str, int], limit: int):
        """Property: The first ranked transition has the highest count."""
        assume(counts)
        metrics = LabelTransitionMetrics()
        for transition_type, count in counts.items():
            for _ in range(count):
                metrics.record_success(1, transition_type)

        ranked = metrics.get_most_frequent_transitions(limit)

        assert ranked[0].count == max(counts.values())


# =============================================================================
# State Cleanup Property Tests
# =============================================================================

# An entry: (issue_number, phase, status, age in hours)
state_entry_strategy = st.tuples(
    st.integers(min_value=1, max_value=20),
    st.sampled_from(list(IssuePhase)),
    st.sampled_from(list(IssueStatus)),
    st.integers(min_value=0, max_value=72),
)


@pytest.mark.unit
@pytest.mark.hypothesis
class TestStateCleanupProperties:
    """Property-based tests for IssueStateStore.cleanup_old_states."""

    @given(
        entries=st.lists(state_entry_strategy, max_size=40),
        retention_hours=st.integers(min_value=0, max_value=48),
    )
    def test_cleanup_only_removes_old_terminal_entries(
        self, entries: list[tuple[int, IssuePhase, IssueStatus, int]], retention_hours: int
    ):
        """Property: PENDING/PROCESSING survive and no issue is left empty."""
        clock = _Clock()
        now = clock.now
        store = IssueStateStore(clock=clock)

        expected: dict[tuple[int, IssuePhase], tuple[IssueStatus, int]] = {}
        for number, phase, status, age in entries:
            clock.now = now - timedelta(hours=age)
            store.set_state(number, phase, status)
            expected[(number, phase)] = (status, age)
        clock.now = now

        removed = store.cleanup_old_states(timedelta(hours=retention_hours))

        survivors = {
            key: status
            for key, (status, age) in expected.items()
            if not (status.is_terminal and age > retention_hours)
        }
        remaining = {
            (number, phase): status
            for number, phases in store.get_all_states().items()
            for phase, status in phases.items()
        }
        assert remaining == survivors
        assert removed == len(expected) - len(survivors)
        assert all(phases for phases in store.get_all_states().values())


# =============================================================================
# Repository Parsing Property Tests
# =============================================================================


@pytest.mark.unit
@pytest.mark.hypothesis
class TestNormalizeRepoProperties:
    """Property-based tests for normalize_repo."""

    @given(owner=org_name_strategy, repo=repo_name_strategy)
    @example(owner="acme", repo="widgets")
    @example(owner="a", repo="b")
    def test_short_form_gets_default_host(self, owner: str, repo: str):
        """Property: 'owner/repo' always normalizes to github.com/owner/repo."""
        assume(not repo.endswith(".git"))
        assert normalize_repo(f"{owner}/{repo}") == f"github.com/{owner}/{repo}"

    @given(host=hostname_strategy, owner=org_name_strategy, repo=repo_name_strategy)
    def test_normalize_is_idempotent(self, host: str, owner: str, repo: str):
        """Property: Normalizing twice equals normalizing once."""
        for raw in (f"{owner}/{repo}", f"{host}/{owner}/{repo}", f"https://{host}/{owner}/{repo}"):
            once = normalize_repo(raw)
            assert normalize_repo(once) == once

    @given(text=st.text(alphabet=st.characters(blacklist_characters="/."), max_size=30))
    def test_single_segment_is_rejected(self, text: str):
        """Property: A value without an owner part is never accepted."""
        with pytest.raises(ValueError):
            normalize_repo(text)


# =============================================================================
# Config Parsing Property Tests
# =============================================================================


@pytest.mark.unit
@pytest.mark.hypothesis
class TestParseConfigFileProperties:
    """Property-based tests for parse_config_file."""

    @given(
        config=st.dictionaries(config_key_strategy, config_value_strategy, max_size=10),
        quote=st.sampled_from(["", '"', "'"]),
    )
    def test_written_values_are_read_back(self, config: dict[str, str], quote: str):
        """Property: Every KEY=value written is parsed back, with or without quotes."""
        content = "# labelwatch config\n\n" + "".join(
            f"{key}={quote}{value}{quote}\n" for key, value in config.items()
        )
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "config"
            path.write_text(content, encoding="utf-8")

            assert parse_config_file(path) == config


# =============================================================================
# Label Workflow State Machine
# =============================================================================


class FakeTracker:
    """In-memory issue tracker holding one label set per issue."""

    def __init__(self, decider_completed: set[tuple[int, IssuePhase]]) -> None:
        self.labels: dict[int, set[str]] = {}
        self.fail_with: GitHubAPIError | None = None
        self.attempts = 0
        self.successes = 0
        self.completed = decider_completed
        self.violations: list[tuple[int, IssuePhase]] = []
        self.rules = {r.trigger_label: r for r in DEFAULT_RULES}

    def transition_label(
        self, repo: str, issue_number: int, from_label: str, to_label: str
    ) -> TransitionInfo:
        rule = self.rules[from_label]
        # A completed forward phase must never be transitioned again
        if rule.reopens is None and (issue_number, rule.phase) in self.completed:
            self.violations.append((issue_number, rule.phase))
        self.attempts += 1
        if self.fail_with is not None:
            raise self.fail_with
        labels = self.labels.setdefault(issue_number, set())
        labels.discard(from_label)
        labels.add(to_label)
        self.successes += 1
        return TransitionInfo(from_label=from_label, to_label=to_label)


class LabelWorkflowMachine(RuleBasedStateMachine):
    """State machine driving TransitionDecider against a fake tracker.

    Invariants:
    - Metrics totals equal the attempts seen by the tracker
    - Failure reasons sum to the failed count
    - No issue is left PROCESSING between poll cycles
    - The completed phases in the store match a model of what succeeded
    """

    def __init__(self) -> None:
        super().__init__()
        self.clock = _Clock()
        self.completed: set[tuple[int, IssuePhase]] = set()
        self.tracker = FakeTracker(self.completed)
        self.store = IssueStateStore(clock=self.clock)
        self.metrics = LabelTransitionMetrics(clock=self.clock)
        self.decider = TransitionDecider(
            self.tracker, "github.com/acme/widgets", self.store, self.metrics
        )

    @rule(
        number=st.integers(min_value=1, max_value=3),
        label=st.sampled_from([r.trigger_label for r in DEFAULT_RULES]),
    )
    def human_adds_trigger(self, number: int, label: str) -> None:
        """A person adds a trigger label to an issue."""
        self.tracker.labels.setdefault(number, set()).add(label)

    @rule(number=st.integers(min_value=1, max_value=3))
    def human_clears_labels(self, number: int) -> None:
        self.tracker.labels[number] = set()

    @rule(error_type=st.none() | st.sampled_from(list(GitHubErrorType)))
    def set_tracker_health(self, error_type: GitHubErrorType | None) -> None:
        """Make every following transition fail (or succeed again)."""
        self.tracker.fail_with = (
            None if error_type is None else GitHubAPIError(error_type, "simulated")
        )

    @rule()
    def poll(self) -> None:
        """Run one poll cycle over every known issue."""
        for number, labels in sorted(self.tracker.labels.items()):
            outcome = self.decider.process_issue(Issue(number=number, labels=set(labels)))
            if outcome is None:
                continue
            rule_ = next(r for r in DEFAULT_RULES if r.info == outcome.info)
            if outcome.success:
                self.completed.add((number, rule_.phase))
                if rule_.reopens is not None:
                    self.completed.discard((number, IssuePhase.IMPLEMENTATION))
                    self.completed.discard((number, IssuePhase.REVIEW))
            else:
                assert outcome.reason in FailureReasons.ALL
                self.completed.discard((number, rule_.phase))

    @rule(hours=st.integers(min_value=0, max_value=48))
    def sweep(self, hours: int) -> None:
        """Advance time and clean up entries older than a day."""
        self.clock.now += timedelta(hours=hours)
        self.store.cleanup_old_states(timedelta(hours=24))
        remaining = self._store_completed()
        self.completed.intersection_update(remaining)

    def _store_completed(self) -> set[tuple[int, IssuePhase]]:
        return {
            (number, phase)
            for number, phases in self.store.get_all_states().items()
            for phase, status in phases.items()
            if status == IssueStatus.COMPLETED
        }

    @invariant()
    def metrics_match_tracker(self) -> None:
        snapshot = self.metrics.get_snapshot()
        assert snapshot.total_transitions == self.tracker.attempts
        assert snapshot.successful_transitions == self.tracker.successes
        assert snapshot.total_transitions == (
            snapshot.successful_transitions + snapshot.failed_transitions
        )
        assert sum(snapshot.failure_reasons.values()) == snapshot.failed_transitions

    @invariant()
    def completed_phases_not_repeated(self) -> None:
        assert self.tracker.violations == []

    @invariant()
    def nothing_left_processing(self) -> None:
        for number in self.tracker.labels:
            assert not self.store.is_processing(number)

    @invariant()
    def completed_phases_match_model(self) -> None:
        assert self._store_completed() == self.completed


# This creates the test class that pytest will discover
@pytest.mark.unit
@pytest.mark.hypothesis
class TestLabelWorkflow(LabelWorkflowMachine.TestCase):
    """Stateful test case for the label workflow using RuleBasedStateMachine."""

    pass
