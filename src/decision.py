"""Decision layer: when to move an issue's labels, and what to record.

Two levels of checks decide whether an observed issue is transitioned:
- should_process_issue(): stateless, looks only at the issue's labels
- TransitionDecider.evaluate(): adds the per-issue state from IssueStateStore

TransitionDecider.process_issue() then performs the transition through the
tracker client and writes the outcome to the state store first and to the
metrics recorder second. Merely observing an issue writes nothing.
"""

from dataclasses import dataclass

from src.actions import ActionContext, ActionRegistry
from src.interfaces import Issue, IssuePhase, IssueStatus, IssueTrackerClient, TransitionInfo
from src.labels import DEFAULT_LABELS, WorkflowLabels
from src.logger import get_logger
from src.slack import send_transition_failure_notification
from src.state_manager import IssueStateStore
from src.telemetry import get_tracer, record_transition
from src.ticket_clients.errors import classify_failure_reason
from src.transition_metrics import LabelTransitionMetrics

logger = get_logger(__name__)

NO_TRIGGER_REASON = "No trigger labels found"


@dataclass(frozen=True)
class TriggerRule:
    """One trigger label and the label it is replaced with.

    Attributes:
        trigger_label: Label a human adds to request the phase
        target_label: Label the watcher sets in its place
        phase: Phase the transition enters
        reopens: Phase reset to PENDING after a successful transition, if any
    """

    trigger_label: str
    target_label: str
    phase: IssuePhase
    reopens: IssuePhase | None = None

    @property
    def info(self) -> TransitionInfo:
        return TransitionInfo(from_label=self.trigger_label, to_label=self.target_label)


@dataclass
class Decision:
    """Result of evaluating one issue."""

    should_transition: bool
    reason: str
    rule: TriggerRule | None = None


@dataclass
class TransitionOutcome:
    """Result of one attempted transition.

    Attributes:
        issue_number: Issue the transition was for
        phase: Phase the transition entered (or tried to)
        info: Labels involved
        success: Whether the tracker applied the transition
        reason: Failure reason tag, None on success
        error: Error raised by the tracker client, None on success
        action_error: Error raised by the phase action, if it ran and failed
    """

    issue_number: int
    phase: IssuePhase
    info: TransitionInfo
    success: bool
    reason: str | None = None
    error: Exception | None = None
    action_error: Exception | None = None


def build_trigger_rules(labels: WorkflowLabels = DEFAULT_LABELS) -> list[TriggerRule]:
    """Build the trigger table in priority order.

    A requires-changes review sends the issue back to ready, which reopens
    the implementation phase so the next poll can pick it up again. The reopen
    also resets REVIEW to PENDING, overwriting its COMPLETED record, so the
    reworked issue can be reviewed a second time.
    """
    return [
        TriggerRule(labels.needs_plan, labels.planning, IssuePhase.PLAN),
        TriggerRule(labels.ready, labels.implementing, IssuePhase.IMPLEMENTATION),
        TriggerRule(labels.review_requested, labels.reviewing, IssuePhase.REVIEW),
        TriggerRule(
            labels.requires_changes,
            labels.ready,
            IssuePhase.REVIEW,
            reopens=IssuePhase.IMPLEMENTATION,
        ),
    ]


DEFAULT_RULES = build_trigger_rules()


def phases_from(phase: IssuePhase) -> list[IssuePhase]:
    """The given phase and every phase after it, in workflow order."""
    ordered = list(IssuePhase)
    return ordered[ordered.index(phase) :]


def find_trigger_rule(labels: set[str], rules: list[TriggerRule]) -> TriggerRule | None:
    """Return the highest-priority rule whose trigger label is present."""
    for rule in rules:
        if rule.trigger_label in labels:
            return rule
    return None


def should_process_issue(
    issue: Issue | None, rules: list[TriggerRule] = DEFAULT_RULES
) -> tuple[bool, str, TriggerRule | None]:
    """Decide from labels alone whether an issue needs a transition.

    The first trigger label found in priority order wins. If the issue
    already carries that trigger's target label, it is left alone.

    Args:
        issue: Issue to check
        rules: Trigger rules in priority order

    Returns:
        Tuple of (should_process, reason, matched rule or None)
    """
    if issue is None or not issue.labels:
        return False, NO_TRIGGER_REASON, None

    rule = find_trigger_rule(issue.labels, rules)
    if rule is None:
        return False, NO_TRIGGER_REASON, None

    if rule.target_label in issue.labels:
        return (
            False,
            f"Execution label '{rule.target_label}' already exists "
            f"for trigger '{rule.trigger_label}'",
            rule,
        )
    return (
        True,
        f"Trigger label '{rule.trigger_label}' found without corresponding execution label",
        rule,
    )


class TransitionDecider:
    """Transitions the issues of one repository and records the results.

    The state store and the metrics recorder are owned by the caller and
    passed in explicitly; the decider never holds both locks at once.
    """

    def __init__(
        self,
        client: IssueTrackerClient,
        repo: str,
        state_store: IssueStateStore,
        metrics: LabelTransitionMetrics,
        actions: ActionRegistry | None = None,
        rules: list[TriggerRule] | None = None,
    ) -> None:
        """Initialize the decider.

        Args:
            client: Tracker client performing the label operations
            repo: Repository in 'hostname/owner/repo' format
            state_store: Per-issue phase status store
            metrics: Transition metrics recorder
            actions: Phase actions (NoOp for every phase when omitted)
            rules: Trigger rules in priority order
        """
        self.client = client
        self.repo = repo
        self.state_store = state_store
        self.metrics = metrics
        self.actions = actions or ActionRegistry()
        self.rules = rules or DEFAULT_RULES

    def evaluate(self, issue: Issue | None) -> Decision:
        """Combine the label check with the stored state of the issue."""
        should, reason, rule = should_process_issue(issue, self.rules)
        if not should or rule is None:
            return Decision(False, reason, rule)

        if issue is None or issue.number is None:
            return Decision(False, "Issue has no number", rule)

        if self.state_store.is_processing(issue.number):
            return Decision(False, f"Issue #{issue.number} is already being processed", rule)

        # Back-transitions exist to re-run earlier phases, so a completed
        # phase does not block them
        if rule.reopens is None and self.state_store.has_been_processed(
            issue.number, rule.phase
        ):
            return Decision(
                False,
                f"Issue #{issue.number} already completed phase '{rule.phase.value}'",
                rule,
            )
        return Decision(True, reason, rule)

    def process_issue(
        self, issue: Issue | None, raise_errors: bool = False
    ) -> TransitionOutcome | None:
        """Transition an issue if warranted and record the outcome.

        Args:
            issue: Observed issue
            raise_errors: Re-raise the tracker error after recording it

        Returns:
            TransitionOutcome, or None when no transition was attempted

        Raises:
            Exception: The tracker client's error, only when raise_errors is True
        """
        decision = self.evaluate(issue)
        if not decision.should_transition or decision.rule is None:
            logger.debug(f"Skipping issue: {decision.reason}")
            return None

        # evaluate() only approves numbered issues
        assert issue is not None and issue.number is not None
        rule = decision.rule
        number = issue.number
        info = rule.info

        self.state_store.set_state(number, rule.phase, IssueStatus.PROCESSING)

        tracer = get_tracer()
        with tracer.start_as_current_span(
            "label.transition",
            attributes={
                "repo": self.repo,
                "issue.number": number,
                "transition": info.descriptor,
            },
        ):
            try:
                info = self.client.transition_label(
                    self.repo, number, rule.trigger_label, rule.target_label
                )
            except Exception as e:
                outcome = self._record_failure(issue, rule, info, e)
            else:
                outcome = self._record_success(issue, rule, info)

        outcome.action_error = self._run_action(issue, rule.phase)

        if outcome.error is not None and raise_errors:
            raise outcome.error
        return outcome

    def _record_success(
        self, issue: Issue, rule: TriggerRule, info: TransitionInfo
    ) -> TransitionOutcome:
        number = issue.number
        assert number is not None
        self.state_store.mark_as_completed(number, rule.phase)
        if rule.reopens is not None:
            for phase in phases_from(rule.reopens):
                self.state_store.set_state(number, phase, IssueStatus.PENDING)
            logger.info(f"Reopened phase '{rule.reopens.value}' for #{number}")
        self.metrics.record_success(number, info.descriptor)
        record_transition(self.repo, info.descriptor, success=True)
        logger.info(f"Transition succeeded for #{number}: {info.descriptor}")
        return TransitionOutcome(number, rule.phase, info, success=True)

    def _record_failure(
        self, issue: Issue, rule: TriggerRule, info: TransitionInfo, error: Exception
    ) -> TransitionOutcome:
        number = issue.number
        assert number is not None
        reason = classify_failure_reason(error)
        self.state_store.mark_as_failed(number, rule.phase)
        self.metrics.record_failure(number, info.descriptor, reason)
        record_transition(self.repo, info.descriptor, success=False, reason=reason)
        send_transition_failure_notification(
            self.repo, number, info.descriptor, reason, issue_url=issue.url
        )
        logger.error(f"Transition failed for #{number}: {info.descriptor} ({reason}): {error}")
        return TransitionOutcome(
            number, rule.phase, info, success=False, reason=reason, error=error
        )

    def _run_action(self, issue: Issue, phase: IssuePhase) -> Exception | None:
        action = self.actions.get(phase)
        if not action.can_execute(issue):
            return None
        try:
            action.execute(ActionContext(repo=self.repo, phase=phase), issue)
        except Exception as e:
            logger.error(
                f"Action for phase '{phase.value}' failed on #{issue.number}: {e}",
                exc_info=True,
            )
            return e
        return None
