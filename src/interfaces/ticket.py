"""Abstract issue tracker protocol and data types.

This module defines the interface the watcher and the decision layer expect
from an issue tracker integration (GitHub through the gh CLI today).
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass
class Issue:
    """Representation of a tracked issue as returned by a label query.

    Attributes:
        number: Issue number, None when the tracker returned an incomplete record
        title: Issue title
        labels: Set of label names on the issue at fetch time
        state: Issue state ("OPEN" or "CLOSED")
        url: Web URL of the issue (optional)
    """

    number: int | None
    title: str = ""
    labels: set[str] = field(default_factory=set)
    state: str = "OPEN"
    url: str | None = None

    def has_label(self, label: str) -> bool:
        """Check whether the issue carries the given label."""
        return label in self.labels


@dataclass
class TransitionInfo:
    """Labels involved in a single transition.

    Attributes:
        from_label: The label that was (or would be) removed
        to_label: The label that was (or would be) added
    """

    from_label: str
    to_label: str

    @property
    def descriptor(self) -> str:
        """Transition key used for aggregation, e.g. 'status:ready->status:implementing'."""
        return f"{self.from_label}->{self.to_label}"


@runtime_checkable
class IssueTrackerClient(Protocol):
    """Protocol defining the interface for issue tracker clients.

    Every call is synchronous and may raise on network, auth or API errors.
    Implementations do not retry.
    """

    def list_issues_by_labels(self, repo: str, labels: list[str]) -> list[Issue]:
        """List open issues carrying any of the given labels."""
        ...

    def get_issue_labels(self, repo: str, issue_number: int) -> set[str]:
        """Get the current labels on an issue."""
        ...

    def add_label(self, repo: str, issue_number: int, label: str) -> None:
        """Add a label to an issue."""
        ...

    def remove_label(self, repo: str, issue_number: int, label: str) -> None:
        """Remove a label from an issue."""
        ...

    def add_comment(self, repo: str, issue_number: int, body: str) -> None:
        """Post a comment on an issue."""
        ...

    def transition_label(
        self, repo: str, issue_number: int, from_label: str, to_label: str
    ) -> TransitionInfo:
        """Replace from_label with to_label on an issue.

        Returns:
            TransitionInfo describing the applied transition

        Raises:
            GitHubAPIError: If either label operation fails
        """
        ...
