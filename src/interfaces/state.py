"""Workflow phase and processing status types."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class IssuePhase(str, Enum):
    """Workflow stage an issue is in, in workflow order."""

    PLAN = "plan"
    IMPLEMENTATION = "implementation"
    REVIEW = "review"


class IssueStatus(str, Enum):
    """Processing lifecycle of a single phase for a single issue."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether the status ends the handling of a phase."""
        return self in (IssueStatus.COMPLETED, IssueStatus.FAILED)


@dataclass
class IssueState:
    """Stored status of one phase of one issue.

    Attributes:
        issue_number: Issue identifier
        phase: Phase this record belongs to
        status: Current processing status of the phase
        last_action: When the status was last written
    """

    issue_number: int
    phase: IssuePhase
    status: IssueStatus
    last_action: datetime
