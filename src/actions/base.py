"""Base classes and protocols for phase actions."""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from src.interfaces import Issue, IssuePhase


@dataclass
class ActionContext:
    """Context information passed to actions.

    Attributes:
        repo: Repository identifier in format "hostname/owner/repo"
        phase: Workflow phase the issue has just entered
    """

    repo: str
    phase: IssuePhase


class ActionError(Exception):
    """Raised when an action fails to run for an issue."""

    pass


@runtime_checkable
class Action(Protocol):
    """Protocol defining the interface for phase actions.

    An action is the work performed when an issue enters a phase. The decision
    layer only calls execute() after can_execute() returned True.
    """

    def can_execute(self, issue: Issue | None) -> bool:
        """Return whether this action applies to the issue.

        Args:
            issue: Issue that just transitioned, or None

        Returns:
            bool: True if execute() should be called
        """
        ...

    def execute(self, ctx: ActionContext, issue: Issue | None) -> None:
        """Run the action for the issue.

        Args:
            ctx: ActionContext with the repo and the entered phase
            issue: Issue that just transitioned

        Raises:
            ActionError: If the action could not complete
        """
        ...
