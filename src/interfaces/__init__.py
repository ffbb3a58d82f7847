"""Abstract interfaces and shared data types."""

from src.interfaces.state import IssuePhase, IssueState, IssueStatus
from src.interfaces.ticket import Issue, IssueTrackerClient, TransitionInfo

__all__ = [
    "Issue",
    "IssuePhase",
    "IssueState",
    "IssueStatus",
    "IssueTrackerClient",
    "TransitionInfo",
]
