"""GitHub issue tracker client implementations.

This package provides the gh CLI backed GitHubIssueClient and the error
types it raises. Use get_github_client() to build a client from config.
"""

from src.ticket_clients.errors import (
    FailureReasons,
    GitHubAPIError,
    GitHubErrorType,
    NetworkError,
    classify_failure_reason,
    parse_gh_error,
)
from src.ticket_clients.github import GitHubIssueClient


def get_github_client(tokens: dict[str, str] | None = None) -> GitHubIssueClient:
    """Factory function to get a GitHub client.

    Args:
        tokens: Dictionary mapping hostname to token

    Returns:
        GitHubIssueClient instance
    """
    return GitHubIssueClient(tokens)


__all__ = [
    "FailureReasons",
    "GitHubAPIError",
    "GitHubErrorType",
    "GitHubIssueClient",
    "NetworkError",
    "classify_failure_reason",
    "get_github_client",
    "parse_gh_error",
]
