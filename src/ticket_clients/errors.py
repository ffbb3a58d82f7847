"""GitHub error types and failure classification.

gh CLI failures arrive as free-form stderr text. This module turns that text
into a structured GitHubAPIError and, for metrics, into a short failure
reason tag drawn from a fixed vocabulary so that aggregated failure counts
stay bounded no matter what the API returns.
"""

import re
import subprocess
from enum import Enum


class NetworkError(Exception):
    """Raised when a GitHub API call fails due to network connectivity issues.

    This exception is used to distinguish transient network errors (TLS timeouts,
    connection refused, etc.) from permanent failures (auth errors, invalid requests).
    The watcher uses this to tell a dead network apart from a bad request.

    This exception should NOT be raised for:
    - Authentication errors (bad token, expired token)
    - Permission errors (insufficient scopes)
    - Invalid API requests (bad query, missing fields)
    - Rate limiting (has its own classification)
    """

    pass


class GitHubErrorType(Enum):
    """Classification of a GitHub API failure."""

    RATE_LIMIT = "RateLimit"
    NETWORK_TIMEOUT = "NetworkTimeout"
    AUTHENTICATION = "Authentication"
    NOT_FOUND = "NotFound"
    SERVER_ERROR = "ServerError"
    UNKNOWN = "Unknown"


class GitHubAPIError(Exception):
    """Structured GitHub API error parsed from gh CLI output.

    Attributes:
        error_type: Classification of the failure
        status_code: HTTP status code if known, else 0
        message: Trimmed error output
        retry_after: Seconds to wait before retrying, if the API said so
    """

    def __init__(
        self,
        error_type: GitHubErrorType,
        message: str,
        status_code: int = 0,
        retry_after: int | None = None,
    ) -> None:
        self.error_type = error_type
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(f"GitHub API error [{error_type.value}]: {message}")

    @property
    def is_retryable(self) -> bool:
        return self.error_type in (
            GitHubErrorType.RATE_LIMIT,
            GitHubErrorType.NETWORK_TIMEOUT,
            GitHubErrorType.SERVER_ERROR,
        )


# Failure reason tags recorded in transition metrics
class FailureReasons:
    """Bounded vocabulary of transition failure reasons."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    API_ERROR = "api_error"

    ALL = frozenset(
        {RATE_LIMITED, TIMEOUT, PERMISSION_DENIED, NOT_FOUND, SERVER_ERROR, API_ERROR}
    )


_RATE_LIMIT_RE = re.compile(
    r"(rate limit|API rate limit exceeded|You have exceeded a secondary rate limit)", re.I
)
_NOT_FOUND_RE = re.compile(r"(not found|could not resolve to|does not have the label)", re.I)
_AUTH_RE = re.compile(
    r"(authentication|unauthorized|bad credentials|requires authentication|"
    r"must have (admin|push|write) access|resource not accessible|forbidden|\b403\b)",
    re.I,
)
_NETWORK_RE = re.compile(
    r"(timeout|timed out|connection refused|network|dial tcp|no such host|temporary failure)",
    re.I,
)
_SERVER_ERROR_RE = re.compile(r"(internal server error|server error|\b50[234]\b)", re.I)
_HTTP_STATUS_RE = re.compile(r"HTTP (\d{3})")
_RETRY_AFTER_RE = re.compile(r"retry.?after:\s*(\d+)", re.I)

_TYPE_TO_REASON: dict[GitHubErrorType, str] = {
    GitHubErrorType.RATE_LIMIT: FailureReasons.RATE_LIMITED,
    GitHubErrorType.NETWORK_TIMEOUT: FailureReasons.TIMEOUT,
    GitHubErrorType.AUTHENTICATION: FailureReasons.PERMISSION_DENIED,
    GitHubErrorType.NOT_FOUND: FailureReasons.NOT_FOUND,
    GitHubErrorType.SERVER_ERROR: FailureReasons.SERVER_ERROR,
    GitHubErrorType.UNKNOWN: FailureReasons.API_ERROR,
}


def parse_gh_error(output: str) -> GitHubAPIError:
    """Parse gh CLI error output into a GitHubAPIError.

    Args:
        output: stderr (and/or stdout) of the failed gh command

    Returns:
        GitHubAPIError with type, status code and retry-after filled in
    """
    message = output.strip()
    status_code = 0
    retry_after = None

    match = _HTTP_STATUS_RE.search(output)
    if match:
        status_code = int(match.group(1))

    if _RATE_LIMIT_RE.search(output):
        error_type = GitHubErrorType.RATE_LIMIT
        status_code = status_code or 429
        retry_match = _RETRY_AFTER_RE.search(output)
        if retry_match:
            retry_after = int(retry_match.group(1))
    elif _AUTH_RE.search(output):
        error_type = GitHubErrorType.AUTHENTICATION
        status_code = status_code or 401
    elif _NOT_FOUND_RE.search(output):
        error_type = GitHubErrorType.NOT_FOUND
        status_code = status_code or 404
    elif _NETWORK_RE.search(output):
        error_type = GitHubErrorType.NETWORK_TIMEOUT
    elif _SERVER_ERROR_RE.search(output):
        error_type = GitHubErrorType.SERVER_ERROR
        if not status_code:
            for code in (502, 503, 504):
                if str(code) in output:
                    status_code = code
                    break
            else:
                status_code = 500
    elif 500 <= status_code < 600:
        error_type = GitHubErrorType.SERVER_ERROR
    else:
        error_type = GitHubErrorType.UNKNOWN

    return GitHubAPIError(error_type, message, status_code=status_code, retry_after=retry_after)


def classify_failure_reason(error: BaseException) -> str:
    """Map any transition error to a bounded failure reason tag.

    The raw error text is never used as a tag.

    Args:
        error: Exception raised by the tracker client

    Returns:
        One of FailureReasons.ALL
    """
    if isinstance(error, GitHubAPIError):
        return _TYPE_TO_REASON[error.error_type]
    if isinstance(error, (NetworkError, subprocess.TimeoutExpired, TimeoutError)):
        return FailureReasons.TIMEOUT
    if isinstance(error, PermissionError):
        return FailureReasons.PERMISSION_DENIED
    if isinstance(error, subprocess.CalledProcessError):
        output = "".join(
            part.decode(errors="replace") if isinstance(part, bytes) else part
            for part in (error.stderr, error.stdout)
            if part
        )
        return _TYPE_TO_REASON[parse_gh_error(output).error_type]
    return FailureReasons.API_ERROR
