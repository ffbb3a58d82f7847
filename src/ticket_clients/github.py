"""GitHub issue client backed by the gh CLI.

This module provides GitHubIssueClient, the IssueTrackerClient used by the
watcher. Every operation is a single gh invocation (no retries); failures
are raised as NetworkError or GitHubAPIError so callers can classify them.
"""

import json
import os
import subprocess
from collections.abc import Sequence
from typing import TYPE_CHECKING

from src.interfaces import Issue, TransitionInfo
from src.labels import LabelConfig
from src.logger import get_logger, is_debug_mode
from src.ticket_clients.errors import (
    GitHubAPIError,
    GitHubErrorType,
    NetworkError,
    parse_gh_error,
)

if TYPE_CHECKING:
    from src.decision import TriggerRule

logger = get_logger(__name__)

# Patterns in gh stderr that indicate the network, not the request, is at fault
NETWORK_ERROR_PATTERNS = [
    "tls handshake timeout",
    "connection timeout",
    "network error",
    "connection refused",
    "temporary failure",
    "i/o timeout",
    "dial tcp",  # Go network dial errors
    "no such host",  # DNS resolution failures
]


class GitHubIssueClient:
    """Issue tracker client for github.com and GitHub Enterprise Server.

    Repositories are addressed as 'hostname/owner/repo'; the short
    'owner/repo' form is treated as github.com.
    """

    # Seconds before a single gh invocation is abandoned
    COMMAND_TIMEOUT = 60
    # Maximum issues fetched per label query
    ISSUE_LIST_LIMIT = 200

    def __init__(self, tokens: dict[str, str] | None = None) -> None:
        """Initialize the GitHub client.

        Args:
            tokens: Dictionary mapping hostname to token, or None to use gh auth login credentials.
                    Example: {"github.com": "ghp_xxx", "github.mycompany.com": "ghp_yyy"}
        """
        self.tokens = tokens or {}
        logger.debug(f"{self.__class__.__name__} initialized")

    @property
    def client_description(self) -> str:
        """Human-readable description of this client for logging."""
        hosts = ", ".join(sorted(self.tokens)) or "gh auth login"
        return f"GitHub ({hosts})"

    def validate_connection(self, hostname: str = "github.com") -> bool:
        """Validate that the client can authenticate with GitHub.

        Args:
            hostname: GitHub hostname to validate (default: github.com)

        Returns:
            True if authentication succeeds

        Raises:
            RuntimeError: If authentication fails with details about the error
        """
        logger.debug(f"Validating GitHub connection for {hostname}")
        try:
            output = self._run_gh_command(["api", "user", "--jq", ".login"], hostname=hostname)
        except (GitHubAPIError, NetworkError) as e:
            raise RuntimeError(f"GitHub authentication failed for {hostname}: {e}") from e

        login = output.strip()
        if not login:
            raise RuntimeError(f"GitHub authentication failed for {hostname}: no login returned")
        logger.info(f"GitHub authentication successful for {hostname} as '{login}'")
        return True

    # Repository helpers

    def _parse_repo(self, repo: str) -> tuple[str, str, str]:
        """Parse repository string into hostname, owner, and repo name.

        Args:
            repo: Repository in 'hostname/owner/repo' or 'owner/repo' format

        Returns:
            Tuple of (hostname, owner, repo_name)
        """
        parts = repo.split("/")
        if len(parts) >= 3 and "." in parts[0]:
            return parts[0], parts[1], parts[2]
        if len(parts) == 2:
            return "github.com", parts[0], parts[1]
        return "github.com", "", repo

    def _get_repo_ref(self, repo: str) -> str:
        """Get the repository reference for gh CLI commands.

        Returns the full URL format which works for both github.com and GHES.
        """
        hostname, owner, name = self._parse_repo(repo)
        return f"https://{hostname}/{owner}/{name}"

    def _get_token_for_host(self, hostname: str) -> str | None:
        return self.tokens.get(hostname)

    # Issue operations

    def list_issues_by_labels(self, repo: str, labels: list[str]) -> list[Issue]:
        """List open issues carrying any of the given labels.

        gh ANDs repeated --label flags, so each label is queried separately
        and the results are merged by issue number.

        Args:
            repo: Repository in 'hostname/owner/repo' format
            labels: Label names to match

        Returns:
            Issues sorted by number
        """
        repo_ref = self._get_repo_ref(repo)
        issues: dict[int, Issue] = {}
        for label in labels:
            args = [
                "issue",
                "list",
                "--repo",
                repo_ref,
                "--label",
                label,
                "--state",
                "open",
                "--limit",
                str(self.ISSUE_LIST_LIMIT),
                "--json",
                "number,title,labels,state,url",
            ]
            output = self._run_gh_command(args, repo=repo)
            try:
                data = json.loads(output or "[]")
            except json.JSONDecodeError as e:
                raise GitHubAPIError(
                    GitHubErrorType.UNKNOWN, f"Invalid JSON from gh issue list: {e}"
                ) from e

            for node in data:
                issue = self._parse_issue_node(node)
                if issue.number is not None:
                    issues[issue.number] = issue

        logger.debug(f"Fetched {len(issues)} issue(s) from {repo} for labels {labels}")
        return [issues[number] for number in sorted(issues)]

    def _parse_issue_node(self, node: dict) -> Issue:
        labels = {label["name"] for label in node.get("labels") or [] if label and "name" in label}
        return Issue(
            number=node.get("number"),
            title=node.get("title") or "",
            labels=labels,
            state=(node.get("state") or "OPEN").upper(),
            url=node.get("url"),
        )

    def get_issue_labels(self, repo: str, issue_number: int) -> set[str]:
        """Get current labels for an issue.

        Args:
            repo: Repository in 'hostname/owner/repo' format
            issue_number: Issue number

        Returns:
            Set of label names currently on the issue
        """
        repo_ref = self._get_repo_ref(repo)
        args = ["issue", "view", str(issue_number), "--repo", repo_ref, "--json", "labels"]
        output = self._run_gh_command(args, repo=repo)
        try:
            data = json.loads(output)
        except json.JSONDecodeError as e:
            raise GitHubAPIError(
                GitHubErrorType.UNKNOWN, f"Invalid JSON from gh issue view: {e}"
            ) from e
        return {label["name"] for label in data.get("labels") or [] if label}

    def add_label(self, repo: str, issue_number: int, label: str) -> None:
        """Add a label to an issue.

        Args:
            repo: Repository in 'hostname/owner/repo' format
            issue_number: Issue number
            label: Label name to add
        """
        repo_ref = self._get_repo_ref(repo)
        args = ["issue", "edit", str(issue_number), "--repo", repo_ref, "--add-label", label]
        self._run_gh_command(args, repo=repo)
        logger.info(f"Added label '{label}' to {repo}#{issue_number}")

    def remove_label(self, repo: str, issue_number: int, label: str) -> None:
        """Remove a label from an issue.

        Removing a label the issue does not carry is not an error.

        Args:
            repo: Repository in 'hostname/owner/repo' format
            issue_number: Issue number
            label: Label name to remove
        """
        repo_ref = self._get_repo_ref(repo)
        args = ["issue", "edit", str(issue_number), "--repo", repo_ref, "--remove-label", label]
        try:
            self._run_gh_command(args, repo=repo)
        except GitHubAPIError as e:
            if e.error_type != GitHubErrorType.NOT_FOUND or "label" not in e.message.lower():
                raise
            logger.debug(f"Label '{label}' not on {repo}#{issue_number}")
            return
        logger.info(f"Removed label '{label}' from {repo}#{issue_number}")

    def add_comment(self, repo: str, issue_number: int, body: str) -> None:
        """Add a comment to an issue.

        Args:
            repo: Repository in 'hostname/owner/repo' format
            issue_number: Issue number
            body: Comment body text
        """
        repo_ref = self._get_repo_ref(repo)
        args = ["issue", "comment", str(issue_number), "--repo", repo_ref, "--body-file", "-"]
        self._run_gh_command(args, input_data=body, repo=repo)
        logger.debug(f"Added comment to {repo}#{issue_number}")

    def transition_label(
        self, repo: str, issue_number: int, from_label: str, to_label: str
    ) -> TransitionInfo:
        """Replace from_label with to_label on an issue.

        The old label is removed first, then the new one added, so an issue
        never carries both a trigger and its in-progress label. If adding
        fails, from_label is put back so the issue stays visible to the next
        poll and the transition can be retried.

        Args:
            repo: Repository in 'hostname/owner/repo' format
            issue_number: Issue number
            from_label: Label to remove
            to_label: Label to add

        Returns:
            TransitionInfo for the applied transition

        Raises:
            GitHubAPIError: If either step fails
            NetworkError: If GitHub is unreachable
        """
        self.remove_label(repo, issue_number, from_label)
        try:
            self.add_label(repo, issue_number, to_label)
        except Exception:
            self._restore_label(repo, issue_number, from_label)
            raise
        info = TransitionInfo(from_label=from_label, to_label=to_label)
        logger.info(f"Transitioned {repo}#{issue_number}: {info.from_label} → {info.to_label}")
        return info

    def _restore_label(self, repo: str, issue_number: int, label: str) -> None:
        """Re-add a label removed by a half-applied transition."""
        try:
            self.add_label(repo, issue_number, label)
        except Exception as e:
            logger.error(
                f"Failed to restore label '{label}' on {repo}#{issue_number}; "
                f"the issue needs the label re-added by hand: {e}"
            )
            return
        logger.warning(
            f"Restored label '{label}' on {repo}#{issue_number} after failed transition"
        )

    def transition_issue_label_with_info(
        self, repo: str, issue_number: int, rules: Sequence["TriggerRule"]
    ) -> TransitionInfo | None:
        """Apply the first matching trigger rule to an issue's current labels.

        Args:
            repo: Repository in 'hostname/owner/repo' format
            issue_number: Issue number
            rules: Trigger rules in priority order

        Returns:
            TransitionInfo for the applied transition, or None if no rule matched
        """
        labels = self.get_issue_labels(repo, issue_number)
        for rule in rules:
            if rule.trigger_label not in labels:
                continue
            if rule.target_label in labels:
                logger.debug(
                    f"{repo}#{issue_number} already has '{rule.target_label}', nothing to do"
                )
                return None
            return self.transition_label(
                repo, issue_number, rule.trigger_label, rule.target_label
            )
        logger.debug(f"No trigger label on {repo}#{issue_number}")
        return None

    # Repo label management

    def get_repo_labels(self, repo: str) -> list[str]:
        """Get all labels defined in a repository."""
        repo_ref = self._get_repo_ref(repo)
        args = ["label", "list", "--repo", repo_ref, "--limit", "500", "--json", "name"]
        output = self._run_gh_command(args, repo=repo)
        try:
            data = json.loads(output or "[]")
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse repo labels for {repo}: {e}")
            return []
        return [label["name"] for label in data]

    def create_repo_label(
        self, repo: str, name: str, description: str = "", color: str = ""
    ) -> bool:
        """Create (or update) a label in a repository.

        Args:
            repo: Repository in 'hostname/owner/repo' format
            name: Label name
            description: Label description
            color: Label color (hex code without #)
        """
        repo_ref = self._get_repo_ref(repo)
        args = ["label", "create", name, "--repo", repo_ref, "--force"]
        if description:
            args.extend(["--description", description])
        if color:
            args.extend(["--color", color])

        try:
            self._run_gh_command(args, repo=repo)
            logger.info(f"Created label '{name}' in {repo}")
            return True
        except GitHubAPIError as e:
            logger.warning(f"Failed to create label '{name}' in {repo}: {e}")
            return False

    def ensure_labels(self, repo: str, definitions: dict[str, LabelConfig]) -> list[str]:
        """Create every missing label from definitions.

        Args:
            repo: Repository in 'hostname/owner/repo' format
            definitions: Label name -> description/color

        Returns:
            Names of labels that were created
        """
        existing = set(self.get_repo_labels(repo))
        created = []
        for name, label_config in definitions.items():
            if name in existing:
                continue
            if self.create_repo_label(
                repo, name, label_config["description"], label_config["color"]
            ):
                created.append(name)
        if not created:
            logger.debug(f"All required labels already exist in {repo}")
        return created

    def _run_gh_command(
        self,
        args: list[str],
        input_data: str | None = None,
        *,
        hostname: str | None = None,
        repo: str | None = None,
    ) -> str:
        """Run a gh CLI command with proper error handling.

        Args:
            args: Command arguments (excluding 'gh' itself)
            input_data: Optional data to pass to stdin
            hostname: Explicit hostname (for API calls without a repo)
            repo: Repository to look up hostname for (for repo operations)

        Returns:
            Command output as string

        Raises:
            NetworkError: If GitHub could not be reached
            GitHubAPIError: If the command failed for any other reason
        """
        if hostname is None:
            hostname = self._parse_repo(repo)[0] if repo else "github.com"

        cmd = ["gh"]
        # Add --hostname flag for non-github.com hosts on API commands
        if hostname != "github.com" and args and args[0] == "api":
            cmd.extend(["api", "--hostname", hostname] + args[1:])
        else:
            cmd.extend(args)
        logger.debug(f"Running command: {' '.join(cmd)}")

        env = {}
        token = self._get_token_for_host(hostname)
        if token:
            # gh CLI uses different env vars for github.com vs GHES
            if hostname == "github.com":
                env["GITHUB_TOKEN"] = token
            else:
                env["GH_ENTERPRISE_TOKEN"] = token
                env["GH_HOST"] = hostname

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                input=input_data,
                timeout=self.COMMAND_TIMEOUT,
                env={**os.environ, **env},
            )
        except subprocess.CalledProcessError as e:
            logger.error(f"Command failed with exit code {e.returncode}")
            logger.error(f"Error output: {e.stderr}")
            error_output = (e.stderr or "") + (e.stdout or "")

            if any(pattern in error_output.lower() for pattern in NETWORK_ERROR_PATTERNS):
                raise NetworkError(f"GitHub API network error: {e.stderr}") from e

            error = parse_gh_error(error_output)
            if error.error_type == GitHubErrorType.AUTHENTICATION and is_debug_mode():
                logger.debug(
                    f"Authentication failed for {hostname}; "
                    f"set GITHUB_TOKEN in .labelwatch/config or run 'gh auth login'"
                )
            raise error from e
        except subprocess.TimeoutExpired as e:
            raise NetworkError(
                f"gh command timed out after {self.COMMAND_TIMEOUT}s: {' '.join(cmd)}"
            ) from e
        except FileNotFoundError as e:
            logger.error("gh CLI not found. Please install GitHub CLI: https://cli.github.com/")
            raise RuntimeError(
                "GitHub CLI (gh) is not installed or not in PATH. "
                "Please install it from https://cli.github.com/"
            ) from e

        logger.debug(f"Command succeeded, output length: {len(result.stdout)} bytes")
        return result.stdout
