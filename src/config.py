"""Configuration module for labelwatch.

This module provides configuration management for the application,
loading settings from .labelwatch/config file (KEY=value format) with
fallback to environment variables. An optional YAML workflow file
(WORKFLOW_FILE) overrides label names and phase messages.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import timedelta
from pathlib import Path

import yaml

from src.labels import DEFAULT_LABELS, WorkflowLabels

logger = logging.getLogger(__name__)

# Default paths relative to the working directory
LABELWATCH_DIR = ".labelwatch"
CONFIG_FILE = "config"

# Config keys that rename the trigger labels
LABEL_KEYS = {
    "LABEL_PLAN": "needs_plan",
    "LABEL_READY": "ready",
    "LABEL_REVIEW": "review_requested",
    "LABEL_REQUIRES_CHANGES": "requires_changes",
}

MESSAGE_KEYS = {
    "plan": "message_plan",
    "implement": "message_implement",
    "review": "message_review",
}


class WorkflowFileError(ValueError):
    """Error loading the YAML workflow file."""

    pass


@dataclass
class Config:
    """Application configuration.

    Attributes:
        github_token: GitHub personal access token for github.com
        github_enterprise_host: GitHub Enterprise Server hostname (e.g., github.mycompany.com)
        github_enterprise_token: GitHub Enterprise Server personal access token
        repos: Repositories to watch, in 'hostname/owner/repo' format (required)
        poll_interval: Seconds between polls of each repository
        labels: Status label names
        message_plan: Comment posted when an issue enters planning (empty = none)
        message_implement: Comment posted when an issue enters implementation
        message_review: Comment posted when an issue enters review
        state_retention_hours: Age after which finished phase states are swept
        cleanup_interval: Seconds between maintenance sweeps
        label_change_tracking: Log label added/removed/changed events
        workflow_file: Path of the YAML workflow file, if any
    """

    github_token: str | None = None
    github_enterprise_host: str | None = None
    github_enterprise_token: str | None = None
    repos: list[str] = field(default_factory=list)  # Required, no default
    poll_interval: int = 5
    labels: WorkflowLabels = field(default_factory=WorkflowLabels)
    message_plan: str = ""
    message_implement: str = ""
    message_review: str = ""
    state_retention_hours: int = 24
    cleanup_interval: int = 300
    label_change_tracking: bool = False
    log_file: str = ".labelwatch/logs/labelwatch.log"
    log_size: int = 10 * 1024 * 1024  # 10MB default
    log_backups: int = 5  # Keep 5 backup files by default
    log_level: str = "INFO"
    ghes_logs_mask: bool = True  # Mask GHES hostname and org in logs
    otel_endpoint: str = ""
    otel_service_name: str = "labelwatch"
    slack_bot_token: str | None = None  # Slack Bot OAuth token (xoxb-...)
    slack_user_id: str | None = None  # Slack user ID to DM (U...)
    workflow_file: str | None = None

    @property
    def state_retention(self) -> timedelta:
        return timedelta(hours=self.state_retention_hours)

    @property
    def tokens(self) -> dict[str, str]:
        """Hostname -> token map for the GitHub client."""
        if self.github_enterprise_host and self.github_enterprise_token:
            return {self.github_enterprise_host: self.github_enterprise_token}
        if self.github_token:
            return {"github.com": self.github_token}
        return {}


def normalize_repo(repo: str, default_host: str = "github.com") -> str:
    """Normalize a repository to 'hostname/owner/repo'.

    Args:
        repo: 'owner/repo', 'hostname/owner/repo' or an https URL
        default_host: Host used for the short form

    Returns:
        Normalized repository string

    Raises:
        ValueError: If the repository cannot be parsed
    """
    value = repo.strip().removeprefix("https://").removeprefix("http://").rstrip("/")
    value = value.removesuffix(".git")
    parts = [p for p in value.split("/") if p]
    if len(parts) == 2:
        return f"{default_host}/{parts[0]}/{parts[1]}"
    if len(parts) == 3 and "." in parts[0]:
        return "/".join(parts)
    raise ValueError(f"Invalid repository '{repo}': expected [hostname/]owner/repo")


def _validate_repos_host(repos: list[str], github_enterprise_host: str | None) -> None:
    """Validate REPOS hostnames match the configured GitHub host.

    Raises:
        ValueError: If any repository is on another host
    """
    expected_host = github_enterprise_host or "github.com"
    for repo in repos:
        host = repo.split("/", 1)[0]
        if host != expected_host:
            raise ValueError(
                f"REPOS contains '{host}' but configured for '{expected_host}'. "
                f"All repositories must use the same GitHub host as your authentication config."
            )


def parse_config_file(config_path: Path) -> dict[str, str]:
    """Parse a KEY=value config file.

    Args:
        config_path: Path to the config file

    Returns:
        Dictionary of key-value pairs
    """
    config = {}
    with open(config_path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            # Skip empty lines and comments
            if not line or line.startswith("#"):
                continue
            # Parse KEY=value
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                # Remove surrounding quotes if present
                if (value.startswith('"') and value.endswith('"')) or (
                    value.startswith("'") and value.endswith("'")
                ):
                    value = value[1:-1]
                config[key] = value
    return config


def load_workflow_file(path: Path) -> tuple[dict[str, str], dict[str, str]]:
    """Load label and message overrides from a YAML workflow file.

    The file is a mapping with optional 'labels' and 'messages' keys:

        labels:
          needs_plan: "stage:plan"
          planning: "stage:planning"
        messages:
          plan: "Starting the plan"

    Args:
        path: Path to the YAML file

    Returns:
        Tuple of (label overrides by WorkflowLabels field, messages by phase key)

    Raises:
        WorkflowFileError: If the file cannot be read or has the wrong shape
    """
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise WorkflowFileError(f"Invalid YAML in workflow file {path}: {e}") from e
    except OSError as e:
        raise WorkflowFileError(f"Failed to read workflow file {path}: {e}") from e

    if raw is None:
        logger.debug(f"Workflow file {path} is empty")
        return {}, {}
    if not isinstance(raw, dict):
        raise WorkflowFileError(
            f"Workflow file must be a YAML mapping, got {type(raw).__name__}"
        )

    label_fields = {f.name for f in fields(WorkflowLabels)}
    labels = raw.get("labels") or {}
    messages = raw.get("messages") or {}
    if not isinstance(labels, dict) or not isinstance(messages, dict):
        raise WorkflowFileError("'labels' and 'messages' must be mappings")

    unknown = sorted(set(labels) - label_fields) + sorted(set(messages) - set(MESSAGE_KEYS))
    if unknown:
        raise WorkflowFileError(f"Unknown keys in workflow file {path}: {', '.join(unknown)}")

    return (
        {key: str(value) for key, value in labels.items() if value},
        {key: str(value) for key, value in messages.items() if value is not None},
    )


def _optional(data: Mapping[str, str], key: str) -> str | None:
    # Normalize empty string to None so gh CLI can use gh auth login credentials
    value = data.get(key)
    return value if value else None


def _flag(data: Mapping[str, str], key: str, default: bool) -> bool:
    value = data.get(key)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _int(data: Mapping[str, str], key: str, default: int) -> int:
    value = data.get(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{key} must be an integer, got '{value}'") from e


def build_config(data: Mapping[str, str], source: str, base_dir: Path | None = None) -> Config:
    """Build a Config from raw KEY=value settings.

    Args:
        data: Settings from the config file or the environment
        source: Where the settings came from, used in error messages
        base_dir: Directory relative WORKFLOW_FILE paths resolve against

    Returns:
        Config: A validated Config instance

    Raises:
        ValueError: If required settings are missing or invalid
    """
    # Collect all missing required vars
    missing_vars: list[str] = []

    github_token = _optional(data, "GITHUB_TOKEN")
    github_enterprise_host = _optional(data, "GITHUB_ENTERPRISE_HOST")
    github_enterprise_token = _optional(data, "GITHUB_ENTERPRISE_TOKEN")

    # Validate mutual exclusivity: cannot have both github.com and GHES tokens
    if github_token and github_enterprise_token:
        raise ValueError(
            "Cannot configure both GITHUB_TOKEN and GITHUB_ENTERPRISE_TOKEN. "
            "labelwatch operates against either github.com OR a GitHub Enterprise Server, "
            "not both."
        )

    # GHES needs host and token together
    if github_enterprise_host or github_enterprise_token:
        if not github_enterprise_host:
            missing_vars.append("GITHUB_ENTERPRISE_HOST")
        if not github_enterprise_token:
            missing_vars.append("GITHUB_ENTERPRISE_TOKEN")

    repos_str = data.get("REPOS", "")
    raw_repos = [r.strip() for r in repos_str.split(",") if r.strip()]
    if not raw_repos:
        missing_vars.append("REPOS")

    # Raise error listing all missing required vars
    if missing_vars:
        raise ValueError(f"Missing required configuration in {source}: {', '.join(missing_vars)}")

    default_host = github_enterprise_host or "github.com"
    repos = list(dict.fromkeys(normalize_repo(r, default_host) for r in raw_repos))
    _validate_repos_host(repos, github_enterprise_host)

    poll_interval = _int(data, "POLL_INTERVAL", 5)
    if poll_interval < 1:
        raise ValueError("POLL_INTERVAL must be at least 1 second")

    # Labels and messages: defaults, then the workflow file, then explicit keys
    label_overrides: dict[str, str] = {}
    messages: dict[str, str] = {}
    workflow_file = _optional(data, "WORKFLOW_FILE")
    if workflow_file:
        path = Path(workflow_file)
        if not path.is_absolute() and base_dir is not None:
            path = base_dir / path
        label_overrides, file_messages = load_workflow_file(path)
        messages.update({MESSAGE_KEYS[k]: v for k, v in file_messages.items()})

    for key, field_name in LABEL_KEYS.items():
        if data.get(key):
            label_overrides[field_name] = data[key]
    labels = replace(DEFAULT_LABELS, **label_overrides)

    for phase_key, field_name in MESSAGE_KEYS.items():
        key = f"MESSAGE_{phase_key.upper()}"
        if key in data:
            messages[field_name] = data[key]

    log_level = data.get("LOG_LEVEL", "INFO").upper()
    os.environ["LOG_LEVEL"] = log_level  # Set for logger module

    return Config(
        github_token=github_token,
        github_enterprise_host=github_enterprise_host,
        github_enterprise_token=github_enterprise_token,
        repos=repos,
        poll_interval=poll_interval,
        labels=labels,
        message_plan=messages.get("message_plan", ""),
        message_implement=messages.get("message_implement", ""),
        message_review=messages.get("message_review", ""),
        state_retention_hours=_int(data, "STATE_RETENTION_HOURS", 24),
        cleanup_interval=_int(data, "CLEANUP_INTERVAL", 300),
        label_change_tracking=_flag(data, "LABEL_CHANGE_TRACKING", False),
        log_file=data.get("LOG_FILE", ".labelwatch/logs/labelwatch.log"),
        log_size=_int(data, "LOG_SIZE", 10 * 1024 * 1024),
        log_backups=_int(data, "LOG_BACKUPS", 5),
        log_level=log_level,
        ghes_logs_mask=_flag(data, "GHES_LOGS_MASK", True),
        otel_endpoint=data.get("OTEL_EXPORTER_OTLP_ENDPOINT", ""),
        otel_service_name=data.get("OTEL_SERVICE_NAME", "labelwatch"),
        slack_bot_token=_optional(data, "SLACK_BOT_TOKEN"),
        slack_user_id=_optional(data, "SLACK_USER_ID"),
        workflow_file=workflow_file,
    )


def load_config_from_file(config_path: Path) -> Config:
    """Load configuration from a KEY=value config file.

    Args:
        config_path: Path to the config file

    Returns:
        Config: A Config instance populated from the config file

    Raises:
        ValueError: If required fields are missing or invalid
        FileNotFoundError: If the config file doesn't exist
    """
    data = parse_config_file(config_path)
    # Relative WORKFLOW_FILE paths are relative to the project, not .labelwatch/
    return build_config(
        data, f"{LABELWATCH_DIR}/{CONFIG_FILE}", base_dir=config_path.parent.parent
    )


def load_config_from_env() -> Config:
    """Load configuration from environment variables.

    Returns:
        Config: A Config instance populated from environment variables

    Raises:
        ValueError: If required environment variables are missing
    """
    return build_config(dict(os.environ), "environment variables", base_dir=Path.cwd())


def load_config() -> Config:
    """Load configuration from config file or environment variables.

    Priority:
    1. Config file at .labelwatch/config
    2. Environment variables

    Returns:
        Config: A Config instance

    Raises:
        ValueError: If required configuration is missing
    """
    config_path = Path.cwd() / LABELWATCH_DIR / CONFIG_FILE

    if config_path.exists():
        return load_config_from_file(config_path)
    else:
        return load_config_from_env()
