"""
Logging module for labelwatch.

Provides a simple interface to configure and retrieve loggers using Python's
built-in logging module.
"""

from __future__ import annotations

import contextvars
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

SYSTEM_CONTEXT = "labelwatch"

# Context variable for issue tracking (thread-safe)
_issue_context: contextvars.ContextVar[str] = contextvars.ContextVar(
    "issue_context", default=SYSTEM_CONTEXT
)


def set_issue_context(repo: str | None = None, issue_number: int | None = None) -> None:
    """Set the current issue context for logging.

    Args:
        repo: Repository in 'hostname/owner/repo' format
        issue_number: Issue number
    """
    if repo and issue_number is not None:
        _issue_context.set(f"{repo}#{issue_number}")
    else:
        _issue_context.set(SYSTEM_CONTEXT)


def clear_issue_context() -> None:
    """Clear the issue context, resetting to the system context."""
    _issue_context.set(SYSTEM_CONTEXT)


def get_issue_context() -> str:
    """Get the current issue context string."""
    return _issue_context.get()


class Colors:
    """ANSI escape codes used by the console formatter."""

    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    GRAY = "\033[90m"
    ORANGE = "\033[38;5;208m"


# INFO messages containing one of these keywords get a color and a prefix.
# First match wins, so longer phrases go before the words they contain.
SEMANTIC_COLORS: list[tuple[str, str, str]] = [
    ("starting", Colors.GREEN, ">>>"),
    ("watching", Colors.GREEN, ">>>"),
    ("initialized", Colors.GREEN, ">>>"),
    ("succeeded", Colors.GREEN, "✓"),
    ("successful", Colors.GREEN, "✓"),
    ("stopped", Colors.GREEN, "✓"),
    ("cleaned up", Colors.BLUE, "🧹"),
    ("maintenance", Colors.BLUE, "🧹"),
    ("reopened", Colors.MAGENTA, "↺"),
    ("transitioned", Colors.YELLOW, "→"),
    ("label changed", Colors.YELLOW, "→"),
    ("label added", Colors.YELLOW, "→"),
    ("label removed", Colors.YELLOW, "→"),
    ("skipping", Colors.GRAY, "⊘"),
    ("already", Colors.GRAY, "⊘"),
    ("transition metrics", Colors.ORANGE, "Σ"),
]


class DateRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that puts today's date into backup names.

    labelwatch.log.1 becomes labelwatch.2024-01-15.log.1
    """

    def rotation_filename(self, default_name: str) -> str:
        base = Path(self.baseFilename)
        counter = default_name[len(self.baseFilename) :]
        today = datetime.now().strftime("%Y-%m-%d")

        if base.suffix:
            rotated = f"{base.stem}.{today}{base.suffix}{counter}"
        else:
            rotated = f"{base.name}.{today}{counter}"
        return str(base.with_name(rotated))


class MaskingFilter(logging.Filter):
    """Filter that masks GHES hostname and org name in log records.

    When enabled, replaces GHES hostname with <GHES> and organization name
    with <ORG> in all log output.
    """

    def __init__(self, ghes_host: str | None, org_name: str | None) -> None:
        """Initialize MaskingFilter.

        Args:
            ghes_host: GitHub Enterprise Server hostname to mask (e.g., "github.corp.com").
                       If None or "github.com", masking is disabled.
            org_name: Organization name to mask (e.g., "myorg").
                      If None, only hostname is masked.
        """
        super().__init__()
        self.ghes_host = ghes_host
        self.org_name = org_name

    @property
    def enabled(self) -> bool:
        return bool(self.ghes_host) and self.ghes_host != "github.com"

    def filter(self, record: logging.LogRecord) -> bool:
        """Mask the record in place; always lets it through."""
        if not self.enabled:
            return True

        if hasattr(record, "issue_context"):
            record.issue_context = self.mask(str(record.issue_context))
        if record.msg:
            record.msg = self.mask(str(record.msg))
        if isinstance(record.args, dict):
            record.args = {key: self._mask_arg(arg) for key, arg in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(self._mask_arg(arg) for arg in record.args)
        return True

    def _mask_arg(self, arg: object) -> object:
        return self.mask(arg) if isinstance(arg, str) else arg

    def mask(self, value: str) -> str:
        """Replace GHES hostname and org name with placeholders."""
        if self.ghes_host:
            value = value.replace(self.ghes_host, "<GHES>")
        if self.org_name:
            value = value.replace(f"/{self.org_name}/", "/<ORG>/")
        return value


class PlainContextAwareFormatter(logging.Formatter):
    """Formatter (no colors) that fills %(issue_context)s from the contextvar."""

    def __init__(self, fmt: str | None = None, masking_filter: MaskingFilter | None = None) -> None:
        super().__init__(fmt)
        self.masking_filter = masking_filter

    def format(self, record: logging.LogRecord) -> str:
        issue_context = get_issue_context()
        if self.masking_filter:
            issue_context = self.masking_filter.mask(issue_context)
        record.issue_context = issue_context
        return super().format(record)


class ContextAwareFormatter(PlainContextAwareFormatter):
    """Console formatter: red errors, yellow warnings, keyword-colored INFO."""

    @staticmethod
    def _semantic_style(message: str) -> tuple[str, str] | None:
        lowered = message.lower()
        for keyword, color, prefix in SEMANTIC_COLORS:
            if keyword in lowered:
                return color, prefix
        return None

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        if record.levelno >= logging.ERROR:
            return f"{Colors.RED}{message}{Colors.RESET}"
        if record.levelno >= logging.WARNING:
            return f"{Colors.YELLOW}{message}{Colors.RESET}"

        if record.levelno == logging.INFO:
            style = self._semantic_style(record.getMessage())
            if style:
                color, prefix = style
                return f"{color}{prefix} {message}{Colors.RESET}"
        return message


def extract_org_from_repo(repo: str) -> str | None:
    """Extract the owner from a 'hostname/owner/repo' string."""
    parts = repo.split("/")
    return parts[1] if len(parts) >= 3 and parts[1] else None


LOG_FORMAT = "[%(asctime)s] %(levelname)s %(issue_context)s %(threadName)s %(name)s: %(message)s"


def _add_handler(
    root_logger: logging.Logger,
    handler: logging.Handler,
    level: int,
    formatter: logging.Formatter,
    masking_filter: MaskingFilter | None,
) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    if masking_filter:
        handler.addFilter(masking_filter)
    root_logger.addHandler(handler)


def setup_logging(
    log_file: str | None = ".labelwatch/logs/labelwatch.log",
    log_size: int = 10 * 1024 * 1024,
    log_backups: int = 5,
    daemon_mode: bool = False,
    ghes_logs_mask: bool = False,
    ghes_host: str | None = None,
    org_name: str | None = None,
) -> None:
    """
    Configure the root logger for the watcher process.

    The level comes from the LOG_LEVEL environment variable (INFO when unset
    or unknown). Outside daemon mode INFO/DEBUG go to stdout and WARNING+ to
    stderr, colored; the log file always gets plain text.

    Args:
        log_file: Path to log file, or None to log to the console only.
        log_size: Max size in bytes before rotation. Default: 10MB
        log_backups: Number of backup files to keep. Default: 5
        daemon_mode: If True, log to file only (no stdout/stderr).
        ghes_logs_mask: If True, mask GHES hostname and org name in logs.
        ghes_host: GitHub Enterprise Server hostname to mask. If None or
                   "github.com", masking is disabled regardless of ghes_logs_mask.
        org_name: Organization name to mask.
    """
    log_level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

    masking_filter = None
    if ghes_logs_mask and ghes_host and ghes_host != "github.com":
        masking_filter = MaskingFilter(ghes_host, org_name)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    if not daemon_mode:
        console = ContextAwareFormatter(LOG_FORMAT, masking_filter=masking_filter)
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.addFilter(lambda record: record.levelno < logging.WARNING)
        _add_handler(root_logger, stdout_handler, logging.DEBUG, console, masking_filter)
        _add_handler(
            root_logger, logging.StreamHandler(sys.stderr), logging.WARNING, console, masking_filter
        )

    if not log_file:
        return
    try:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = DateRotatingFileHandler(log_file, maxBytes=log_size, backupCount=log_backups)
    except OSError as e:
        print(f"[logger] Failed to create file handler: {e}", file=sys.stderr)
        return
    _add_handler(
        root_logger,
        file_handler,
        logging.DEBUG,
        PlainContextAwareFormatter(LOG_FORMAT, masking_filter=masking_filter),
        masking_filter,
    )


def get_logger(name: str) -> logging.Logger:
    """Get the logger for a module, typically called with __name__."""
    return logging.getLogger(name)


def is_debug_mode() -> bool:
    """Check if logging is set to DEBUG level."""
    return logging.getLogger().level <= logging.DEBUG
