"""CLI entry point for labelwatch.

This module provides the main command-line interface for labelwatch.
On first run, it creates a .labelwatch/ directory with a sample config.
On subsequent runs, it loads the config and starts the daemon.

Subcommands:
    labelwatch          - Run the daemon (default behavior)
    labelwatch init     - Create .labelwatch/ with a sample config
    labelwatch labels   - Create missing workflow labels in watched repos
"""

from __future__ import annotations

import argparse
import subprocess
import sys
from pathlib import Path

__version__ = "0.1.0"

LABELWATCH_DIR = ".labelwatch"
CONFIG_FILE = "config"

# ANSI escape codes for startup message colors
RESET = "\033[0m"
STARTUP_COLORS = {
    "check": "\033[38;2;96;165;250m",  # #60A5FA
    "config": "\033[38;2;52;211;153m",  # #34D399
    "labels": "\033[38;2;250;204;21m",  # #FACC15
}

SAMPLE_CONFIG = """\
# labelwatch configuration (KEY=value)

# Authentication: set GITHUB_TOKEN for github.com, or the two
# GITHUB_ENTERPRISE_* keys for GitHub Enterprise Server.
# Leave both empty to use `gh auth login` credentials.
GITHUB_TOKEN=
# GITHUB_ENTERPRISE_HOST=github.mycompany.com
# GITHUB_ENTERPRISE_TOKEN=

# Required: comma-separated repositories ([hostname/]owner/repo)
REPOS=

# Seconds between polls of each repository
POLL_INTERVAL=5

# Trigger label names
# LABEL_PLAN=status:needs-plan
# LABEL_READY=status:ready
# LABEL_REVIEW=status:review-requested
# LABEL_REQUIRES_CHANGES=status:requires-changes

# Comment posted when an issue enters a phase (empty = no comment)
# MESSAGE_PLAN=labelwatch: starting the plan
# MESSAGE_IMPLEMENT=labelwatch: starting implementation
# MESSAGE_REVIEW=labelwatch: starting review

# YAML file overriding label names and messages
# WORKFLOW_FILE=.labelwatch/workflow.yaml

# Finished issue states older than this are forgotten
STATE_RETENTION_HOURS=24
# Seconds between maintenance sweeps
CLEANUP_INTERVAL=300
# Log label added/removed/changed events
LABEL_CHANGE_TRACKING=false

LOG_FILE=.labelwatch/logs/labelwatch.log
LOG_LEVEL=INFO
GHES_LOGS_MASK=true

# OpenTelemetry
# OTEL_EXPORTER_OTLP_ENDPOINT=http://localhost:4318
# OTEL_SERVICE_NAME=labelwatch

# Slack DM on transition failure
# SLACK_BOT_TOKEN=
# SLACK_USER_ID=
"""


class SetupError(Exception):
    """Raised when the environment is missing something labelwatch needs."""

    pass


def get_banner() -> str:
    """Generate the labelwatch banner."""
    return f"\n  labelwatch v{__version__}\n"


def print_banner() -> None:
    print(get_banner())


def startup_print(msg: str, color: str) -> None:
    """Print a startup message with the specified color."""
    print(f"{STARTUP_COLORS.get(color, '')}{msg}{RESET}")


def get_labelwatch_dir() -> Path:
    """Get the .labelwatch directory path in the current working directory."""
    return Path.cwd() / LABELWATCH_DIR


def check_required_tools() -> None:
    """Check that the gh CLI is available.

    Raises:
        SetupError: If gh is missing, with installation instructions
    """
    try:
        subprocess.run(["gh", "--version"], capture_output=True, check=True)
    except FileNotFoundError as e:
        raise SetupError("gh CLI not found. Install from: https://cli.github.com/") from e
    except subprocess.CalledProcessError as e:
        raise SetupError(f"gh CLI error: {e.stderr.decode() if e.stderr else str(e)}") from e


def init_labelwatch() -> None:
    """Initialize a new .labelwatch directory with sample config."""
    print_banner()

    labelwatch_dir = get_labelwatch_dir()
    config_path = labelwatch_dir / CONFIG_FILE

    labelwatch_dir.mkdir(exist_ok=True)
    (labelwatch_dir / "logs").mkdir(exist_ok=True)

    if config_path.exists():
        print(f"{LABELWATCH_DIR}/{CONFIG_FILE} already exists, leaving it unchanged")
        return

    config_path.write_text(SAMPLE_CONFIG)

    print("Created:")
    print(f"  {LABELWATCH_DIR}/")
    print(f"  {LABELWATCH_DIR}/{CONFIG_FILE}")
    print(f"  {LABELWATCH_DIR}/logs/")
    print()
    print("Next steps:")
    print(f"  1. Edit {LABELWATCH_DIR}/{CONFIG_FILE} and set REPOS")
    print("  2. Run `labelwatch labels` to create the workflow labels")
    print("  3. Run `labelwatch`")


def run_daemon(daemon_mode: bool = False) -> None:
    """Load config and run the daemon.

    Args:
        daemon_mode: If True, log to file only (background mode).
                     If False, log to both stdout and file.
    """
    from src.config import load_config
    from src.daemon import Daemon
    from src.logger import extract_org_from_repo, get_logger, setup_logging
    from src.slack import init_slack
    from src.telemetry import get_git_version, init_telemetry

    print_banner()

    try:
        startup_print("Checking required tools...", "check")
        check_required_tools()
        startup_print("  ✓ gh CLI found", "check")
        print()

        startup_print("Loading configuration...", "config")
        config = load_config()
        for repo in config.repos:
            startup_print(f"  ✓ {repo}", "config")
        print()

        org_name = extract_org_from_repo(config.repos[0]) if config.repos else None

        # Always log to file; stdout/stderr only in non-daemon mode
        setup_logging(
            log_file=config.log_file,
            log_size=config.log_size,
            log_backups=config.log_backups,
            daemon_mode=daemon_mode,
            ghes_logs_mask=config.ghes_logs_mask,
            ghes_host=config.github_enterprise_host,
            org_name=org_name,
        )

        logger = get_logger(__name__)
        logger.info(f"=== labelwatch starting (v{__version__}) ===")
        logger.info(f"Logging to {config.log_file}")

        git_version = get_git_version()
        logger.info(f"Git version: {git_version}")

        if config.otel_endpoint:
            init_telemetry(
                config.otel_endpoint,
                config.otel_service_name,
                service_version=git_version,
            )
        init_slack(config.slack_bot_token, config.slack_user_id)

        daemon = Daemon(config, version=git_version)
        daemon.run()

    except SetupError as e:
        print(f"\n{e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except RuntimeError as e:
        print(f"\n{e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nShutting down...")
        sys.exit(0)


def cmd_run(args: argparse.Namespace) -> None:
    """Handle the 'run' subcommand (default daemon behavior)."""
    config_path = get_labelwatch_dir() / CONFIG_FILE

    if not config_path.exists():
        # First run: initialize
        init_labelwatch()
    else:
        run_daemon(daemon_mode=args.daemon)


def cmd_init(_args: argparse.Namespace) -> None:
    """Handle the 'init' subcommand."""
    init_labelwatch()


def cmd_labels(args: argparse.Namespace) -> None:
    """Handle the 'labels' subcommand: create missing workflow labels."""
    from src.config import load_config, normalize_repo
    from src.ticket_clients import GitHubAPIError, NetworkError, get_github_client

    try:
        config = load_config()
        default_host = config.github_enterprise_host or "github.com"
        repos = [normalize_repo(args.repo, default_host)] if args.repo else config.repos
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    client = get_github_client(tokens=config.tokens)
    definitions = config.labels.required_labels()

    failed = False
    for repo in repos:
        startup_print(f"{repo}:", "labels")
        try:
            created = client.ensure_labels(repo, definitions)
        except (GitHubAPIError, NetworkError, RuntimeError) as e:
            print(f"  ✗ {e}", file=sys.stderr)
            failed = True
            continue
        for name in definitions:
            marker = "created" if name in created else "exists"
            print(f"  ✓ {name} ({marker})")

    if failed:
        sys.exit(1)


def main() -> None:
    """Main entry point for the labelwatch CLI."""
    parser = argparse.ArgumentParser(
        prog="labelwatch",
        description="GitHub issue label workflow watcher",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"labelwatch {__version__}",
    )
    parser.add_argument(
        "--daemon",
        "-d",
        action="store_true",
        help="Run in daemon mode (log to file only, no stdout)",
    )

    subparsers = parser.add_subparsers(dest="command")

    # 'run' subcommand (also the default behavior)
    run_parser = subparsers.add_parser(
        "run",
        help="Start the labelwatch daemon (default if no subcommand given)",
    )
    run_parser.add_argument(
        "--daemon",
        "-d",
        action="store_true",
        help="Run in daemon mode (log to file only, no stdout)",
    )

    subparsers.add_parser(
        "init",
        help="Create .labelwatch/ with a sample config",
    )

    labels_parser = subparsers.add_parser(
        "labels",
        help="Create missing workflow labels in the watched repositories",
    )
    labels_parser.add_argument(
        "--repo",
        default=None,
        help="Only this repository ([hostname/]owner/repo)",
    )

    args = parser.parse_args()

    if args.command == "init":
        cmd_init(args)
    elif args.command == "labels":
        cmd_labels(args)
    else:
        # No subcommand given - default to 'run' behavior
        args.command = "run"
        cmd_run(args)


if __name__ == "__main__":
    main()
