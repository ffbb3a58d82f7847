"""Main daemon module for labelwatch.

This module provides the orchestrator that ties together all components:
- One IssueWatcher per configured repository, each with its own
  IssueStateStore and LabelTransitionMetrics
- Watchers run concurrently on a thread pool
- A periodic maintenance sweep drops stale issue states and logs a
  transition metrics summary per repository
"""

import signal
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta

from src.actions import build_default_registry
from src.config import Config, load_config
from src.decision import TransitionDecider, build_trigger_rules
from src.interfaces import IssueTrackerClient
from src.logger import extract_org_from_repo, get_logger, setup_logging
from src.slack import init_slack
from src.state_manager import IssueStateStore
from src.telemetry import get_git_version, init_telemetry
from src.ticket_clients import GitHubIssueClient, get_github_client
from src.transition_metrics import LabelTransitionMetrics, LabelTransitionMetricsSnapshot
from src.watcher import IssueWatcher

logger = get_logger(__name__)


@dataclass
class RepoRuntime:
    """Everything the daemon keeps for one watched repository."""

    repo: str
    state_store: IssueStateStore
    metrics: LabelTransitionMetrics
    decider: TransitionDecider
    watcher: IssueWatcher


class Daemon:
    """Main orchestrator daemon that watches repositories for label triggers."""

    # Number of top entries shown in the metrics summary
    SUMMARY_TOP_N = 3
    # A watcher idle for this many poll intervals is reported as unhealthy
    INACTIVITY_POLLS = 10

    def __init__(
        self,
        config: Config,
        version: str | None = None,
        client: IssueTrackerClient | None = None,
    ) -> None:
        """Initialize the daemon with configuration.

        Args:
            config: Application configuration
            version: Git version string captured at daemon startup
            client: Tracker client (built from config when omitted)
        """
        logger.debug(
            f"Config: repos={config.repos}, poll_interval={config.poll_interval}s, "
            f"cleanup_interval={config.cleanup_interval}s, "
            f"state_retention={config.state_retention}"
        )

        self.config = config
        self.version = version
        self._shutdown_event = threading.Event()  # For efficient interruptible sleeps
        self._futures: list[Future[None]] = []

        self.client = client or get_github_client(tokens=config.tokens)
        if isinstance(self.client, GitHubIssueClient):
            logger.info(f"Ticket client initialized: {self.client.client_description}")

        rules = build_trigger_rules(config.labels)
        self.runtimes: dict[str, RepoRuntime] = {}
        for repo in config.repos:
            state_store = IssueStateStore()
            metrics = LabelTransitionMetrics()
            decider = TransitionDecider(
                self.client,
                repo,
                state_store,
                metrics,
                actions=build_default_registry(self.client, config),
                rules=rules,
            )
            watcher = IssueWatcher(
                self.client,
                repo,
                config.labels.trigger_labels(),
                decider,
                poll_interval=config.poll_interval,
                label_change_tracking=config.label_change_tracking,
            )
            self.runtimes[repo] = RepoRuntime(repo, state_store, metrics, decider, watcher)

        # Thread pool with one worker per watched repository
        self.executor = ThreadPoolExecutor(
            max_workers=max(1, len(self.runtimes)), thread_name_prefix="watcher-"
        )
        logger.debug(f"ThreadPoolExecutor initialized with {len(self.runtimes)} workers")

    def _validate_github_connections(self) -> None:
        """Validate authentication once per distinct host.

        Raises:
            RuntimeError: If any GitHub connection validation fails
        """
        if not isinstance(self.client, GitHubIssueClient):
            return

        hostnames = sorted({repo.split("/", 1)[0] for repo in self.config.repos})
        for hostname in hostnames:
            logger.info(f"Validating connection to {hostname}...")
            self.client.validate_connection(hostname)
        logger.info(f"GitHub connection validation successful for {len(hostnames)} host(s)")

    def _ensure_required_labels(self, repo: str) -> None:
        """Create any missing workflow labels in a repository.

        Failures are logged; the watcher still starts.
        """
        if not isinstance(self.client, GitHubIssueClient):
            return
        logger.info(f"Ensuring required labels exist in {repo}...")
        try:
            created = self.client.ensure_labels(repo, self.config.labels.required_labels())
        except Exception as e:
            logger.warning(f"Could not ensure labels in {repo}: {e}")
            return
        for name in created:
            logger.info(f"Created label '{name}' in {repo}")

    def _signal_handler(self, signum: int, _frame: object) -> None:
        """Handle shutdown signals gracefully.

        Args:
            signum: Signal number
            frame: Current stack frame
        """
        signal_name = signal.Signals(signum).name
        logger.info(f"Received {signal_name}, initiating graceful shutdown...")
        self._shutdown_event.set()  # Wake up any waiting sleeps

    def start(self) -> None:
        """Submit one watcher per repository to the thread pool."""
        for runtime in self.runtimes.values():
            future = self.executor.submit(runtime.watcher.run, self._shutdown_event)
            future.add_done_callback(self._on_watcher_done)
            self._futures.append(future)
        logger.info(f"Starting {len(self._futures)} watcher(s)")

    def _on_watcher_done(self, future: "Future[None]") -> None:
        exc = future.exception()
        if exc is not None:
            logger.error(f"Watcher crashed: {exc}", exc_info=exc)

    def run(self) -> None:
        """Run watchers and the maintenance loop until shutdown.

        Maintenance runs every cleanup_interval seconds.
        """
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self._validate_github_connections()
        for repo in self.runtimes:
            self._ensure_required_labels(repo)

        self.start()
        try:
            while not self._shutdown_event.wait(timeout=self.config.cleanup_interval):
                self._maintenance()
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self.stop()

    def _maintenance(self) -> None:
        """Sweep stale issue states and log per-repository summaries."""
        max_inactivity = timedelta(seconds=self.config.poll_interval * self.INACTIVITY_POLLS)
        for repo, runtime in self.runtimes.items():
            try:
                removed = runtime.state_store.cleanup_old_states(self.config.state_retention)
                logger.debug(
                    f"Maintenance for {repo}: removed {removed} state(s), "
                    f"{len(runtime.state_store)} issue(s) tracked"
                )
                self._log_metrics_summary(repo, runtime.metrics.get_snapshot())

                health = runtime.watcher.check_health(max_inactivity)
                if not health.is_healthy:
                    logger.warning(f"Watcher for {repo} unhealthy: {health.message}")
            except Exception as e:
                logger.error(f"Maintenance failed for {repo}: {e}", exc_info=True)

    def _log_metrics_summary(self, repo: str, snapshot: LabelTransitionMetricsSnapshot) -> None:
        if snapshot.total_transitions == 0:
            logger.debug(f"No label transitions recorded yet for {repo}")
            return

        top_failures = ", ".join(
            f"{reason}={count}"
            for reason, count in snapshot.get_top_failure_reasons(self.SUMMARY_TOP_N)
        )
        top_transitions = ", ".join(
            f"{transition}={count}"
            for transition, count in snapshot.get_most_frequent_transitions(self.SUMMARY_TOP_N)
        )
        logger.info(
            f"Transition metrics for {repo}: "
            f"{snapshot.successful_transitions}/{snapshot.total_transitions} succeeded "
            f"({snapshot.get_success_rate_formatted()}); "
            f"top failures: {top_failures or 'none'}; "
            f"top transitions: {top_transitions or 'none'}"
        )

    def metrics_snapshots(self) -> dict[str, LabelTransitionMetricsSnapshot]:
        """Take a metrics snapshot of every repository."""
        return {repo: runtime.metrics.get_snapshot() for repo, runtime in self.runtimes.items()}

    def stop(self) -> None:
        """Stop the daemon gracefully."""
        logger.debug("Stopping daemon")
        self._shutdown_event.set()

        try:
            logger.debug("Shutting down thread pool executor...")
            self.executor.shutdown(wait=True, cancel_futures=False)
            logger.debug("Thread pool executor shut down")
        except Exception as e:
            logger.error(f"Error shutting down executor: {e}")

        for repo, snapshot in self.metrics_snapshots().items():
            self._log_metrics_summary(repo, snapshot)
        logger.info("Daemon stopped")


def main() -> None:
    """Main entry point for the daemon.

    Sets up logging, loads configuration, and runs the daemon.
    """
    try:
        # Load configuration first (needed for log settings)
        config = load_config()

        org_name = extract_org_from_repo(config.repos[0]) if config.repos else None

        setup_logging(
            log_file=config.log_file,
            log_size=config.log_size,
            log_backups=config.log_backups,
            ghes_logs_mask=config.ghes_logs_mask,
            ghes_host=config.github_enterprise_host,
            org_name=org_name,
        )
        logger.info("=== labelwatch daemon starting ===")
        logger.info(f"Logging to file: {config.log_file}")

        git_version = get_git_version()
        logger.info(f"Current labelwatch HEAD SHA: {git_version}")

        if config.otel_endpoint:
            init_telemetry(
                config.otel_endpoint,
                config.otel_service_name,
                service_version=git_version,
            )
        init_slack(config.slack_bot_token, config.slack_user_id)

        daemon = Daemon(config, version=git_version)
        daemon.run()

    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, exiting...")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

    logger.info("=== labelwatch daemon stopped ===")


if __name__ == "__main__":
    main()
