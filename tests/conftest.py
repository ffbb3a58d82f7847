"""Pytest configuration and shared fixtures."""

import os
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from hypothesis import settings

from src import slack, telemetry
from src.interfaces import Issue, IssueTrackerClient, TransitionInfo

# Configure Hypothesis profiles for different environments
settings.register_profile("ci", max_examples=100, deadline=None)
settings.register_profile("dev", max_examples=50, deadline=None)
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "dev"))


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "skip_auto_mock_validation: skip the autouse mock_validate_connection fixture",
    )
    config.addinivalue_line(
        "markers",
        "hypothesis: marks property-based tests using Hypothesis",
    )


@pytest.fixture(autouse=True)
def mock_validate_connection(request):
    """Automatically mock GitHubIssueClient.validate_connection for all tests.

    This prevents tests from making real GitHub API calls during Daemon startup.
    Tests that specifically need to test validation behavior can use the
    'skip_auto_mock_validation' marker to disable this fixture.
    """
    if "skip_auto_mock_validation" in [marker.name for marker in request.node.iter_markers()]:
        yield
    else:
        with patch(
            "src.ticket_clients.github.GitHubIssueClient.validate_connection",
            return_value=True,
        ):
            yield


@pytest.fixture(autouse=True)
def reset_integrations():
    """Reset module-level Slack and telemetry state around each test."""
    slack.reset_slack()
    telemetry.reset_telemetry()
    yield
    slack.reset_slack()
    telemetry.reset_telemetry()


class FakeClock:
    """Manually advanced clock for time-dependent tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    """Fixture providing a FakeClock."""
    return FakeClock()


@pytest.fixture
def mock_client():
    """Fixture providing a tracker client mock whose transitions succeed."""
    client = MagicMock(spec=IssueTrackerClient)
    client.transition_label.side_effect = lambda repo, n, from_label, to_label: TransitionInfo(
        from_label=from_label, to_label=to_label
    )
    client.list_issues_by_labels.return_value = []
    return client


@pytest.fixture
def make_issue():
    """Fixture providing an Issue factory."""

    def _make(number: int | None = 1, *labels: str, title: str = "Test issue") -> Issue:
        return Issue(number=number, title=title, labels=set(labels))

    return _make


@pytest.fixture
def mock_gh_subprocess():
    """Fixture for mocking subprocess calls to gh CLI."""
    with patch("src.ticket_clients.github.subprocess.run") as mock_run:
        yield mock_run
