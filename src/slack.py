"""Slack integration for labelwatch transition failure notifications.

This module provides functions to send Slack DM notifications when a label
transition fails, so an operator can look at the issue before the next poll
retries it.
"""

import requests

from src.logger import get_logger

logger = get_logger(__name__)

# Module-level state (singleton pattern matching telemetry.py)
_initialized = False
_bot_token: str | None = None
_user_id: str | None = None

# Slack API endpoint for posting messages
SLACK_API_URL = "https://slack.com/api/chat.postMessage"


def init_slack(bot_token: str | None, user_id: str | None) -> None:
    """Initialize Slack integration with the given credentials.

    This function is idempotent - calling it multiple times is safe.
    If bot_token or user_id is None or empty string, Slack integration is disabled.

    Args:
        bot_token: Slack Bot OAuth token (starts with xoxb-).
                   If None or empty, Slack notifications are disabled.
        user_id: Slack user ID to send DMs to (starts with U).
                 If None or empty, Slack notifications are disabled.
    """
    global _initialized, _bot_token, _user_id

    if _initialized:
        return

    if not bot_token or not user_id:
        logger.debug("Slack not configured (missing bot token or user ID)")
        return

    _bot_token = bot_token
    _user_id = user_id
    _initialized = True
    logger.info("Slack initialized for transition failure notifications")


def format_transition_failure(
    repo: str, issue_number: int, transition: str, reason: str, issue_url: str | None = None
) -> str:
    """Build the DM text for a failed transition, with the issue link on its own line."""
    lines = [f"Label transition failed for {repo}#{issue_number}: {transition} ({reason})"]
    if issue_url:
        lines.append(issue_url)
    return "\n".join(lines)


def _post_message(text: str) -> bool:
    """Post a DM to the configured user. Returns False on any delivery error."""
    try:
        response = requests.post(
            SLACK_API_URL,
            json={"channel": _user_id, "text": text},
            headers={
                "Authorization": f"Bearer {_bot_token}",
                "Content-Type": "application/json",
            },
            timeout=10,
        )
        response.raise_for_status()
        body = response.json()
    except requests.RequestException as e:
        logger.warning(f"Failed to send Slack notification: {e}")
        return False

    # chat.postMessage answers 200 with ok=false for API-level errors
    if not body.get("ok"):
        logger.warning(f"Slack API error: {body.get('error', 'unknown error')}")
        return False
    return True


def send_transition_failure_notification(
    repo: str,
    issue_number: int,
    transition: str,
    reason: str,
    issue_url: str | None = None,
) -> bool:
    """Send a Slack DM notification when a label transition fails.

    Args:
        repo: Repository in 'hostname/owner/repo' format
        issue_number: Issue number
        transition: Transition descriptor, '<from>-><to>'
        reason: Failure reason tag
        issue_url: Full URL to the GitHub issue, if known

    Returns:
        True if notification was sent successfully, False otherwise.
        Returns False without error if Slack is not initialized.
    """
    if not _initialized or not _bot_token or not _user_id:
        return False

    sent = _post_message(
        format_transition_failure(repo, issue_number, transition, reason, issue_url)
    )
    if sent:
        logger.info(f"Slack notification sent for {repo}#{issue_number} ({reason})")
    return sent


def reset_slack() -> None:
    """Reset Slack module state (for testing only).

    This function is intended for use in tests to reset the module
    state between test cases.
    """
    global _initialized, _bot_token, _user_id
    _initialized = False
    _bot_token = None
    _user_id = None
