"""Action that announces a phase change with an issue comment."""

from src.actions.base import ActionContext, ActionError
from src.interfaces import Issue, IssueTrackerClient
from src.logger import get_logger
from src.ticket_clients.errors import GitHubAPIError, NetworkError

logger = get_logger(__name__)


class CommentAction:
    """Post a fixed message on an issue when it enters a phase.

    Attributes:
        client: Tracker client used to post the comment
        message: Comment body
    """

    def __init__(self, client: IssueTrackerClient, message: str) -> None:
        self.client = client
        self.message = message

    def can_execute(self, issue: Issue | None) -> bool:
        return issue is not None and issue.number is not None and bool(self.message)

    def execute(self, ctx: ActionContext, issue: Issue | None) -> None:
        """Post the message on the issue.

        Raises:
            ActionError: If the issue has no number or the comment failed
        """
        if issue is None or issue.number is None:
            raise ActionError(f"Cannot comment on an issue without a number in {ctx.repo}")

        try:
            self.client.add_comment(ctx.repo, issue.number, self.message)
        except (GitHubAPIError, NetworkError) as e:
            raise ActionError(
                f"Failed to post {ctx.phase.value} comment on {ctx.repo}#{issue.number}: {e}"
            ) from e
        logger.info(f"Posted {ctx.phase.value} comment on {ctx.repo}#{issue.number}")
