"""Action that does nothing."""

from src.actions.base import ActionContext
from src.interfaces import Issue
from src.logger import get_logger

logger = get_logger(__name__)


class NoOpAction:
    """Placeholder action for phases without configured work.

    execute() never raises, whatever it is given.
    """

    def can_execute(self, issue: Issue | None) -> bool:
        return issue is not None and issue.number is not None

    def execute(self, ctx: ActionContext, issue: Issue | None) -> None:
        number = issue.number if issue is not None else None
        logger.debug(f"No action for {ctx.repo}#{number} in phase {ctx.phase.value}")
