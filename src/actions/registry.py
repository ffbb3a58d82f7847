"""Phase to action lookup."""

from typing import TYPE_CHECKING

from src.actions.base import Action
from src.actions.comment import CommentAction
from src.actions.noop import NoOpAction
from src.interfaces import IssuePhase, IssueTrackerClient

if TYPE_CHECKING:
    from src.config import Config


class ActionRegistry:
    """Maps each workflow phase to the action run when an issue enters it.

    Phases without a registered action resolve to the default action.
    """

    def __init__(self, default: Action | None = None) -> None:
        self._actions: dict[IssuePhase, Action] = {}
        self._default = default or NoOpAction()

    def register(self, phase: IssuePhase, action: Action) -> None:
        self._actions[phase] = action

    def get(self, phase: IssuePhase) -> Action:
        return self._actions.get(phase, self._default)

    def __contains__(self, phase: object) -> bool:
        return phase in self._actions


def build_default_registry(client: IssueTrackerClient, config: "Config") -> ActionRegistry:
    """Build the registry for a configured deployment.

    Each phase with a configured message gets a CommentAction; the others
    get a NoOpAction.

    Args:
        client: Tracker client comment actions post through
        config: Loaded configuration

    Returns:
        ActionRegistry with every phase registered
    """
    messages = {
        IssuePhase.PLAN: config.message_plan,
        IssuePhase.IMPLEMENTATION: config.message_implement,
        IssuePhase.REVIEW: config.message_review,
    }
    registry = ActionRegistry()
    for phase, message in messages.items():
        if message:
            registry.register(phase, CommentAction(client, message))
        else:
            registry.register(phase, NoOpAction())
    return registry
