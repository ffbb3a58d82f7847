"""Actions run when an issue enters a workflow phase.

Available actions:
- NoOpAction: Does nothing; the default for every phase
- CommentAction: Posts the configured phase message on the issue
"""

from src.actions.base import Action, ActionContext, ActionError
from src.actions.comment import CommentAction
from src.actions.noop import NoOpAction
from src.actions.registry import ActionRegistry, build_default_registry

__all__ = [
    "Action",
    "ActionContext",
    "ActionError",
    "ActionRegistry",
    "CommentAction",
    "NoOpAction",
    "build_default_registry",
]
