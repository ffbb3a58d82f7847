"""Label definitions for labelwatch workflows.

This module centralizes the status labels the watcher reads and writes.

Labels serve as the source of truth for workflow position on the tracker:
- Trigger labels are added by humans to request the next phase
- In-progress labels are set by the watcher when it picks a trigger up
"""

from dataclasses import dataclass
from typing import TypedDict


class LabelConfig(TypedDict):
    """Configuration for a GitHub label."""

    description: str
    color: str


# Label name constants for type-safe references throughout the codebase
class Labels:
    """Default status label names."""

    # Trigger labels (added by humans)
    NEEDS_PLAN = "status:needs-plan"
    READY = "status:ready"
    REVIEW_REQUESTED = "status:review-requested"
    REQUIRES_CHANGES = "status:requires-changes"

    # In-progress labels (set by the watcher)
    PLANNING = "status:planning"
    IMPLEMENTING = "status:implementing"
    REVIEWING = "status:reviewing"

    PREFIX = "status:"


@dataclass(frozen=True)
class WorkflowLabels:
    """Label names used by one deployment, overridable from config.

    Attributes:
        needs_plan: Trigger for the plan phase
        ready: Trigger for the implementation phase
        review_requested: Trigger for the review phase
        requires_changes: Trigger sending a reviewed issue back to ready
        planning: In-progress label for the plan phase
        implementing: In-progress label for the implementation phase
        reviewing: In-progress label for the review phase
    """

    needs_plan: str = Labels.NEEDS_PLAN
    ready: str = Labels.READY
    review_requested: str = Labels.REVIEW_REQUESTED
    requires_changes: str = Labels.REQUIRES_CHANGES
    planning: str = Labels.PLANNING
    implementing: str = Labels.IMPLEMENTING
    reviewing: str = Labels.REVIEWING

    def trigger_labels(self) -> list[str]:
        """Trigger labels in priority order."""
        return [self.needs_plan, self.ready, self.review_requested, self.requires_changes]

    def required_labels(self) -> dict[str, LabelConfig]:
        """Label definitions to create in watched repositories."""
        return {
            self.needs_plan: {
                "description": "Planning phase required",
                "color": "0075ca",  # Blue
            },
            self.ready: {
                "description": "Ready for implementation",
                "color": "0E8A16",  # Green
            },
            self.review_requested: {
                "description": "Code review requested",
                "color": "fbca04",  # Yellow
            },
            self.requires_changes: {
                "description": "Review requested changes",
                "color": "d93f0b",  # Orange-red
            },
            self.planning: {
                "description": "Currently in planning phase",
                "color": "c5def5",  # Light blue
            },
            self.implementing: {
                "description": "Currently being implemented",
                "color": "bfd4f2",  # Light blue
            },
            self.reviewing: {
                "description": "Currently under review",
                "color": "fef2c0",  # Light yellow
            },
        }


DEFAULT_LABELS = WorkflowLabels()

# Required labels with descriptions and colors for automatic creation
# These labels are created in repositories when the daemon initializes
REQUIRED_LABELS: dict[str, LabelConfig] = DEFAULT_LABELS.required_labels()


def is_status_label(label: str) -> bool:
    return label.startswith(Labels.PREFIX)
