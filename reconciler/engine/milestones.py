"""Goal milestone detection."""

from decimal import Decimal

from reconciler.models.finance import Goal
from reconciler.models.notification import (
    DedupKey,
    NotificationCandidate,
    NotificationRefs,
    NotificationType,
)


MILESTONES = (Decimal("50"), Decimal("75"), Decimal("100"))
EXCEEDED_DISCRIMINATOR = "exceeded"


def crossed_milestones(previous: Decimal, new: Decimal) -> list[Decimal]:
    """Milestones m with previous < m <= new."""
    return [m for m in MILESTONES if previous < m <= new]


def exceeded_target(previous: Decimal, new: Decimal) -> bool:
    return previous < 100 < new


class MilestoneEvaluator:
    """Proposes goal_milestone notifications for a progress change."""

    def candidates(
        self,
        goal: Goal,
        previous_percentage: Decimal,
        new_percentage: Decimal,
    ) -> list[NotificationCandidate]:
        refs = NotificationRefs(goal_id=goal.id)
        results = []

        for milestone in crossed_milestones(previous_percentage, new_percentage):
            results.append(NotificationCandidate(
                key=DedupKey(
                    owner_id=goal.owner_id,
                    type=NotificationType.GOAL_MILESTONE,
                    reference_id=goal.id,
                    discriminator=str(int(milestone)),
                ),
                message=f"Your goal '{goal.name}' has reached {int(milestone)}% of its target.",
                refs=refs,
            ))

        # Reported in addition to the 100% milestone
        if exceeded_target(previous_percentage, new_percentage):
            results.append(NotificationCandidate(
                key=DedupKey(
                    owner_id=goal.owner_id,
                    type=NotificationType.GOAL_MILESTONE,
                    reference_id=goal.id,
                    discriminator=EXCEEDED_DISCRIMINATOR,
                ),
                message=f"Your goal '{goal.name}' has exceeded 100% of its target.",
                refs=refs,
            ))

        return results
