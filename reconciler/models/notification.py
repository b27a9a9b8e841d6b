"""
Notification Models

Notifications are created exclusively by the engine. Users can only mark
them read; the retention sweep is the only thing that deletes them.

DESIGN DECISION: Every notification carries the dedup key it was created
under. The key is derived from (owner, type, referenced entity,
discriminator[, day]) and is unique in storage, so a detected state
transition produces at most one notification.
"""

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from reconciler.models.finance import utcnow


class NotificationType(str, Enum):
    """Kinds of notifications the engine emits."""
    # Recurring transactions
    REMINDER = "reminder"
    DUE_TODAY = "due_today"
    MISSED = "missed"

    # Budgets
    BUDGET_WARNING = "budget_warning"
    BUDGET_EXCEEDED = "budget_exceeded"
    BUDGET_ADJUSTMENT = "budget_adjustment"

    # Goals
    GOAL_MILESTONE = "goal_milestone"


class DedupKey(BaseModel):
    """
    Identity of a detected state transition.

    scope identifies the transition; value additionally carries the
    calendar-day bucket for date-based transitions and is what the
    storage uniqueness constraint applies to.
    """
    model_config = ConfigDict(frozen=True)

    owner_id: str
    type: NotificationType
    reference_id: Optional[UUID] = None
    discriminator: str = ""
    day: Optional[date] = None

    @property
    def scope(self) -> str:
        return "|".join([
            self.owner_id,
            self.type.value,
            str(self.reference_id) if self.reference_id else "-",
            self.discriminator or "-",
        ])

    @property
    def value(self) -> str:
        if self.day is None:
            return self.scope
        return f"{self.scope}|{self.day.isoformat()}"


class NotificationRefs(BaseModel):
    """Entities a notification points back to."""

    transaction_id: Optional[UUID] = None
    budget_id: Optional[UUID] = None
    goal_id: Optional[UUID] = None


class NotificationCandidate(BaseModel):
    """
    A notification proposed by an evaluator.

    Candidates are pure values; nothing is written until the
    deduplicator accepts them.
    """

    key: DedupKey
    message: str = Field(..., min_length=1, max_length=500)
    refs: NotificationRefs = Field(default_factory=NotificationRefs)
    window: Optional[timedelta] = Field(
        default=None,
        description="If set, any notification in the same scope within this window suppresses the candidate"
    )

    @property
    def owner_id(self) -> str:
        return self.key.owner_id

    @property
    def type(self) -> NotificationType:
        return self.key.type


class Notification(BaseModel):
    """A persisted notification."""

    id: UUID = Field(default_factory=uuid4)
    owner_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=500)
    type: NotificationType

    # Optional references to the triggering entity
    transaction_id: Optional[UUID] = None
    budget_id: Optional[UUID] = None
    goal_id: Optional[UUID] = None

    dedup_key: str = Field(..., min_length=1)
    dedup_scope: str = Field(..., min_length=1)

    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_candidate(
        cls,
        candidate: NotificationCandidate,
        created_at: datetime,
    ) -> 'Notification':
        return cls(
            owner_id=candidate.owner_id,
            message=candidate.message,
            type=candidate.type,
            transaction_id=candidate.refs.transaction_id,
            budget_id=candidate.refs.budget_id,
            goal_id=candidate.refs.goal_id,
            dedup_key=candidate.key.value,
            dedup_scope=candidate.key.scope,
            created_at=created_at,
        )
