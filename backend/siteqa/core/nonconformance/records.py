import dataclasses
import enum
import uuid
from datetime import datetime
from typing import Any


class NcrStatus(str, enum.Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RECTIFICATION = "rectification"
    VERIFICATION = "verification"
    CLOSED = "closed"


class NcrOperation(str, enum.Enum):
    RESPOND = "respond"
    QM_REVIEW = "qm_review"
    RECTIFY = "rectify"
    QM_APPROVE = "qm_approve"
    CLOSE = "close"


VALID_TRANSITIONS = {
    "open": ["investigating"],
    "investigating": ["rectification", "open"],
    "rectification": ["verification"],
    "verification": ["closed"],
    "closed": [],
}

REQUIRED_STATUS = {
    NcrOperation.RESPOND: NcrStatus.OPEN,
    NcrOperation.QM_REVIEW: NcrStatus.INVESTIGATING,
    NcrOperation.RECTIFY: NcrStatus.RECTIFICATION,
    NcrOperation.QM_APPROVE: NcrStatus.VERIFICATION,
    NcrOperation.CLOSE: NcrStatus.VERIFICATION,
}


@dataclasses.dataclass(frozen=True)
class NcrRecord:
    """Immutable snapshot of an NCR as the workflow sees it."""
    id: uuid.UUID
    project_id: uuid.UUID
    ncr_number: str
    severity: str
    category: str
    raised_by_id: uuid.UUID | None
    status: str = NcrStatus.OPEN.value
    version: int = 1
    tenant_id: uuid.UUID | None = None
    description: str | None = None
    specification_reference: str | None = None
    responsible_user_id: uuid.UUID | None = None
    raised_at: datetime | None = None
    due_date: datetime | None = None
    # workflow flags
    revision_requested: bool = False
    qm_approval_granted: bool = False
    revision_count: int = 0
    # response
    root_cause_category: str | None = None
    root_cause_description: str | None = None
    proposed_corrective_action: str | None = None
    response_submitted_at: datetime | None = None
    # review
    qm_reviewed_at: datetime | None = None
    qm_reviewed_by_id: uuid.UUID | None = None
    qm_review_comments: str | None = None
    revision_requested_at: datetime | None = None
    # rectification
    rectification_notes: str | None = None
    rectification_submitted_at: datetime | None = None
    # approval / closure
    qm_approved_at: datetime | None = None
    qm_approved_by_id: uuid.UUID | None = None
    verification_notes: str | None = None
    lessons_learned: str | None = None
    verified_at: datetime | None = None
    verified_by_id: uuid.UUID | None = None
    closed_at: datetime | None = None
    closed_by_id: uuid.UUID | None = None
    # client notification
    client_notification_required: bool = False
    client_notified_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "NcrRecord":
        return cls(**{f.name: getattr(row, f.name) for f in dataclasses.fields(cls)})

    def with_changes(self, changes: dict[str, Any]) -> "NcrRecord":
        return dataclasses.replace(self, **changes)


@dataclasses.dataclass(frozen=True)
class MutationIntent:
    """
    What the guard allows: field deltas plus the resulting status.

    noop=True means the operation is already satisfied (idempotent repeat) and
    nothing should be written, audited or announced.
    """
    operation: NcrOperation
    from_status: str
    new_status: str
    changes: dict[str, Any]
    event_kind: str
    noop: bool = False

    @property
    def changes_status(self) -> bool:
        return self.from_status != self.new_status
