import uuid
from datetime import datetime, timezone
from typing import Literal
from pydantic import BaseModel, Field, computed_field

from siteqa.core.nonconformance.severity import Severity
from siteqa.core.rbac.capabilities import Actor, Capability


# ── Workflow payloads ─────────────────────────────────────────────────────────
# Parsed by the guard after the state precondition, so a wrong-state call never
# reports a payload error. Emptiness of required text is checked by the guard too.

class RespondRequest(BaseModel):
    root_cause_category: str | None = Field(None, max_length=100)
    root_cause_description: str | None = None
    proposed_corrective_action: str | None = None


class QmReviewRequest(BaseModel):
    action: Literal["accept", "request_revision"]
    comments: str | None = None


class RectifyRequest(BaseModel):
    rectification_notes: str | None = None


class QmApproveRequest(BaseModel):
    pass


class CloseRequest(BaseModel):
    verification_notes: str | None = None
    lessons_learned: str | None = None


# ── CRUD ──────────────────────────────────────────────────────────────────────

class NcrCreate(BaseModel):
    description: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1, max_length=100)
    severity: Severity = Severity.MINOR
    specification_reference: str | None = Field(None, max_length=255)
    responsible_user_id: uuid.UUID | None = None
    due_date: datetime | None = None
    lot_ids: list[uuid.UUID] = []


class NcrUpdate(BaseModel):
    responsible_user_id: uuid.UUID | None = None


class NcrRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    project_id: uuid.UUID
    ncr_number: str
    description: str | None
    specification_reference: str | None
    category: str
    severity: str
    status: str
    revision_requested: bool
    revision_count: int
    qm_approval_granted: bool
    root_cause_category: str | None
    root_cause_description: str | None
    proposed_corrective_action: str | None
    qm_review_comments: str | None
    rectification_notes: str | None
    verification_notes: str | None
    lessons_learned: str | None
    raised_by_id: uuid.UUID | None
    responsible_user_id: uuid.UUID | None
    raised_at: datetime | None
    due_date: datetime | None
    closed_at: datetime | None
    client_notification_required: bool
    client_notified_at: datetime | None
    version: int

    @computed_field
    @property
    def is_overdue(self) -> bool:
        if self.due_date is None or self.status == "closed":
            return False
        due = self.due_date if self.due_date.tzinfo else self.due_date.replace(tzinfo=timezone.utc)
        return due < datetime.now(timezone.utc)


class EvidenceCreate(BaseModel):
    file_id: uuid.UUID | None = None
    evidence_type: str = Field("photo", max_length=50)
    filename: str | None = Field(None, max_length=500)
    file_url: str | None = Field(None, max_length=1000)
    mime_type: str | None = Field(None, max_length=100)
    size_bytes: int | None = None
    caption: str | None = None


class EvidenceRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    ncr_id: uuid.UUID
    file_id: uuid.UUID
    evidence_type: str
    filename: str | None = None
    file_url: str | None = None
    mime_type: str | None = None
    caption: str | None = None
    created_at: datetime


class NotifyClientRequest(BaseModel):
    recipient_email: str | None = None
    additional_message: str | None = None


class ClientNotificationPackage(BaseModel):
    ncr_number: str
    project: str
    severity: str
    category: str
    affected_lots: str
    description: str | None
    specification_reference: str
    raised_by: str
    raised_at: datetime | None
    notified_by: str
    notified_at: datetime
    additional_message: str | None


class NotifyClientResponse(BaseModel):
    ncr: NcrRead
    notification_package: ClientNotificationPackage
    message: str


class NcrRoleRead(BaseModel):
    """What the caller may do with NCRs on a project, for the UI to show or hide actions."""
    project_role: str | None
    company_role: str | None
    capabilities: list[str]
    is_quality_manager: bool
    can_approve_ncrs: bool

    @classmethod
    def from_actor(cls, actor: Actor) -> "NcrRoleRead":
        reviews = actor.can(Capability.REVIEW_QUALITY)
        return cls(
            project_role=actor.project_role,
            company_role=actor.company_role,
            capabilities=sorted(c.value for c in actor.capabilities),
            is_quality_manager=reviews,
            can_approve_ncrs=reviews,
        )
