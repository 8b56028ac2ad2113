import uuid
from datetime import datetime
from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Text, ForeignKey, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from siteqa.db.base import Base, TimestampMixin, SoftDeleteMixin, TenantScopedMixin, utcnow


class Ncr(Base, TimestampMixin, SoftDeleteMixin, TenantScopedMixin):
    """
    NCR – Non-Conformance Report.
    status flow: open -> investigating -> rectification -> verification -> closed
                 investigating -> open (revision requested)
    severity=major additionally requires qm_approval_granted before close.

    status, revision_requested and qm_approval_granted are written only by the
    workflow engine through a conditional UPDATE keyed on (status, version).
    """
    __tablename__ = "ncrs"
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    ncr_number: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    specification_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="minor")
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="open")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Workflow flags
    revision_requested: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    revision_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    qm_approval_granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Ownership
    raised_by_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    responsible_user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    raised_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Response
    root_cause_category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    root_cause_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    proposed_corrective_action: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # QM review
    qm_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    qm_reviewed_by_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    qm_review_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    revision_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Rectification
    rectification_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rectification_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    # Approval and closure
    qm_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    qm_approved_by_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    verification_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    lessons_learned: Mapped[str | None] = mapped_column(Text, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    # Client notification (major only)
    client_notification_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    client_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("project_id", "ncr_number", name="uq_ncr_project_number"),
        Index("ix_ncrs_tenant_project_status", "tenant_id", "project_id", "status"),
        CheckConstraint(
            "status IN ('open','investigating','rectification','verification','closed')",
            name="ck_ncrs_status",
        ),
        CheckConstraint("severity IN ('minor','major')", name="ck_ncrs_severity"),
    )


class NcrSequence(Base, TimestampMixin):
    """Per-project NCR counter. Numbers are never reused."""
    __tablename__ = "ncr_sequences"
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, unique=True)
    last_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class NcrLot(Base, TimestampMixin):
    __tablename__ = "ncr_lots"
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ncr_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("ncrs.id", ondelete="CASCADE"), nullable=False, index=True)
    lot_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("lots.id", ondelete="CASCADE"), nullable=False, index=True)
    __table_args__ = (UniqueConstraint("ncr_id", "lot_id", name="uq_ncr_lot"),)


class NcrEvidence(Base, TimestampMixin, TenantScopedMixin):
    """
    Evidence attached to an NCR.
    evidence_type: photo | certificate | retest_certificate | document
    """
    __tablename__ = "ncr_evidence"
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ncr_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("ncrs.id", ondelete="CASCADE"), nullable=False, index=True)
    file_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("files.id", ondelete="CASCADE"), nullable=False)
    evidence_type: Mapped[str] = mapped_column(String(50), nullable=False, default="photo")
