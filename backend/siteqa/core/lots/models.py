import uuid
from sqlalchemy import String, Text, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from siteqa.db.base import Base, TimestampMixin, SoftDeleteMixin, TenantScopedMixin


class Lot(Base, TimestampMixin, SoftDeleteMixin, TenantScopedMixin):
    """
    A unit of physical work inspected as a whole.
    status: not_started | in_progress | ncr_raised | completed | conformed
    """
    __tablename__ = "lots"
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    lot_number: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="not_started")
    __table_args__ = (UniqueConstraint("project_id", "lot_number", name="uq_lot_project_number"),)
