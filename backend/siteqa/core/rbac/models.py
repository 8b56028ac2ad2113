import uuid
from sqlalchemy import String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from siteqa.db.base import Base, TimestampMixin, SoftDeleteMixin, TenantScopedMixin


class Tenant(Base, TimestampMixin, SoftDeleteMixin):
    """A contracting company. Every project, user and NCR belongs to exactly one."""
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")


class User(Base, TimestampMixin, SoftDeleteMixin, TenantScopedMixin):
    """
    company_role: owner | admin | project_manager | quality_manager | site_manager
                  | foreman | site_engineer | subcontractor_admin | subcontractor
                  | viewer | member
    """
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="active")
    company_role: Mapped[str] = mapped_column(String(50), nullable=False, default="member")

    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email
