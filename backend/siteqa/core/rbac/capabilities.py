"""
Capability resolution for project-scoped actions.

Role strings are resolved into a fixed set of capabilities once, at the request
boundary. Workflow code only ever checks capabilities, never role names.
"""
import enum
import uuid
from dataclasses import dataclass, field

from siteqa.settings import get_settings


class Capability(str, enum.Enum):
    PARTICIPATE = "participate"
    REVIEW_QUALITY = "review_quality"


@dataclass(frozen=True)
class Actor:
    user_id: uuid.UUID
    project_role: str | None
    company_role: str | None
    capabilities: frozenset[Capability] = field(default_factory=frozenset)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities


def resolve_capabilities(project_role: str | None, company_role: str | None) -> frozenset[Capability]:
    settings = get_settings()
    caps: set[Capability] = set()

    company_admin = company_role in settings.COMPANY_ADMIN_ROLES
    if project_role is None and not company_admin:
        return frozenset()

    if company_admin or project_role not in settings.READ_ONLY_ROLES:
        caps.add(Capability.PARTICIPATE)
    if company_admin or project_role in settings.QUALITY_REVIEW_ROLES:
        caps.add(Capability.REVIEW_QUALITY)
    return frozenset(caps)


def build_actor(user_id: uuid.UUID, project_role: str | None, company_role: str | None) -> Actor:
    return Actor(
        user_id=user_id,
        project_role=project_role,
        company_role=company_role,
        capabilities=resolve_capabilities(project_role, company_role),
    )
