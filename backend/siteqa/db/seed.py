import asyncio
import os
import uuid

from sqlalchemy import select

from siteqa.core.auth.security import create_access_token
from siteqa.core.lots.models import Lot
from siteqa.core.projects.models import Project, ProjectMember
from siteqa.core.rbac.models import Tenant, User
from siteqa.db.session import get_session

DEMO_MEMBERS = [
    ("qm@siteqa.local", "Quality Manager", "quality_manager"),
    ("engineer@siteqa.local", "Site Engineer", "site_engineer"),
    ("viewer@siteqa.local", "Client Viewer", "viewer"),
]


async def _get_or_create_user(db, tenant: Tenant, email: str, full_name: str, company_role: str) -> User:
    existing = await db.execute(select(User).where(User.tenant_id == tenant.id, User.email == email.lower()))
    user = existing.scalar_one_or_none()
    if user:
        print(f"skip  user exists: {user.email}")
        return user
    user = User(id=uuid.uuid4(), tenant_id=tenant.id, email=email.lower(), full_name=full_name, company_role=company_role)
    db.add(user)
    await db.flush()
    print(f"ok    user: {user.email} ({company_role})")
    return user


async def seed() -> None:
    tenant_name = os.getenv("SEED_TENANT_NAME", "SiteQA Demo")
    tenant_slug = os.getenv("SEED_TENANT_SLUG", "siteqa-demo")
    admin_email = os.getenv("SEED_ADMIN_EMAIL", "admin@siteqa.local")
    project_number = os.getenv("SEED_PROJECT_NUMBER", "P-001")

    async with get_session() as db:
        existing = await db.execute(select(Tenant).where(Tenant.slug == tenant_slug))
        tenant = existing.scalar_one_or_none()
        if not tenant:
            tenant = Tenant(id=uuid.uuid4(), name=tenant_name, slug=tenant_slug, status="active")
            db.add(tenant)
            await db.flush()
            print(f"ok    tenant: {tenant.slug} ({tenant.id})")
        else:
            print(f"skip  tenant exists: {tenant.slug}")

        admin = await _get_or_create_user(db, tenant, admin_email, "SiteQA Admin", "owner")

        existing_project = await db.execute(
            select(Project).where(Project.tenant_id == tenant.id, Project.project_number == project_number)
        )
        project = existing_project.scalar_one_or_none()
        if not project:
            project = Project(id=uuid.uuid4(), tenant_id=tenant.id, project_number=project_number, name="Demo Road Upgrade")
            db.add(project)
            await db.flush()
            for lot_number in ("LOT-001", "LOT-002", "LOT-003"):
                db.add(Lot(tenant_id=tenant.id, project_id=project.id, lot_number=lot_number, status="in_progress"))
            print(f"ok    project: {project.project_number} with 3 lots")

        for email, full_name, role in DEMO_MEMBERS:
            user = await _get_or_create_user(db, tenant, email, full_name, "member")
            member = await db.execute(
                select(ProjectMember).where(ProjectMember.project_id == project.id, ProjectMember.user_id == user.id)
            )
            if not member.scalar_one_or_none():
                db.add(ProjectMember(tenant_id=tenant.id, project_id=project.id, user_id=user.id, role=role))
        await db.flush()

        print(f"admin token: {create_access_token(admin.id, tenant.id)}")

    print("Done.")


if __name__ == "__main__":
    asyncio.run(seed())
