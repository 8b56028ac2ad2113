import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from siteqa.core.projects.models import Project, ProjectMember


async def get_project(db: AsyncSession, project_id: uuid.UUID) -> Project | None:
    result = await db.execute(
        select(Project).where(Project.id == project_id, Project.is_deleted == False)
    )
    return result.scalar_one_or_none()


async def get_project_role(db: AsyncSession, project_id: uuid.UUID, user_id: uuid.UUID) -> str | None:
    result = await db.execute(
        select(ProjectMember.role).where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
            ProjectMember.status == "active",
        )
    )
    return result.scalar_one_or_none()
