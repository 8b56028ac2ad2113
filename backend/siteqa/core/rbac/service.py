import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.rbac.models import User


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id, User.is_deleted == False))
    return result.scalar_one_or_none()
