import uuid
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from siteqa.core.files.models import File
from siteqa.core.files.schemas import FileCreate


async def create_file(db: AsyncSession, tenant_id: uuid.UUID, data: FileCreate, uploaded_by: uuid.UUID | None = None) -> File:
    f = File(tenant_id=tenant_id, uploaded_by=uploaded_by, **data.model_dump())
    db.add(f)
    await db.flush()
    await db.refresh(f)
    return f


async def get_file(db: AsyncSession, file_id: uuid.UUID) -> File | None:
    result = await db.execute(select(File).where(File.id == file_id, File.is_deleted == False))
    return result.scalar_one_or_none()
