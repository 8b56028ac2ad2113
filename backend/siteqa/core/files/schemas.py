import uuid
from datetime import datetime
from pydantic import BaseModel


class FileRead(BaseModel):
    model_config = {"from_attributes": True}
    id: uuid.UUID
    project_id: uuid.UUID
    category: str
    filename: str
    file_url: str
    mime_type: str | None
    size_bytes: int | None
    caption: str | None
    created_at: datetime


class FileCreate(BaseModel):
    project_id: uuid.UUID
    category: str = "general"
    filename: str
    file_url: str
    mime_type: str | None = None
    size_bytes: int | None = None
    caption: str | None = None
