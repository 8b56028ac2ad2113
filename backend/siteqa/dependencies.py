import uuid
from dataclasses import dataclass
from typing import Annotated, AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.auth.security import decode_access_token
from siteqa.core.notifications.service import Notifier, TransactionNotifier
from siteqa.core.projects.service import get_project_role
from siteqa.core.rbac.capabilities import Actor, build_actor
from siteqa.core.rbac.models import User
from siteqa.core.rbac.service import get_user
from siteqa.db.session import AsyncSessionLocal
from siteqa.settings import get_settings

bearer = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    user: User
    user_id: uuid.UUID
    tenant_id: uuid.UUID


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        async with session.begin():
            yield session


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer)],
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    if not credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user_id = uuid.UUID(payload["sub"])
    tenant_id = uuid.UUID(payload["tenant_id"])

    user = await get_user(db, user_id)
    if not user or user.status != "active" or user.tenant_id != tenant_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found or inactive")

    return CurrentUser(user=user, user_id=user_id, tenant_id=tenant_id)


async def resolve_actor(db: AsyncSession, current: CurrentUser, project_id: uuid.UUID) -> Actor:
    """Resolve the caller's capabilities on a project. Non-members who are not company admins get 403."""
    project_role = await get_project_role(db, project_id, current.user_id)
    company_role = current.user.company_role
    if project_role is None and company_role not in get_settings().COMPANY_ADMIN_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return build_actor(current.user_id, project_role, company_role)


def get_notifier(request: Request, db: AsyncSession = Depends(get_db)) -> Notifier:
    """Per-request notifier bound to the request transaction. Events reach the queue only after commit."""
    return TransactionNotifier(request.app.state.notifier, db)
