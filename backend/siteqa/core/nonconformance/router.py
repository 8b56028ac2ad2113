import uuid
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.nonconformance import service
from siteqa.core.nonconformance.errors import NotFound
from siteqa.core.nonconformance.models import Ncr
from siteqa.core.nonconformance.records import NcrOperation
from siteqa.core.nonconformance.schemas import (
    EvidenceCreate, EvidenceRead, NcrCreate, NcrRead, NcrRoleRead, NcrUpdate,
    NotifyClientRequest, NotifyClientResponse,
)
from siteqa.core.notifications.service import Notifier
from siteqa.core.projects.service import get_project
from siteqa.core.rbac.capabilities import Actor
from siteqa.dependencies import CurrentUser, get_current_user, get_db, get_notifier, resolve_actor

router = APIRouter(tags=["ncrs"])


async def _ncr_and_actor(db: AsyncSession, current: CurrentUser, ncr_id: uuid.UUID) -> tuple[Ncr, Actor]:
    ncr = await service.get_ncr(db, current.tenant_id, ncr_id)
    if not ncr:
        raise HTTPException(404, "NCR not found")
    return ncr, await resolve_actor(db, current, ncr.project_id)


@router.post("/projects/{project_id}/ncrs", response_model=NcrRead, status_code=201)
async def create_ncr(
    project_id: uuid.UUID,
    data: NcrCreate,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    project = await get_project(db, project_id)
    if not project or project.tenant_id != current.tenant_id:
        raise HTTPException(404, "Project not found")
    actor = await resolve_actor(db, current, project_id)
    return await service.create_ncr(db, current.tenant_id, project_id, actor, data, notifier)


@router.get("/projects/{project_id}/ncrs", response_model=list[NcrRead])
async def list_ncrs(
    project_id: uuid.UUID,
    status: str | None = None,
    severity: str | None = None,
    lot_id: uuid.UUID | None = None,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    await resolve_actor(db, current, project_id)
    return await service.list_ncrs(db, current.tenant_id, project_id, status, severity, lot_id)


@router.get("/projects/{project_id}/ncr-role", response_model=NcrRoleRead)
async def check_ncr_role(
    project_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    actor = await resolve_actor(db, current, project_id)
    return NcrRoleRead.from_actor(actor)


@router.get("/ncrs/{ncr_id}", response_model=NcrRead)
async def get_ncr(
    ncr_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    ncr, _ = await _ncr_and_actor(db, current, ncr_id)
    return ncr


@router.patch("/ncrs/{ncr_id}", response_model=NcrRead)
async def update_ncr(
    ncr_id: uuid.UUID,
    data: NcrUpdate,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    ncr, actor = await _ncr_and_actor(db, current, ncr_id)
    return await service.reassign_ncr(db, ncr, actor, data, notifier)


# ── Workflow ──────────────────────────────────────────────────────────────────
# Bodies are passed through untyped so the engine owns payload validation.

async def _transition(
    db: AsyncSession,
    current: CurrentUser,
    notifier: Notifier,
    ncr_id: uuid.UUID,
    operation: NcrOperation,
    payload: dict[str, Any] | None,
):
    ncr = await service.get_ncr(db, current.tenant_id, ncr_id)
    if not ncr:
        raise NotFound(ncr_id)
    actor = await resolve_actor(db, current, ncr.project_id)
    return await service.run_transition(db, current.tenant_id, ncr_id, operation, actor, payload, notifier)


@router.post("/ncrs/{ncr_id}/respond", response_model=NcrRead)
async def respond(
    ncr_id: uuid.UUID,
    payload: dict[str, Any] | None = Body(None),
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return await _transition(db, current, notifier, ncr_id, NcrOperation.RESPOND, payload)


@router.post("/ncrs/{ncr_id}/qm-review", response_model=NcrRead)
async def qm_review(
    ncr_id: uuid.UUID,
    payload: dict[str, Any] | None = Body(None),
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return await _transition(db, current, notifier, ncr_id, NcrOperation.QM_REVIEW, payload)


@router.post("/ncrs/{ncr_id}/rectify", response_model=NcrRead)
async def rectify(
    ncr_id: uuid.UUID,
    payload: dict[str, Any] | None = Body(None),
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return await _transition(db, current, notifier, ncr_id, NcrOperation.RECTIFY, payload)


@router.post("/ncrs/{ncr_id}/qm-approve", response_model=NcrRead)
async def qm_approve(
    ncr_id: uuid.UUID,
    payload: dict[str, Any] | None = Body(None),
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return await _transition(db, current, notifier, ncr_id, NcrOperation.QM_APPROVE, payload)


@router.post("/ncrs/{ncr_id}/close", response_model=NcrRead)
async def close(
    ncr_id: uuid.UUID,
    payload: dict[str, Any] | None = Body(None),
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return await _transition(db, current, notifier, ncr_id, NcrOperation.CLOSE, payload)


@router.post("/ncrs/{ncr_id}/notify-client", response_model=NotifyClientResponse)
async def notify_client(
    ncr_id: uuid.UUID,
    data: NotifyClientRequest,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    ncr, actor = await _ncr_and_actor(db, current, ncr_id)
    return await service.notify_client(db, ncr, actor, data)


# ── Evidence ──────────────────────────────────────────────────────────────────

@router.post("/ncrs/{ncr_id}/evidence", response_model=EvidenceRead, status_code=201)
async def add_evidence(
    ncr_id: uuid.UUID,
    data: EvidenceCreate,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    ncr, actor = await _ncr_and_actor(db, current, ncr_id)
    return await service.add_evidence(db, ncr, actor, data)


@router.get("/ncrs/{ncr_id}/evidence", response_model=list[EvidenceRead])
async def list_evidence(
    ncr_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    ncr, _ = await _ncr_and_actor(db, current, ncr_id)
    return await service.list_evidence(db, ncr)


@router.delete("/ncrs/{ncr_id}/evidence/{evidence_id}", status_code=204)
async def remove_evidence(
    ncr_id: uuid.UUID,
    evidence_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current: CurrentUser = Depends(get_current_user),
):
    ncr, actor = await _ncr_and_actor(db, current, ncr_id)
    await service.remove_evidence(db, ncr, actor, evidence_id)
    return Response(status_code=204)
