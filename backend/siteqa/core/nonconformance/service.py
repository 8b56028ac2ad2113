import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import HTTPException
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.audit.service import AuditTrail, audit
from siteqa.core.files.models import File
from siteqa.core.files.schemas import FileCreate
from siteqa.core.files.service import create_file, get_file
from siteqa.core.lots.models import Lot
from siteqa.core.lots.service import get_project_lots, mark_ncr_raised, release_lots_after_close
from siteqa.core.nonconformance.engine import WorkflowEngine
from siteqa.core.nonconformance.models import Ncr, NcrEvidence, NcrLot, NcrSequence
from siteqa.core.nonconformance.records import NcrOperation, NcrRecord
from siteqa.core.nonconformance.schemas import (
    ClientNotificationPackage, EvidenceCreate, NcrCreate, NcrRead, NcrUpdate,
    NotifyClientRequest, NotifyClientResponse,
)
from siteqa.core.nonconformance.severity import requires_qm_approval
from siteqa.core.nonconformance.store import SqlNcrStore
from siteqa.core.notifications.service import NotificationEvent, Notifier
from siteqa.core.projects.models import Project
from siteqa.core.rbac.capabilities import Actor, Capability
from siteqa.core.rbac.models import User
from siteqa.logging_config import get_logger
from siteqa.settings import get_settings

logger = get_logger(__name__)


def format_ncr_number(seq: int, prefix: str | None = None) -> str:
    return f"{prefix or get_settings().NCR_NUMBER_PREFIX}-{seq:04d}"


async def next_ncr_number(db: AsyncSession, project_id: uuid.UUID) -> str:
    """Allocate the next number for a project. The sequence row is locked until commit."""
    await db.execute(
        pg_insert(NcrSequence)
        .values(id=uuid.uuid4(), project_id=project_id, last_seq=0)
        .on_conflict_do_nothing(index_elements=["project_id"])
    )
    result = await db.execute(
        select(NcrSequence).where(NcrSequence.project_id == project_id).with_for_update()
    )
    seq = result.scalar_one()
    seq.last_seq += 1
    await db.flush()
    return format_ncr_number(seq.last_seq)


def _require(actor: Actor, capability: Capability, message: str) -> None:
    if not actor.can(capability):
        raise HTTPException(403, message)


def _summary(text: str | None, limit: int = 100) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit] + "..."


# ── CRUD ──────────────────────────────────────────────────────────────────────

async def create_ncr(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    project_id: uuid.UUID,
    actor: Actor,
    data: NcrCreate,
    notifier: Notifier,
) -> Ncr:
    _require(actor, Capability.PARTICIPATE, "You do not have permission to raise NCRs on this project")

    lot_ids = list(dict.fromkeys(data.lot_ids))
    lots = await get_project_lots(db, project_id, lot_ids)
    if len(lots) != len(lot_ids):
        raise HTTPException(400, "One or more lots not found in this project")

    ncr_number = await next_ncr_number(db, project_id)
    ncr = Ncr(
        tenant_id=tenant_id,
        project_id=project_id,
        ncr_number=ncr_number,
        description=data.description,
        specification_reference=data.specification_reference,
        category=data.category,
        severity=data.severity.value,
        status="open",
        version=1,
        raised_by_id=actor.user_id,
        responsible_user_id=data.responsible_user_id,
        raised_at=datetime.now(timezone.utc),
        due_date=data.due_date,
        client_notification_required=requires_qm_approval(data.severity),
    )
    db.add(ncr)
    await db.flush()

    for lot_id in lot_ids:
        db.add(NcrLot(ncr_id=ncr.id, lot_id=lot_id))
    await mark_ncr_raised(db, lot_ids)
    await db.flush()

    await audit(
        db,
        tenant_id=tenant_id,
        user_id=actor.user_id,
        action="ncr.created",
        resource_type="ncr",
        resource_id=str(ncr.id),
        detail={"ncr_number": ncr_number, "severity": ncr.severity, "lot_ids": [str(i) for i in lot_ids]},
    )
    logger.info("Raised {} ({}) on project {}", ncr_number, ncr.severity, project_id)

    if data.responsible_user_id and data.responsible_user_id != actor.user_id:
        notifier.notify(NotificationEvent(
            recipient_id=data.responsible_user_id,
            kind="ncr_assigned",
            ncr_id=ncr.id,
            project_id=project_id,
            metadata={"ncr_number": ncr_number, "summary": _summary(data.description)},
        ))

    await db.refresh(ncr)
    return ncr


async def get_ncr(db: AsyncSession, tenant_id: uuid.UUID, ncr_id: uuid.UUID) -> Ncr | None:
    result = await db.execute(
        select(Ncr).where(Ncr.id == ncr_id, Ncr.tenant_id == tenant_id, Ncr.is_deleted == False)
    )
    return result.scalar_one_or_none()


async def list_ncrs(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    project_id: uuid.UUID,
    status: str | None = None,
    severity: str | None = None,
    lot_id: uuid.UUID | None = None,
) -> list[Ncr]:
    query = select(Ncr).where(
        Ncr.tenant_id == tenant_id,
        Ncr.project_id == project_id,
        Ncr.is_deleted == False,
    )
    if status:
        query = query.where(Ncr.status == status)
    if severity:
        query = query.where(Ncr.severity == severity)
    if lot_id:
        query = query.where(Ncr.id.in_(select(NcrLot.ncr_id).where(NcrLot.lot_id == lot_id)))
    result = await db.execute(query.order_by(Ncr.created_at.desc()))
    return list(result.scalars().all())


async def reassign_ncr(
    db: AsyncSession,
    ncr: Ncr,
    actor: Actor,
    data: NcrUpdate,
    notifier: Notifier,
) -> Ncr:
    _require(actor, Capability.PARTICIPATE, "You do not have permission to reassign this NCR")
    if ncr.status == "closed":
        raise HTTPException(400, "Cannot reassign a closed NCR")

    old_owner = ncr.responsible_user_id
    if data.responsible_user_id == old_owner:
        return ncr

    ncr.responsible_user_id = data.responsible_user_id
    await db.flush()

    await audit(
        db,
        tenant_id=ncr.tenant_id,
        user_id=actor.user_id,
        action="ncr.owner_changed",
        resource_type="ncr",
        resource_id=str(ncr.id),
        detail={"old_owner": str(old_owner), "new_owner": str(data.responsible_user_id)},
    )

    if data.responsible_user_id and data.responsible_user_id != actor.user_id:
        notifier.notify(NotificationEvent(
            recipient_id=data.responsible_user_id,
            kind="ncr_redirect",
            ncr_id=ncr.id,
            project_id=ncr.project_id,
            metadata={"ncr_number": ncr.ncr_number},
        ))

    await db.refresh(ncr)
    return ncr


# ── Workflow ──────────────────────────────────────────────────────────────────

async def run_transition(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    ncr_id: uuid.UUID,
    operation: NcrOperation,
    actor: Actor,
    payload: BaseModel | dict[str, Any] | None,
    notifier: Notifier,
) -> NcrRecord:
    engine = WorkflowEngine(SqlNcrStore(db), notifier, AuditTrail(db, tenant_id))
    record = await engine.execute(ncr_id, operation, actor, payload)
    if operation == NcrOperation.CLOSE:
        released = await release_lots_after_close(db, record.id)
        if released:
            logger.info("{} closed, released {} lot(s)", record.ncr_number, len(released))
    return record


# ── Evidence ──────────────────────────────────────────────────────────────────

def _evidence_row(evidence: NcrEvidence, f: File) -> dict[str, Any]:
    return {
        "id": evidence.id,
        "ncr_id": evidence.ncr_id,
        "file_id": f.id,
        "evidence_type": evidence.evidence_type,
        "filename": f.filename,
        "file_url": f.file_url,
        "mime_type": f.mime_type,
        "caption": f.caption,
        "created_at": evidence.created_at,
    }


async def list_evidence(db: AsyncSession, ncr: Ncr) -> list[dict[str, Any]]:
    result = await db.execute(
        select(NcrEvidence, File)
        .join(File, File.id == NcrEvidence.file_id)
        .where(NcrEvidence.ncr_id == ncr.id, File.is_deleted == False)
        .order_by(NcrEvidence.created_at.asc())
    )
    return [_evidence_row(evidence, f) for evidence, f in result.all()]


async def add_evidence(db: AsyncSession, ncr: Ncr, actor: Actor, data: EvidenceCreate) -> dict[str, Any]:
    _require(actor, Capability.PARTICIPATE, "Access denied")

    if data.file_id:
        f = await get_file(db, data.file_id)
        if not f or f.project_id != ncr.project_id:
            raise HTTPException(404, "File not found")
    elif data.filename and data.file_url:
        f = await create_file(
            db,
            ncr.tenant_id,
            FileCreate(
                project_id=ncr.project_id,
                category="ncr_evidence",
                filename=data.filename,
                file_url=data.file_url,
                mime_type=data.mime_type,
                size_bytes=data.size_bytes,
                caption=data.caption,
            ),
            uploaded_by=actor.user_id,
        )
    else:
        raise HTTPException(400, "Either file_id or filename and file_url are required")

    evidence = NcrEvidence(
        tenant_id=ncr.tenant_id,
        ncr_id=ncr.id,
        file_id=f.id,
        evidence_type=data.evidence_type,
    )
    db.add(evidence)
    await db.flush()
    await db.refresh(evidence)

    await audit(
        db,
        tenant_id=ncr.tenant_id,
        user_id=actor.user_id,
        action="ncr.evidence_added",
        resource_type="ncr",
        resource_id=str(ncr.id),
        detail={"evidence_id": str(evidence.id), "file_id": str(f.id), "evidence_type": evidence.evidence_type},
    )
    return _evidence_row(evidence, f)


async def remove_evidence(db: AsyncSession, ncr: Ncr, actor: Actor, evidence_id: uuid.UUID) -> None:
    _require(actor, Capability.PARTICIPATE, "Access denied")
    if ncr.status == "closed":
        raise HTTPException(400, "Cannot remove evidence from a closed NCR")

    result = await db.execute(
        select(NcrEvidence).where(NcrEvidence.id == evidence_id, NcrEvidence.ncr_id == ncr.id)
    )
    evidence = result.scalar_one_or_none()
    if not evidence:
        raise HTTPException(404, "Evidence not found")

    await db.delete(evidence)
    await db.flush()
    await audit(
        db,
        tenant_id=ncr.tenant_id,
        user_id=actor.user_id,
        action="ncr.evidence_removed",
        resource_type="ncr",
        resource_id=str(ncr.id),
        detail={"evidence_id": str(evidence_id)},
    )


# ── Client notification ───────────────────────────────────────────────────────

async def notify_client(
    db: AsyncSession,
    ncr: Ncr,
    actor: Actor,
    data: NotifyClientRequest,
) -> NotifyClientResponse:
    if not ncr.client_notification_required:
        raise HTTPException(400, "Client notification not required for this NCR")
    if ncr.client_notified_at:
        raise HTTPException(400, f"Client was already notified on {ncr.client_notified_at.date().isoformat()}")
    _require(
        actor, Capability.REVIEW_QUALITY,
        "Only Project Managers, Quality Managers, or Admins can notify client",
    )

    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(Ncr)
        .where(Ncr.id == ncr.id, Ncr.client_notified_at.is_(None))
        .values(client_notified_at=now)
        .returning(Ncr.id)
        .execution_options(synchronize_session=False)
    )
    if result.scalar_one_or_none() is None:
        raise HTTPException(400, "Client was already notified")
    await db.refresh(ncr)

    project = await db.get(Project, ncr.project_id)
    lots = await db.execute(
        select(Lot.lot_number)
        .join(NcrLot, NcrLot.lot_id == Lot.id)
        .where(NcrLot.ncr_id == ncr.id)
        .order_by(Lot.lot_number)
    )
    raised_by = await db.get(User, ncr.raised_by_id) if ncr.raised_by_id else None
    notified_by = await db.get(User, actor.user_id)

    package = ClientNotificationPackage(
        ncr_number=ncr.ncr_number,
        project=f"{project.name} ({project.project_number})" if project else "Unknown",
        severity=ncr.severity,
        category=ncr.category,
        affected_lots=", ".join(lots.scalars().all()) or "N/A",
        description=ncr.description,
        specification_reference=ncr.specification_reference or "N/A",
        raised_by=raised_by.display_name if raised_by else "Unknown",
        raised_at=ncr.raised_at,
        notified_by=notified_by.display_name if notified_by else "Unknown",
        notified_at=now,
        additional_message=data.additional_message,
    )

    await audit(
        db,
        tenant_id=ncr.tenant_id,
        user_id=actor.user_id,
        action="ncr.client_notified",
        resource_type="ncr",
        resource_id=str(ncr.id),
        detail={
            "recipient_email": data.recipient_email,
            "package": package.model_dump(mode="json"),
        },
    )
    logger.info("Client notified about {}", ncr.ncr_number)

    return NotifyClientResponse(
        ncr=NcrRead.model_validate(ncr),
        notification_package=package,
        message="Client notification prepared and recorded",
    )
