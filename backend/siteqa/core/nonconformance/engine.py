"""
NCR workflow engine.

execute() runs one workflow operation end to end:

    load -> guard -> conditional write -> audit -> notification intents -> record

The conditional write is keyed on the (status, version) pair that was read. If
another request won the race the record is re-read and the guard re-evaluated
once; a second loss surfaces as ConcurrentModification.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from siteqa.core.nonconformance.errors import (
    ConcurrentModification, NotFound, StorageUnavailable, VersionConflict, WorkflowError,
)
from siteqa.core.nonconformance.guard import check_review_action, evaluate, parse_operation
from siteqa.core.nonconformance.records import MutationIntent, NcrOperation, NcrRecord
from siteqa.core.nonconformance.store import NcrStore
from siteqa.core.notifications.service import NotificationEvent, Notifier
from siteqa.core.rbac.capabilities import Actor
from siteqa.logging_config import get_logger

logger = get_logger(__name__)

MAX_ATTEMPTS = 2

# Who hears about each event. Recipients are read from the updated record.
RECIPIENTS: dict[str, tuple[str, ...]] = {
    "ncr_response_submitted": ("raised_by_id",),
    "ncr_response_accepted": ("responsible_user_id",),
    "ncr_revision_requested": ("responsible_user_id",),
    "ncr_rectification_submitted": ("raised_by_id",),
    "ncr_qm_approved": ("responsible_user_id",),
    "ncr_closed": ("raised_by_id", "responsible_user_id"),
}


class AuditRecorder(Protocol):
    async def record(
        self,
        *,
        user_id: uuid.UUID | None,
        action: str,
        resource_type: str,
        resource_id: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowEngine:
    def __init__(
        self,
        store: NcrStore,
        notifier: Notifier,
        audit: AuditRecorder | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.audit = audit
        self.clock = clock

    async def execute(
        self,
        ncr_id: uuid.UUID,
        operation: NcrOperation | str,
        actor: Actor,
        payload: BaseModel | dict[str, Any] | None = None,
    ) -> NcrRecord:
        op = parse_operation(operation)
        check_review_action(op, payload)
        try:
            return await self._execute(ncr_id, op, actor, payload)
        except SQLAlchemyError:
            logger.exception("Storage failure during {} on NCR {}", op.value, ncr_id)
            raise StorageUnavailable()

    async def _load(self, ncr_id: uuid.UUID) -> NcrRecord:
        record = await self.store.load_by_id(ncr_id)
        if record is None:
            raise NotFound(ncr_id)
        return record

    async def _execute(
        self,
        ncr_id: uuid.UUID,
        op: NcrOperation,
        actor: Actor,
        payload: BaseModel | dict[str, Any] | None,
    ) -> NcrRecord:
        record = await self._load(ncr_id)
        attempt = 1
        while True:
            try:
                intent = evaluate(record, op, actor, payload, now=self.clock())
            except WorkflowError as exc:
                logger.info(
                    "{} on {} rejected for user {}: {} ({})",
                    op.value, record.ncr_number, actor.user_id, exc.kind, exc.message,
                )
                raise

            if intent.noop:
                logger.info("{} on {} already satisfied, nothing to write", op.value, record.ncr_number)
                return record

            try:
                updated = await self.store.conditional_update(
                    record.id, record.status, record.version, intent.changes,
                )
                break
            except VersionConflict:
                logger.warning(
                    "Write conflict on {} during {} (attempt {}/{})",
                    record.ncr_number, op.value, attempt, MAX_ATTEMPTS,
                )
                if attempt >= MAX_ATTEMPTS:
                    raise ConcurrentModification(ncr_id)
                attempt += 1
                record = await self._load(ncr_id)

        logger.info(
            "{} {}: {} -> {} by user {}",
            updated.ncr_number, op.value, intent.from_status, intent.new_status, actor.user_id,
        )
        await self._record_audit(updated, intent, actor)
        self._announce(updated, intent, actor)
        return updated

    async def _record_audit(self, record: NcrRecord, intent: MutationIntent, actor: Actor) -> None:
        if self.audit is None:
            return
        await self.audit.record(
            user_id=actor.user_id,
            action=f"ncr.{intent.operation.value}",
            resource_type="ncr",
            resource_id=str(record.id),
            detail={
                "from": intent.from_status,
                "to": intent.new_status,
                "ncr_number": record.ncr_number,
                "event": intent.event_kind,
            },
        )

    def _announce(self, record: NcrRecord, intent: MutationIntent, actor: Actor) -> None:
        metadata = {
            "ncr_number": record.ncr_number,
            "operation": intent.operation.value,
            "status": record.status,
        }
        if intent.event_kind == "ncr_revision_requested":
            metadata["comments"] = record.qm_review_comments

        seen: set[uuid.UUID] = set()
        for attr in RECIPIENTS.get(intent.event_kind, ()):
            recipient = getattr(record, attr)
            if recipient is None or recipient == actor.user_id or recipient in seen:
                continue
            seen.add(recipient)
            event = NotificationEvent(
                recipient_id=recipient,
                kind=intent.event_kind,
                ncr_id=record.id,
                metadata=metadata,
                project_id=record.project_id,
            )
            try:
                self.notifier.notify(event)
            except Exception:
                logger.exception("Could not queue {} for user {}", intent.event_kind, recipient)
