"""
Transition guard for the NCR workflow.

evaluate() decides whether an operation may run against the current record and,
if so, returns the MutationIntent to persist. Checks run in a fixed order so the
same request always produces the same rejection:

  1. review action        -> ValidationFailed (qm_review only)
  2. state precondition   -> WrongState
  3. payload fields       -> ValidationFailed
  4. severity gate        -> QmApprovalRequired (close only)
  5. actor capability     -> Forbidden

The guard does no I/O; it only reads the record it is given.
"""
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from siteqa.core.nonconformance.errors import (
    Forbidden, QmApprovalRequired, ValidationFailed, WrongState,
)
from siteqa.core.nonconformance.records import (
    MutationIntent, NcrOperation, NcrRecord, NcrStatus, REQUIRED_STATUS, VALID_TRANSITIONS,
)
from siteqa.core.nonconformance.schemas import (
    CloseRequest, QmApproveRequest, QmReviewRequest, RectifyRequest, RespondRequest,
)
from siteqa.core.nonconformance.severity import Severity, requires_qm_approval
from siteqa.core.rbac.capabilities import Actor, Capability

PAYLOAD_SCHEMAS: dict[NcrOperation, type[BaseModel]] = {
    NcrOperation.RESPOND: RespondRequest,
    NcrOperation.QM_REVIEW: QmReviewRequest,
    NcrOperation.RECTIFY: RectifyRequest,
    NcrOperation.QM_APPROVE: QmApproveRequest,
    NcrOperation.CLOSE: CloseRequest,
}

RESPONSE_FIELDS = ("root_cause_category", "root_cause_description", "proposed_corrective_action")

REVIEW_ACTIONS = ("accept", "request_revision")


def parse_operation(operation: NcrOperation | str) -> NcrOperation:
    try:
        return NcrOperation(operation)
    except ValueError:
        raise ValidationFailed(
            f"Unknown NCR operation '{operation}'",
            allowed=[op.value for op in NcrOperation],
        )


def check_review_action(operation: NcrOperation, payload: BaseModel | dict[str, Any] | None) -> None:
    """Reject a qm_review whose action is not accept/request_revision, whatever the record says."""
    if operation is not NcrOperation.QM_REVIEW:
        return
    if isinstance(payload, BaseModel):
        action = getattr(payload, "action", None)
    else:
        action = (payload or {}).get("action")
    if action not in REVIEW_ACTIONS:
        raise ValidationFailed(
            "Validation failed",
            details=[{"field": "action", "message": f"Input should be {' or '.join(map(repr, REVIEW_ACTIONS))}"}],
        )


def parse_payload(operation: NcrOperation, payload: BaseModel | dict[str, Any] | None) -> BaseModel:
    schema = PAYLOAD_SCHEMAS[operation]
    if isinstance(payload, schema):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    try:
        return schema.model_validate(payload or {})
    except ValidationError as exc:
        raise ValidationFailed(
            "Validation failed",
            details=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in exc.errors()
            ],
        )


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _clean(value: str | None) -> str | None:
    return value.strip() if value is not None and value.strip() else None


def _require(actor: Actor, capability: Capability, message: str) -> None:
    if not actor.can(capability):
        raise Forbidden(message, required_capability=capability.value)


def _intent(
    record: NcrRecord,
    operation: NcrOperation,
    new_status: NcrStatus,
    changes: dict[str, Any],
    event_kind: str,
) -> MutationIntent:
    if new_status.value != record.status:
        if new_status.value not in VALID_TRANSITIONS[record.status]:
            raise RuntimeError(f"No edge {record.status} -> {new_status.value}")
        changes = {**changes, "status": new_status.value}
    return MutationIntent(
        operation=operation,
        from_status=record.status,
        new_status=new_status.value,
        changes=changes,
        event_kind=event_kind,
    )


# ── Per-operation rules ───────────────────────────────────────────────────────

def _respond(record: NcrRecord, actor: Actor, data: RespondRequest, now: datetime) -> MutationIntent:
    missing = [name for name in RESPONSE_FIELDS if _blank(getattr(data, name))]
    if missing:
        raise ValidationFailed(
            "Root cause category, root cause description and proposed corrective action are required",
            missing_fields=missing,
        )
    _require(actor, Capability.PARTICIPATE, "You do not have permission to respond to this NCR")
    return _intent(record, NcrOperation.RESPOND, NcrStatus.INVESTIGATING, {
        "root_cause_category": _clean(data.root_cause_category),
        "root_cause_description": _clean(data.root_cause_description),
        "proposed_corrective_action": _clean(data.proposed_corrective_action),
        "response_submitted_at": now,
        "revision_requested": False,
    }, "ncr_response_submitted")


def _qm_review(record: NcrRecord, actor: Actor, data: QmReviewRequest, now: datetime) -> MutationIntent:
    if data.action == "request_revision" and _blank(data.comments):
        raise ValidationFailed("Comments are required when requesting a revision", missing_fields=["comments"])
    _require(
        actor, Capability.REVIEW_QUALITY,
        "Only Quality Managers, Project Managers, or Admins can review NCR responses",
    )
    review = {
        "qm_reviewed_at": now,
        "qm_reviewed_by_id": actor.user_id,
        "qm_review_comments": _clean(data.comments),
    }
    if data.action == "accept":
        return _intent(record, NcrOperation.QM_REVIEW, NcrStatus.RECTIFICATION, review, "ncr_response_accepted")
    # Previous response fields stay on the record until the next respond overwrites them.
    return _intent(record, NcrOperation.QM_REVIEW, NcrStatus.OPEN, {
        **review,
        "revision_requested": True,
        "revision_requested_at": now,
        "revision_count": record.revision_count + 1,
    }, "ncr_revision_requested")


def _rectify(record: NcrRecord, actor: Actor, data: RectifyRequest, now: datetime) -> MutationIntent:
    if _blank(data.rectification_notes):
        raise ValidationFailed("Rectification notes are required", missing_fields=["rectification_notes"])
    _require(actor, Capability.PARTICIPATE, "You do not have permission to rectify this NCR")
    return _intent(record, NcrOperation.RECTIFY, NcrStatus.VERIFICATION, {
        "rectification_notes": _clean(data.rectification_notes),
        "rectification_submitted_at": now,
    }, "ncr_rectification_submitted")


def _qm_approve(record: NcrRecord, actor: Actor, data: QmApproveRequest, now: datetime) -> MutationIntent:
    if not requires_qm_approval(record.severity):
        raise ValidationFailed(
            "QM approval is not applicable to minor severity NCRs",
            severity=Severity(record.severity).value,
        )
    _require(
        actor, Capability.REVIEW_QUALITY,
        "Only Quality Managers, Project Managers, or Admins can approve major NCR closures",
    )
    if record.qm_approval_granted:
        return MutationIntent(
            operation=NcrOperation.QM_APPROVE,
            from_status=record.status,
            new_status=record.status,
            changes={},
            event_kind="ncr_qm_approved",
            noop=True,
        )
    return _intent(record, NcrOperation.QM_APPROVE, NcrStatus.VERIFICATION, {
        "qm_approval_granted": True,
        "qm_approved_at": now,
        "qm_approved_by_id": actor.user_id,
    }, "ncr_qm_approved")


def _close(record: NcrRecord, actor: Actor, data: CloseRequest, now: datetime) -> MutationIntent:
    if requires_qm_approval(record.severity) and not record.qm_approval_granted:
        raise QmApprovalRequired()
    _require(actor, Capability.PARTICIPATE, "You do not have permission to close this NCR")
    return _intent(record, NcrOperation.CLOSE, NcrStatus.CLOSED, {
        "verification_notes": _clean(data.verification_notes),
        "lessons_learned": _clean(data.lessons_learned),
        "verified_at": now,
        "verified_by_id": actor.user_id,
        "closed_at": now,
        "closed_by_id": actor.user_id,
    }, "ncr_closed")


_RULES: dict[NcrOperation, Callable[[NcrRecord, Actor, Any, datetime], MutationIntent]] = {
    NcrOperation.RESPOND: _respond,
    NcrOperation.QM_REVIEW: _qm_review,
    NcrOperation.RECTIFY: _rectify,
    NcrOperation.QM_APPROVE: _qm_approve,
    NcrOperation.CLOSE: _close,
}


def evaluate(
    record: NcrRecord,
    operation: NcrOperation | str,
    actor: Actor,
    payload: BaseModel | dict[str, Any] | None = None,
    *,
    now: datetime | None = None,
) -> MutationIntent:
    op = parse_operation(operation)
    check_review_action(op, payload)

    expected = REQUIRED_STATUS[op]
    if record.status != expected.value:
        raise WrongState(op.value, expected.value, record.status)

    data = parse_payload(op, payload)
    return _RULES[op](record, actor, data, now or datetime.now(timezone.utc))
