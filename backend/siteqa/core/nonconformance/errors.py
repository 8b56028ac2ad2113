"""
Rejections raised by the NCR workflow.

Every error carries a `kind` that the HTTP layer maps to a status code, a
human-readable `message`, and a JSON-safe `detail` dict merged into the
response body.
"""
import uuid
from typing import Any


class WorkflowError(Exception):
    kind = "workflow_error"

    def __init__(self, message: str, **detail: Any):
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFound(WorkflowError):
    kind = "not_found"

    def __init__(self, ncr_id: uuid.UUID | str):
        super().__init__("NCR not found", ncr_id=str(ncr_id))


class WrongState(WorkflowError):
    kind = "wrong_state"

    def __init__(self, operation: str, expected_status: str, current_status: str):
        super().__init__(
            f"NCR is not in {expected_status} status",
            operation=operation,
            expected_status=expected_status,
            current_status=current_status,
        )
        self.expected_status = expected_status
        self.current_status = current_status


class Forbidden(WorkflowError):
    kind = "forbidden"


class QmApprovalRequired(Forbidden):
    def __init__(self) -> None:
        super().__init__(
            "Major NCR requires QM approval before closing",
            requires_qm_approval=True,
            severity="major",
        )


class ValidationFailed(WorkflowError):
    kind = "validation_failed"


class ConcurrentModification(WorkflowError):
    kind = "concurrent_modification"

    def __init__(self, ncr_id: uuid.UUID | str):
        super().__init__(
            "NCR was modified by another request, please reload and try again",
            ncr_id=str(ncr_id),
        )


class StorageUnavailable(WorkflowError):
    kind = "storage_error"

    def __init__(self) -> None:
        super().__init__("NCR storage is temporarily unavailable")


class VersionConflict(Exception):
    """Raised by a store when a conditional update matched no row. Never leaves the engine."""

    def __init__(self, ncr_id: uuid.UUID | str):
        super().__init__(f"Conditional update on NCR {ncr_id} lost the race")
        self.ncr_id = ncr_id
