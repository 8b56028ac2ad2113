"""
Best-effort in-app notifications.

Producers call Notifier.notify(), which only enqueues. Inside a request the
queue is wrapped in a TransactionNotifier, so nothing is enqueued unless the
request transaction commits. A NotificationDispatcher task drains the queue and
writes each event through a sink in its own session, so a failed delivery
never touches the request that produced it.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import event as sa_event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from siteqa.core.notifications.models import Notification
from siteqa.logging_config import get_logger

logger = get_logger(__name__)

TEMPLATES: dict[str, tuple[str, str]] = {
    "ncr_assigned": ("NCR Assigned to You", "{ncr_number} has been assigned to you: {summary}"),
    "ncr_redirect": ("NCR Redirected to You", "{ncr_number} has been redirected to you for response"),
    "ncr_response_submitted": ("NCR Response Submitted", "A response for {ncr_number} is awaiting review."),
    "ncr_response_accepted": (
        "NCR Response Accepted",
        "Your response for {ncr_number} has been accepted. Please proceed with rectification.",
    ),
    "ncr_revision_requested": (
        "NCR Revision Requested",
        "A revision has been requested for {ncr_number}. Feedback: {comments}",
    ),
    "ncr_rectification_submitted": (
        "NCR Rectification Submitted",
        "Rectification of {ncr_number} is ready for verification.",
    ),
    "ncr_qm_approved": ("NCR Closure Approved", "{ncr_number} has QM approval and can now be closed."),
    "ncr_closed": ("NCR Closed", "{ncr_number} has been closed."),
}

_DEFAULTS = {"ncr_number": "NCR", "summary": "", "comments": "Please review and resubmit."}


@dataclass(frozen=True)
class NotificationEvent:
    recipient_id: uuid.UUID
    kind: str
    ncr_id: uuid.UUID
    metadata: dict[str, Any] = field(default_factory=dict)
    project_id: uuid.UUID | None = None


class Notifier(Protocol):
    def notify(self, event: NotificationEvent) -> None: ...


class NotificationSink(Protocol):
    async def deliver(self, event: NotificationEvent) -> None: ...


def render(event: NotificationEvent) -> tuple[str, str]:
    title, template = TEMPLATES.get(event.kind, ("NCR Update", "{ncr_number} was updated."))
    values = {**_DEFAULTS, **{k: v for k, v in event.metadata.items() if v is not None}}
    return title, template.format_map(values)


class QueueNotifier:
    """Notifier that hands events to an asyncio.Queue without waiting."""

    def __init__(self, maxsize: int = 0):
        self.queue: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=maxsize)

    def notify(self, event: NotificationEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Notification queue full, dropping {} for user {}", event.kind, event.recipient_id,
            )


class TransactionNotifier:
    """Holds events until the session commits. A rollback drops them."""

    def __init__(self, target: Notifier, session: AsyncSession):
        self.target = target
        self.pending: list[NotificationEvent] = []
        sa_event.listen(session.sync_session, "after_commit", self._release)
        sa_event.listen(session.sync_session, "after_rollback", self._discard)

    def notify(self, event: NotificationEvent) -> None:
        self.pending.append(event)

    def _release(self, session) -> None:
        pending, self.pending = self.pending, []
        for event in pending:
            try:
                self.target.notify(event)
            except Exception:
                logger.exception("Could not queue {} for user {}", event.kind, event.recipient_id)

    def _discard(self, session) -> None:
        if self.pending:
            logger.info("Transaction rolled back, dropping {} notification(s)", len(self.pending))
        self.pending = []


class SqlNotificationSink:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def deliver(self, event: NotificationEvent) -> None:
        title, message = render(event)
        async with self.session_factory() as session:
            async with session.begin():
                session.add(Notification(
                    user_id=event.recipient_id,
                    project_id=event.project_id,
                    kind=event.kind,
                    title=title,
                    message=message,
                    link_url=f"/projects/{event.project_id}/ncr" if event.project_id else None,
                    detail={"ncr_id": str(event.ncr_id), **_json_safe(event.metadata)},
                ))


def _json_safe(metadata: dict[str, Any]) -> dict[str, Any]:
    return {k: v if isinstance(v, (str, int, float, bool)) or v is None else str(v) for k, v in metadata.items()}


class NotificationDispatcher:
    def __init__(self, notifier: QueueNotifier, sink: NotificationSink):
        self.notifier = notifier
        self.sink = sink
        self._task: asyncio.Task | None = None

    async def run(self) -> None:
        queue = self.notifier.queue
        while True:
            event = await queue.get()
            try:
                await self.sink.deliver(event)
            except Exception:
                logger.exception("Failed to deliver {} notification for NCR {}", event.kind, event.ncr_id)
            finally:
                queue.task_done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="ncr-notification-dispatcher")
            logger.info("Notification dispatcher started")

    async def stop(self, drain: bool = True) -> None:
        if self._task is None:
            return
        if drain:
            await self.notifier.queue.join()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Notification dispatcher stopped")
