import asyncio
import uuid

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.notifications.service import (
    NotificationDispatcher, NotificationEvent, QueueNotifier, TransactionNotifier, render,
)


def _event(kind="ncr_closed", **metadata):
    return NotificationEvent(
        recipient_id=uuid.uuid4(),
        kind=kind,
        ncr_id=uuid.uuid4(),
        metadata={"ncr_number": "NCR-0007", **metadata},
        project_id=uuid.uuid4(),
    )


def test_render_known_kind():
    title, message = render(_event("ncr_response_accepted"))
    assert title == "NCR Response Accepted"
    assert "NCR-0007" in message


def test_render_revision_with_and_without_comments():
    _, with_comments = render(_event("ncr_revision_requested", comments="Add photos"))
    _, without = render(_event("ncr_revision_requested", comments=None))
    assert with_comments.endswith("Feedback: Add photos")
    assert without.endswith("Feedback: Please review and resubmit.")


def test_render_unknown_kind_falls_back():
    title, message = render(_event("ncr_something_new"))
    assert title == "NCR Update"
    assert message == "NCR-0007 was updated."


def test_queue_notifier_drops_when_full():
    notifier = QueueNotifier(maxsize=1)
    notifier.notify(_event())
    notifier.notify(_event())
    assert notifier.queue.qsize() == 1


class FlakySink:
    def __init__(self):
        self.delivered = []
        self.calls = 0

    async def deliver(self, event):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("database unavailable")
        self.delivered.append(event)


def test_dispatcher_keeps_going_after_a_failed_delivery():
    sink = FlakySink()

    async def scenario():
        notifier = QueueNotifier()
        dispatcher = NotificationDispatcher(notifier, sink)
        dispatcher.start()
        first, second = _event(), _event("ncr_assigned", summary="Cracked kerb")
        notifier.notify(first)
        notifier.notify(second)
        await dispatcher.stop()
        return second

    second = asyncio.run(scenario())
    assert sink.calls == 2
    assert sink.delivered == [second]


def test_transaction_notifier_holds_events_until_commit(notifier):
    event = _event()

    async def scenario():
        session = AsyncSession()
        outbox = TransactionNotifier(notifier, session)
        async with session.begin():
            outbox.notify(event)
            assert notifier.events == []
        await session.close()

    asyncio.run(scenario())
    assert notifier.events == [event]


def test_transaction_notifier_drops_events_on_rollback(notifier):
    async def scenario():
        session = AsyncSession()
        outbox = TransactionNotifier(notifier, session)
        with pytest.raises(RuntimeError):
            async with session.begin():
                outbox.notify(_event())
                raise RuntimeError("lot release failed")
        async with session.begin():
            pass
        await session.close()

    asyncio.run(scenario())
    assert notifier.events == []


def test_transaction_notifier_survives_a_failing_queue():
    class ClosedQueue:
        def notify(self, event):
            raise RuntimeError("queue closed")

    async def scenario():
        session = AsyncSession()
        TransactionNotifier(ClosedQueue(), session).notify(_event())
        async with session.begin():
            pass
        await session.close()

    asyncio.run(scenario())
