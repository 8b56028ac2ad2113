import asyncio
import uuid

import pytest
from sqlalchemy.exc import OperationalError

from siteqa.core.nonconformance.engine import WorkflowEngine
from siteqa.core.nonconformance.errors import (
    ConcurrentModification, Forbidden, NotFound, QmApprovalRequired, StorageUnavailable,
    ValidationFailed, WrongState,
)
from siteqa.core.nonconformance.store import InMemoryNcrStore

RESPONSE = {
    "root_cause_category": "materials",
    "root_cause_description": "Supplier delivered 20 MPa mix instead of 32 MPa",
    "proposed_corrective_action": "Core test and replace failed section",
}


class RacingStore(InMemoryNcrStore):
    """Another writer bumps the version just before each of our first `races` writes."""

    def __init__(self, records=(), races=1):
        super().__init__(records)
        self.races = races
        self.attempts = 0

    async def conditional_update(self, ncr_id, expected_status, expected_version, changes):
        self.attempts += 1
        if self.races > 0:
            self.races -= 1
            current = self.get(ncr_id)
            self.add(current.with_changes({"version": current.version + 1}))
        return await super().conditional_update(ncr_id, expected_status, expected_version, changes)


class BrokenStore(InMemoryNcrStore):
    async def load_by_id(self, ncr_id):
        raise OperationalError("SELECT ...", {}, Exception("connection refused"))


class ExplodingNotifier:
    def notify(self, event):
        raise RuntimeError("queue closed")


@pytest.fixture
def people(make_actor):
    raiser = uuid.uuid4()
    responsible = uuid.uuid4()
    return {
        "raiser_id": raiser,
        "responsible_id": responsible,
        "engineer": make_actor("site_engineer", user_id=responsible),
        "raiser": make_actor("site_engineer", user_id=raiser),
        "qm": make_actor("quality_manager"),
        "viewer": make_actor("viewer"),
    }


@pytest.fixture
def setup(make_ncr, notifier, audit_trail, people):
    def _setup(store_cls=InMemoryNcrStore, **overrides):
        ncr = make_ncr(raised_by_id=people["raiser_id"], responsible_user_id=people["responsible_id"], **overrides)
        store = store_cls([ncr])
        engine = WorkflowEngine(store, notifier, audit_trail)
        return ncr, store, engine
    return _setup


def test_minor_ncr_full_lifecycle(setup, people, audit_trail):
    ncr, store, engine = setup()

    async def scenario():
        r = await engine.execute(ncr.id, "respond", people["engineer"], RESPONSE)
        assert r.status == "investigating"
        r = await engine.execute(ncr.id, "qm_review", people["qm"], {"action": "accept"})
        assert r.status == "rectification"
        r = await engine.execute(ncr.id, "rectify", people["engineer"], {"rectification_notes": "Section replaced"})
        assert r.status == "verification"
        return await engine.execute(ncr.id, "close", people["raiser"], {"verification_notes": "Cores pass"})

    closed = asyncio.run(scenario())
    assert closed.status == "closed"
    assert closed.closed_at is not None
    assert closed.closed_by_id == people["raiser_id"]
    assert closed.version == 5
    assert [e["action"] for e in audit_trail.entries] == [
        "ncr.respond", "ncr.qm_review", "ncr.rectify", "ncr.close",
    ]
    assert audit_trail.entries[-1]["detail"] == {
        "from": "verification", "to": "closed", "ncr_number": "NCR-0001", "event": "ncr_closed",
    }


def test_major_ncr_requires_approval_before_close(setup, people, audit_trail):
    ncr, store, engine = setup(severity="major", status="verification")

    async def scenario():
        with pytest.raises(QmApprovalRequired):
            await engine.execute(ncr.id, "close", people["qm"], {})
        approved = await engine.execute(ncr.id, "qm_approve", people["qm"])
        again = await engine.execute(ncr.id, "qm_approve", people["qm"])
        closed = await engine.execute(ncr.id, "close", people["engineer"], {})
        return approved, again, closed

    approved, again, closed = asyncio.run(scenario())
    assert approved.status == "verification"
    assert approved.qm_approval_granted is True
    assert again == approved
    assert closed.status == "closed"
    assert [e["action"] for e in audit_trail.entries] == ["ncr.qm_approve", "ncr.close"]


def test_revision_round_trip(setup, people):
    ncr, store, engine = setup()

    async def scenario():
        await engine.execute(ncr.id, "respond", people["engineer"], RESPONSE)
        reopened = await engine.execute(
            ncr.id, "qm_review", people["qm"], {"action": "request_revision", "comments": "Attach mix dockets"},
        )
        resubmitted = await engine.execute(ncr.id, "respond", people["engineer"], {
            **RESPONSE, "root_cause_description": "Wrong mix code on order",
        })
        return reopened, resubmitted

    reopened, resubmitted = asyncio.run(scenario())
    assert reopened.status == "open"
    assert reopened.revision_requested is True
    assert reopened.revision_count == 1
    assert reopened.root_cause_description == RESPONSE["root_cause_description"]
    assert resubmitted.status == "investigating"
    assert resubmitted.revision_requested is False
    assert resubmitted.root_cause_description == "Wrong mix code on order"


def test_invalid_review_action_changes_nothing(setup, people, audit_trail, notifier):
    ncr, store, engine = setup(status="investigating")
    with pytest.raises(ValidationFailed):
        asyncio.run(engine.execute(ncr.id, "qm_review", people["qm"], {"action": "maybe"}))
    assert store.get(ncr.id) == ncr
    assert audit_trail.entries == []
    assert notifier.events == []


@pytest.mark.parametrize("status,operation,expected", [
    ("open", "close", "NCR is not in verification status"),
    ("open", "rectify", "NCR is not in rectification status"),
    ("closed", "respond", "NCR is not in open status"),
    ("rectification", "qm_review", "NCR is not in investigating status"),
])
def test_wrong_state_messages(setup, people, status, operation, expected):
    ncr, store, engine = setup(status=status, severity="major")
    payload = {"action": "accept"} if operation == "qm_review" else {}
    with pytest.raises(WrongState) as exc:
        asyncio.run(engine.execute(ncr.id, operation, people["qm"], payload))
    assert exc.value.message == expected
    assert store.get(ncr.id) == ncr


def test_unknown_ncr(setup, people):
    _, _, engine = setup()
    with pytest.raises(NotFound):
        asyncio.run(engine.execute(uuid.uuid4(), "respond", people["engineer"], RESPONSE))


def test_unknown_ncr_is_reported_before_payload_errors(setup, people):
    _, _, engine = setup()
    with pytest.raises(NotFound):
        asyncio.run(engine.execute(uuid.uuid4(), "rectify", people["engineer"], {"rectification_notes": 1}))


def test_wrong_state_is_reported_before_payload_errors(setup, people, audit_trail):
    ncr, store, engine = setup(status="investigating")
    with pytest.raises(WrongState):
        asyncio.run(engine.execute(ncr.id, "respond", people["engineer"], {**RESPONSE, "root_cause_category": 5}))
    assert store.get(ncr.id) == ncr
    assert audit_trail.entries == []


def test_overlong_root_cause_category_is_a_validation_error(setup, people):
    ncr, store, engine = setup()
    with pytest.raises(ValidationFailed):
        asyncio.run(engine.execute(ncr.id, "respond", people["engineer"], {**RESPONSE, "root_cause_category": "c" * 101}))
    assert store.get(ncr.id).status == "open"


def test_viewer_cannot_respond(setup, people):
    ncr, store, engine = setup()
    with pytest.raises(Forbidden):
        asyncio.run(engine.execute(ncr.id, "respond", people["viewer"], RESPONSE))
    assert store.get(ncr.id).status == "open"


def test_conflict_is_retried_once(setup, people):
    ncr, store, engine = setup(store_cls=RacingStore)
    updated = asyncio.run(engine.execute(ncr.id, "respond", people["engineer"], RESPONSE))
    assert updated.status == "investigating"
    assert updated.version == 3
    assert store.attempts == 2


def test_second_conflict_surfaces(setup, people, audit_trail):
    ncr, _, _ = setup()
    store = RacingStore([ncr], races=2)
    engine = WorkflowEngine(store, notifier=ExplodingNotifier(), audit=audit_trail)
    with pytest.raises(ConcurrentModification):
        asyncio.run(engine.execute(ncr.id, "respond", people["engineer"], RESPONSE))
    assert store.attempts == 2
    assert store.get(ncr.id).status == "open"
    assert audit_trail.entries == []


def test_concurrent_responses_only_one_wins(setup, people):
    ncr, store, engine = setup()

    async def scenario():
        return await asyncio.gather(
            engine.execute(ncr.id, "respond", people["engineer"], RESPONSE),
            engine.execute(ncr.id, "respond", people["raiser"], RESPONSE),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())
    wins = [r for r in results if not isinstance(r, Exception)]
    losses = [r for r in results if isinstance(r, Exception)]
    assert len(wins) == 1
    assert len(losses) == 1
    assert isinstance(losses[0], WrongState)
    assert store.get(ncr.id).version == 2


def test_notifications_skip_the_actor(setup, people, notifier):
    ncr, store, engine = setup(status="verification")
    asyncio.run(engine.execute(ncr.id, "close", people["raiser"], {}))
    assert [(e.recipient_id, e.kind) for e in notifier.events] == [(people["responsible_id"], "ncr_closed")]
    assert notifier.events[0].metadata["ncr_number"] == "NCR-0001"
    assert notifier.events[0].project_id == ncr.project_id


def test_response_notifies_raiser(setup, people, notifier):
    ncr, store, engine = setup()
    asyncio.run(engine.execute(ncr.id, "respond", people["engineer"], RESPONSE))
    assert [(e.recipient_id, e.kind) for e in notifier.events] == [(people["raiser_id"], "ncr_response_submitted")]


def test_revision_notification_carries_comments(setup, people, notifier):
    ncr, store, engine = setup(status="investigating")
    asyncio.run(engine.execute(
        ncr.id, "qm_review", people["qm"], {"action": "request_revision", "comments": "Need photos"},
    ))
    event = notifier.events[0]
    assert event.kind == "ncr_revision_requested"
    assert event.recipient_id == people["responsible_id"]
    assert event.metadata["comments"] == "Need photos"


def test_notifier_failure_does_not_fail_the_operation(make_ncr, people, audit_trail):
    ncr = make_ncr(raised_by_id=people["raiser_id"])
    store = InMemoryNcrStore([ncr])
    engine = WorkflowEngine(store, ExplodingNotifier(), audit_trail)
    updated = asyncio.run(engine.execute(ncr.id, "respond", people["engineer"], RESPONSE))
    assert updated.status == "investigating"
    assert len(audit_trail.entries) == 1


def test_storage_errors_are_wrapped(setup, people):
    ncr, _, engine = setup(store_cls=BrokenStore)
    with pytest.raises(StorageUnavailable) as exc:
        asyncio.run(engine.execute(ncr.id, "respond", people["engineer"], RESPONSE))
    assert exc.value.kind == "storage_error"


def test_engine_without_audit(make_ncr, people, notifier):
    ncr = make_ncr()
    engine = WorkflowEngine(InMemoryNcrStore([ncr]), notifier)
    assert asyncio.run(engine.execute(ncr.id, "respond", people["engineer"], RESPONSE)).status == "investigating"
