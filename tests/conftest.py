import uuid

import pytest

from siteqa.core.nonconformance.records import NcrRecord
from siteqa.core.rbac.capabilities import build_actor


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


class RecordingAudit:
    def __init__(self):
        self.entries = []

    async def record(self, **entry):
        self.entries.append(entry)


@pytest.fixture
def make_ncr():
    def _make(**overrides) -> NcrRecord:
        fields = {
            "id": uuid.uuid4(),
            "project_id": uuid.uuid4(),
            "ncr_number": "NCR-0001",
            "severity": "minor",
            "category": "workmanship",
            "raised_by_id": uuid.uuid4(),
            "responsible_user_id": uuid.uuid4(),
            "description": "Honeycombing on pier 3 formwork strip",
        }
        fields.update(overrides)
        return NcrRecord(**fields)
    return _make


@pytest.fixture
def make_actor():
    def _make(project_role="site_engineer", company_role="member", user_id=None):
        return build_actor(user_id or uuid.uuid4(), project_role, company_role)
    return _make


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def audit_trail():
    return RecordingAudit()
