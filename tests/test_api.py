import uuid
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from siteqa import dependencies
from siteqa.core.nonconformance.errors import (
    ConcurrentModification, Forbidden, NotFound, QmApprovalRequired, StorageUnavailable,
    ValidationFailed, WorkflowError, WrongState,
)
from siteqa.dependencies import CurrentUser, get_current_user, get_db
from siteqa.main import app as siteqa_app, workflow_error_handler

NCR_ID = uuid.uuid4()


def _client(error: WorkflowError) -> TestClient:
    app = FastAPI()
    app.add_exception_handler(WorkflowError, workflow_error_handler)

    @app.post("/boom")
    async def boom():
        raise error

    return TestClient(app)


@pytest.mark.parametrize("error,status", [
    (NotFound(NCR_ID), 404),
    (WrongState("close", "verification", "open"), 400),
    (Forbidden("Access denied"), 403),
    (QmApprovalRequired(), 403),
    (ValidationFailed("Rectification notes are required"), 422),
    (ConcurrentModification(NCR_ID), 409),
    (StorageUnavailable(), 503),
])
def test_workflow_errors_map_to_status(error, status):
    response = _client(error).post("/boom")
    assert response.status_code == status
    body = response.json()
    assert body["message"] == error.message
    assert body["kind"] == error.kind


def test_wrong_state_body():
    body = _client(WrongState("respond", "open", "closed")).post("/boom").json()
    assert body == {
        "message": "NCR is not in open status",
        "kind": "wrong_state",
        "operation": "respond",
        "expected_status": "open",
        "current_status": "closed",
    }


def test_qm_approval_required_body():
    body = _client(QmApprovalRequired()).post("/boom").json()
    assert body["requires_qm_approval"] is True
    assert body["severity"] == "major"


def test_health():
    response = TestClient(siteqa_app).get("/health")
    assert response.json() == {"status": "ok"}


def test_ncr_routes_require_auth():
    response = TestClient(siteqa_app).get(f"/ncrs/{NCR_ID}")
    assert response.status_code == 401


@pytest.fixture
def role_client(monkeypatch):
    def _client(project_role, company_role="member"):
        async def no_db():
            yield None

        async def project_role_of(db, project_id, user_id):
            return project_role

        monkeypatch.setattr(dependencies, "get_project_role", project_role_of)
        siteqa_app.dependency_overrides[get_db] = no_db
        siteqa_app.dependency_overrides[get_current_user] = lambda: CurrentUser(
            user=SimpleNamespace(company_role=company_role), user_id=uuid.uuid4(), tenant_id=uuid.uuid4(),
        )
        return TestClient(siteqa_app)

    yield _client
    siteqa_app.dependency_overrides.clear()


def test_ncr_role_for_quality_manager(role_client):
    response = role_client("quality_manager").get(f"/projects/{uuid.uuid4()}/ncr-role")
    assert response.status_code == 200
    assert response.json() == {
        "project_role": "quality_manager",
        "company_role": "member",
        "capabilities": ["participate", "review_quality"],
        "is_quality_manager": True,
        "can_approve_ncrs": True,
    }


def test_ncr_role_for_viewer(role_client):
    body = role_client("viewer").get(f"/projects/{uuid.uuid4()}/ncr-role").json()
    assert body["capabilities"] == []
    assert body["can_approve_ncrs"] is False


def test_ncr_role_for_company_admin_without_membership(role_client):
    body = role_client(None, company_role="owner").get(f"/projects/{uuid.uuid4()}/ncr-role").json()
    assert body["project_role"] is None
    assert body["is_quality_manager"] is True


def test_ncr_role_denied_to_non_members(role_client):
    response = role_client(None).get(f"/projects/{uuid.uuid4()}/ncr-role")
    assert response.status_code == 403
    assert response.json()["detail"] == "Access denied"
