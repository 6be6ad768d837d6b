from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from opsflow.core.security import AuthenticatedUser, get_current_active_user
from opsflow.database import get_db
from opsflow.dependencies import get_workflow_service
from opsflow.main import app
from opsflow.tests.conftest import TestingSessionLocal
from opsflow.tests.factories import ACTOR_ID, ORG_ID

admin_user = AuthenticatedUser(user_id=ACTOR_ID, username="ada", email="ada@example.com",
                               org_id=ORG_ID, permissions=["*"])

ONBOARDING = {
    "name": "Employee onboarding",
    "status": "active",
    "defaultDueDays": 14,
    "steps": [
        {"id": "tmp-b", "name": "B", "parentStepId": "tmp-a", "orderIndex": 1},
        {"id": "tmp-a", "name": "A", "orderIndex": 0, "assigneeType": "dynamic_manager"},
    ],
    "edges": [{"sourceStepId": "tmp-a", "targetStepId": "tmp-b"}],
}


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def _as_user(user):
    return lambda: user


@pytest.fixture
def client(directory, monkeypatch):
    monkeypatch.setitem(app.dependency_overrides, get_db, override_get_db)
    monkeypatch.setitem(app.dependency_overrides, get_current_active_user, _as_user(admin_user))
    with TestClient(app) as test_client:
        yield test_client


def _create_template(client, payload=ONBOARDING):
    response = client.post("/api/workflows/templates", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def _start(client, template_id):
    response = client.post("/api/workflows/instances", json={
        "templateId": template_id, "entityType": "person", "entityId": "person-new-hire",
    })
    assert response.status_code == 201, response.text
    return response.json()


def test_healthcheck(client):
    response = client.get("/api/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_and_fetch_template(client):
    created = _create_template(client)

    assert created["defaultDueDays"] == 14
    assert created["stepsCount"] == 2
    assert created["createdBy"]["name"] == "Ada Admin"
    by_name = {s["name"]: s for s in created["steps"]}
    assert by_name["B"]["parentStepId"] == by_name["A"]["id"]
    assert created["edges"][0]["sourceStepId"] == by_name["A"]["id"]

    fetched = client.get(f"/api/workflows/templates/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["id"] == created["id"]

    listed = client.get("/api/workflows/templates", params={"status": "active", "activeOnly": "true"})
    assert [t["id"] for t in listed.json()] == [created["id"]]
    assert listed.json()[0]["instancesCount"] == 0


def test_patch_template_scalars(client):
    created = _create_template(client)
    response = client.patch(f"/api/workflows/templates/{created['id']}", json={"description": "Week one"})

    assert response.status_code == 200
    body = response.json()
    assert body["description"] == "Week one"
    assert [s["id"] for s in body["steps"]] == [s["id"] for s in created["steps"]]


def test_invalid_body_is_400(client):
    response = client.post("/api/workflows/templates", json={"description": "no name"})
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request body"
    assert body["details"]


def test_dangling_edge_is_400(client):
    payload = dict(ONBOARDING, edges=[{"sourceStepId": "tmp-a", "targetStepId": "ghost"}])
    response = client.post("/api/workflows/templates", json=payload)
    assert response.status_code == 400
    assert "error" in response.json()


def test_missing_template_is_404(client):
    response = client.get("/api/workflows/templates/nope")
    assert response.status_code == 404
    assert response.json() == {"error": "Template not found"}


def test_delete_template(client):
    created = _create_template(client)
    _start(client, created["id"])

    blocked = client.delete(f"/api/workflows/templates/{created['id']}")
    assert blocked.status_code == 409
    assert blocked.json()["error"] == "Cannot delete template with existing instances. Archive it instead."

    spare = _create_template(client, dict(ONBOARDING, name="Spare"))
    deleted = client.delete(f"/api/workflows/templates/{spare['id']}")
    assert deleted.status_code == 204
    assert client.get(f"/api/workflows/templates/{spare['id']}").status_code == 404


def test_instance_lifecycle(client):
    template = _create_template(client)
    instance = _start(client, template["id"])

    assert instance["status"] == "pending"
    assert instance["totalSteps"] == 2
    assert instance["progress"] == 0
    assert instance["entity"] == {
        "id": "person-new-hire", "name": "Nova Newhire", "email": "nova@example.com", "type": "person",
    }
    by_name = {s["name"]: s for s in instance["steps"]}
    assert by_name["A"]["assignedPerson"]["id"] == "person-manager"

    for step_name in ("A", "B"):
        step_id = by_name[step_name]["id"]
        assert client.patch(f"/api/workflows/steps/{step_id}", json={"status": "in_progress"}).status_code == 200
        done = client.patch(f"/api/workflows/steps/{step_id}", json={"status": "completed"})
        assert done.status_code == 200
        assert done.json()["completedBy"]["id"] == ACTOR_ID

    finished = client.get(f"/api/workflows/instances/{instance['id']}").json()
    assert finished["status"] == "completed"
    assert finished["progress"] == 100
    assert finished["completedAt"] is not None

    listed = client.get("/api/workflows/instances", params={"status": "completed", "templateId": template["id"]})
    assert [i["id"] for i in listed.json()] == [instance["id"]]


def test_illegal_step_move_is_409(client):
    template = _create_template(client)
    instance = _start(client, template["id"])
    step_id = instance["steps"][0]["id"]

    response = client.patch(f"/api/workflows/steps/{step_id}", json={"status": "completed"})

    assert response.status_code == 409
    assert response.json()["details"] == {"current": "pending", "requested": "completed"}


def test_cancel_instance(client):
    template = _create_template(client)
    instance = _start(client, template["id"])

    response = client.delete(f"/api/workflows/instances/{instance['id']}")

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert client.get(f"/api/workflows/instances/{instance['id']}").json()["status"] == "cancelled"


def test_unknown_status_filter_is_400(client):
    response = client.get("/api/workflows/instances", params={"status": "pending,bogus"})
    assert response.status_code == 400


def test_event_endpoint(client):
    response = client.post("/api/workflows/events", json={
        "type": "person.created", "personId": "person-new-hire", "status": "onboarding",
    })
    assert response.status_code == 200
    assert response.json() == {"success": True, "workflowsTriggered": [], "errors": []}


def test_missing_permission_is_403(client, monkeypatch):
    viewer = AuthenticatedUser(user_id="user-hr", username="harper", org_id=ORG_ID,
                               permissions=["workflows.templates:view"])
    monkeypatch.setitem(app.dependency_overrides, get_current_active_user, _as_user(viewer))

    assert client.get("/api/workflows/templates").status_code == 200
    response = client.post("/api/workflows/templates", json=ONBOARDING)
    assert response.status_code == 403


def test_other_org_sees_nothing(client, monkeypatch):
    created = _create_template(client)
    outsider = AuthenticatedUser(user_id="user-x", username="olive", org_id="org-2", permissions=["*"])
    monkeypatch.setitem(app.dependency_overrides, get_current_active_user, _as_user(outsider))

    assert client.get(f"/api/workflows/templates/{created['id']}").status_code == 404
    assert client.get("/api/workflows/templates").json() == []


def test_unexpected_error_is_500(directory, monkeypatch):
    broken = MagicMock()
    broken.get_template = AsyncMock(side_effect=RuntimeError("database on fire"))
    monkeypatch.setitem(app.dependency_overrides, get_workflow_service, lambda: broken)
    monkeypatch.setitem(app.dependency_overrides, get_current_active_user, _as_user(admin_user))

    with TestClient(app, raise_server_exceptions=False) as test_client:
        response = test_client.get("/api/workflows/templates/any")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
