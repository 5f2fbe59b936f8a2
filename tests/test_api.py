"""Tests for the REST API."""

import pytest
from fastapi.testclient import TestClient

from agency_workflows.main import create_app


@pytest.fixture
def client(config, session_factory, services, registry):
    """Create a test client over an in-memory database."""
    app = create_app(config=config, session_factory=session_factory, services=services, registry=registry)
    return TestClient(app)


def workflow_payload(status="ACTIVE", **overrides):
    """Helper function to create a workflow payload as the authoring UI sends it."""
    payload = {
        "name": "Application follow-up",
        "status": status,
        "nodes": [
            {"id": "trigger", "type": "trigger", "data": {"label": "Application received", "config": {}}},
            {"id": "check", "type": "condition", "data": {"config": {
                "condition": {"type": "custom", "expression": "budget > 30000"}
            }}},
            {"id": "vip", "type": "notification", "data": {"config": {"title": "VIP lead {name}", "message": "Call today"}}},
            {"id": "nurture", "type": "email", "data": {"config": {
                "to": "{email}", "subject": "Next steps", "template": "Hi {name}"
            }}},
        ],
        "edges": [
            {"id": "e1", "source": "trigger", "target": "check"},
            {"id": "e2", "source": "check", "target": "vip", "condition": {"type": "equals", "field": "result", "value": True}},
            {"id": "e3", "source": "check", "target": "nurture", "condition": {"type": "equals", "field": "result", "value": False}},
        ],
    }
    payload.update(overrides)
    return payload


def create_workflow(client, **kwargs):
    response = client.post("/api/v1/workflows", json=workflow_payload(**kwargs))
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    """Test cases for the service endpoints."""

    def test_root(self, client):
        assert client.get("/").json() == {"message": "Agency Workflows is running"}

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy", "service": "agency-workflows"}


class TestWorkflowEndpoints:
    """Test cases for workflow CRUD endpoints."""

    def test_create_and_get(self, client):
        created = create_workflow(client)

        assert created["status"] == "ACTIVE"
        assert created["nodes"][0]["label"] == "Application received"
        assert created["executionCount"] == 0

        fetched = client.get(f"/api/v1/workflows/{created['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["edges"][1]["condition"]["type"] == "equals"

    def test_duplicate_id(self, client):
        created = create_workflow(client)
        response = client.post("/api/v1/workflows", json=workflow_payload(id=created["id"]))
        assert response.status_code == 409

    def test_unrunnable_active_workflow(self, client):
        payload = workflow_payload(edges=[
            {"source": "trigger", "target": "check"},
            {"source": "check", "target": "trigger"},
            {"source": "vip", "target": "nurture"},
            {"source": "nurture", "target": "vip"},
        ])
        response = client.post("/api/v1/workflows", json=payload)

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "GraphError"

    def test_duplicate_node_ids_fail_validation(self, client):
        payload = workflow_payload(nodes=[{"id": "a", "type": "trigger"}, {"id": "a", "type": "action"}], edges=[])
        assert client.post("/api/v1/workflows", json=payload).status_code == 422

    def test_list_and_filter(self, client):
        create_workflow(client)
        create_workflow(client, status="DRAFT")

        assert len(client.get("/api/v1/workflows").json()) == 2
        drafts = client.get("/api/v1/workflows", params={"status": "DRAFT"}).json()
        assert [summary["status"] for summary in drafts] == ["DRAFT"]
        assert drafts[0]["nodeCount"] == 4

    def test_update_status(self, client):
        created = create_workflow(client, status="DRAFT")
        response = client.patch(f"/api/v1/workflows/{created['id']}/status", json={"status": "PAUSED"})
        assert response.status_code == 200
        assert response.json()["status"] == "PAUSED"

    def test_delete(self, client):
        created = create_workflow(client)
        assert client.delete(f"/api/v1/workflows/{created['id']}").status_code == 200
        assert client.delete(f"/api/v1/workflows/{created['id']}").status_code == 404
        assert client.get(f"/api/v1/workflows/{created['id']}").status_code == 404


class TestExecutionEndpoints:
    """Test cases for executing workflows over HTTP."""

    def test_execute(self, client, notifications, email):
        created = create_workflow(client)
        response = client.post(
            f"/api/v1/workflows/{created['id']}/execute",
            json={"triggerData": {"name": "Amara", "budget": 45000, "email": "amara@example.org"}}
        )

        assert response.status_code == 200
        result = response.json()
        assert result["success"] is True
        assert result["workflowId"] == created["id"]
        assert [node["nodeId"] for node in result["results"]] == ["trigger", "check", "vip"]
        assert result["conditionalPaths"]["taken"] == ["e2"]
        assert notifications.sent[0]["title"] == "VIP lead Amara"
        assert email.sent == []

        record = client.get(f"/api/v1/executions/{result['executionId']}").json()
        assert record["status"] == result["status"]
        assert record["result"]["nodesExecuted"] == 3

        history = client.get(f"/api/v1/workflows/{created['id']}/executions").json()
        assert [entry["executionId"] for entry in history] == [result["executionId"]]
        assert client.get(f"/api/v1/workflows/{created['id']}").json()["executionCount"] == 1

    def test_execute_without_body(self, client):
        created = create_workflow(client)
        response = client.post(f"/api/v1/workflows/{created['id']}/execute")
        assert response.status_code == 200
        assert [node["nodeId"] for node in response.json()["results"]][-1] == "nurture"

    def test_inactive_workflow_conflict(self, client):
        created = create_workflow(client, status="DRAFT")
        response = client.post(f"/api/v1/workflows/{created['id']}/execute", json={})

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "WorkflowNotActiveError"

    def test_test_mode_on_draft(self, client, notifications):
        created = create_workflow(client, status="DRAFT")
        response = client.post(
            f"/api/v1/workflows/{created['id']}/execute",
            json={"testMode": True, "triggerData": {"budget": 90000, "name": "Amara"}}
        )

        assert response.status_code == 200
        assert response.json()["results"][-1]["result"]["simulated"] is True
        assert notifications.sent == []

    def test_invalid_timeout(self, client):
        created = create_workflow(client)
        response = client.post(f"/api/v1/workflows/{created['id']}/execute", json={"timeout": 0})
        assert response.status_code == 422

    def test_missing_workflow(self, client):
        assert client.post("/api/v1/workflows/missing/execute", json={}).status_code == 404

    def test_missing_execution(self, client):
        assert client.get("/api/v1/executions/missing").status_code == 404

    def test_node_types(self, client):
        node_types = {entry["type"] for entry in client.get("/api/v1/node-types").json()}
        assert {"trigger", "email", "loop", "parallel", "ai"} <= node_types
