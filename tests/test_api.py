"""Tests for the HTTP API."""
import base64

import pytest
from fastapi.testclient import TestClient

from main import create_app
from orchestrator import SubmissionOrchestrator

from conftest import StubAdapterFactory


@pytest.fixture
def api_orchestrator(memory_db, stub_adapter, submission_config):
    return SubmissionOrchestrator(
        db_service=memory_db,
        adapter_factory=StubAdapterFactory({"chase": stub_adapter}),
        submission_config=submission_config,
        escalation_handler=lambda task, reason: None
    )


@pytest.fixture
def client(api_orchestrator):
    with TestClient(create_app(api_orchestrator)) as test_client:
        yield test_client


def submission(priority="urgent", servicer_id="chase", **document_data):
    content = base64.b64encode(b"%PDF-1.4 test").decode("ascii")
    data = {
        "case_id": "case-1001",
        "loan_number": "0012345678",
        "borrower_name": "Jane Doe",
        "documents": [
            {"type": "hardship_letter", "file_name": "hardship.pdf", "content": content}
        ]
    }
    data.update(document_data)
    return {
        "transaction_id": "txn-1",
        "servicer_id": servicer_id,
        "priority": priority,
        "document_data": data
    }


class TestSubmissionsApi:
    def test_urgent_submission(self, client, memory_db):
        response = client.post("/api/v1/submissions", json=submission())

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["confirmation_number"] == "CONF-1"
        stored = memory_db.records[body["task_id"]]["metadata"]["document_data"]
        assert stored["documents"][0]["content"] == base64.b64encode(b"%PDF-1.4 test").decode("ascii")

    def test_queued_submission(self, client):
        response = client.post("/api/v1/submissions", json=submission("normal"))

        assert response.status_code == 200
        assert response.json()["status"] == "queued"

    def test_invalid_document_data(self, client):
        payload = submission()
        del payload["document_data"]["loan_number"]

        response = client.post("/api/v1/submissions", json=payload)

        assert response.status_code == 422

    def test_unknown_servicer(self, client):
        response = client.post("/api/v1/submissions", json=submission(servicer_id="nobody"))

        assert response.status_code == 400

    def test_invalid_priority(self, client):
        response = client.post("/api/v1/submissions", json=submission("critical"))

        assert response.status_code == 400
        assert "Invalid priority" in response.json()["detail"]

    def test_get_submission(self, client):
        task_id = client.post("/api/v1/submissions", json=submission("normal")).json()["task_id"]

        response = client.get(f"/api/v1/submissions/{task_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending"
        assert "document_data" not in body["metadata"]

    def test_missing_submission(self, client):
        assert client.get("/api/v1/submissions/sub_missing").status_code == 404
        assert client.get("/api/v1/submissions/sub_missing/status").status_code == 404

    def test_submission_status(self, client):
        task_id = client.post("/api/v1/submissions", json=submission()).json()["task_id"]

        response = client.get(f"/api/v1/submissions/{task_id}/status")

        assert response.status_code == 200
        assert response.json()["servicer_status"] == "in_review"

    def test_queue_stats(self, client):
        client.post("/api/v1/submissions", json=submission())

        response = client.get("/api/v1/submissions/stats")

        assert response.status_code == 200
        assert response.json()["queue_size"] == 1

    def test_transaction_submissions(self, client):
        client.post("/api/v1/submissions", json=submission())
        client.post("/api/v1/submissions", json=submission("low"))

        response = client.get("/api/v1/transactions/txn-1/submissions")

        body = response.json()
        assert body["total"] == 2
        assert [s["priority"] for s in body["submissions"]] == ["urgent", "low"]


class TestServicersApi:
    def test_list_servicers(self, client):
        response = client.get("/api/v1/servicers")

        assert response.json() == {
            "servicers": [{"id": "chase", "name": "Chase", "type": "api", "circuit_breaker": "closed"}],
            "total": 1
        }

    def test_connection(self, client):
        response = client.get("/api/v1/servicers/chase/connection")

        assert response.json()["success"] is True

    def test_health(self, client, api_orchestrator):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert api_orchestrator.is_running is True


def test_lifespan_stops_the_orchestrator(api_orchestrator, memory_db):
    with TestClient(create_app(api_orchestrator)):
        assert api_orchestrator.is_running is True

    assert api_orchestrator.is_running is False
    assert memory_db.closed is True
