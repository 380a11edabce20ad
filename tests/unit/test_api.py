"""API tests for the case, workflow and merge routes (in-memory storage)."""

import pytest
from fastapi.testclient import TestClient

from workflow_service.api.dependencies import reset_inmemory_storage
from workflow_service.main import app

from factories import build_workflow

AGENT = {"X-User-ID": "user_1", "X-User-Roles": "agent"}
SUPERVISOR = {"X-User-ID": "boss_1", "X-User-Roles": "agent, supervisor"}


@pytest.fixture
def client():
    reset_inmemory_storage()
    with TestClient(app) as test_client:
        yield test_client
    reset_inmemory_storage()


def _workflow_body(**overrides):
    body = build_workflow().model_dump(
        mode="json", include={"name", "code", "record_type", "states", "transitions"},
    )
    body.update(overrides)
    return body


@pytest.fixture
def workflow_id(client):
    response = client.post("/api/v1/workflows", json=_workflow_body(), headers=AGENT)
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture
def case_id(client, workflow_id):
    response = client.post(
        "/api/v1/cases", json={"workflow_id": workflow_id, "title": "Water leak"}, headers=AGENT,
    )
    assert response.status_code == 201
    return response.json()["id"]


@pytest.mark.unit
class TestAuthHeaders:
    """Actor comes from gateway headers"""

    def test_missing_user_header(self, client):
        response = client.get("/api/v1/cases")
        assert response.status_code == 401

    def test_list_with_header(self, client):
        response = client.get("/api/v1/cases", headers=AGENT)
        assert response.status_code == 200
        assert response.json() == {"cases": [], "total": 0, "page": 1, "page_size": 50}


@pytest.mark.unit
class TestWorkflowRoutes:
    """Workflow definition endpoints"""

    def test_create_and_get(self, client, workflow_id):
        """Happy path: created workflow can be fetched"""
        response = client.get(f"/api/v1/workflows/{workflow_id}", headers=AGENT)
        assert response.status_code == 200
        assert response.json()["code"] == "WF_INCIDENT"

    def test_invalid_workflow(self, client):
        response = client.post("/api/v1/workflows", json=_workflow_body(states=[]), headers=AGENT)
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "invalid_workflow"
        assert "Workflow has no initial state" in body["errors"]

    def test_update_and_delete(self, client, workflow_id):
        response = client.put(
            f"/api/v1/workflows/{workflow_id}", json={"name": "Renamed"}, headers=AGENT,
        )
        assert response.status_code == 200
        assert response.json()["version"] == 2

        response = client.delete(f"/api/v1/workflows/{workflow_id}", headers=AGENT)
        assert response.status_code == 204
        assert client.get(f"/api/v1/workflows/{workflow_id}", headers=AGENT).status_code == 404

    def test_match_preview(self, client):
        client.post("/api/v1/workflows", json=_workflow_body(code="GENERAL", is_default=True), headers=AGENT)
        client.post(
            "/api/v1/workflows",
            json=_workflow_body(code="WATER", classification_ids=["C1"]),
            headers=AGENT,
        )

        response = client.post(
            "/api/v1/workflows/match", json={"record_type": "incident", "classification_id": "C1"},
            headers=AGENT,
        )
        assert response.status_code == 200
        assert response.json()["code"] == "WATER"

        response = client.post("/api/v1/workflows/match", json={"record_type": "query"}, headers=AGENT)
        assert response.json() is None


@pytest.mark.unit
class TestCaseRoutes:
    """Case endpoints"""

    def test_create_case(self, client, case_id):
        """Happy path: case created in the initial state"""
        response = client.get(f"/api/v1/cases/{case_id}", headers=AGENT)
        assert response.status_code == 200
        body = response.json()
        assert body["current_state_id"] == "new"
        assert body["reporter_id"] == "user_1"

    def test_unknown_case(self, client):
        response = client.get("/api/v1/cases/case_missing", headers=AGENT)
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_transition_errors(self, client, case_id):
        url = f"/api/v1/cases/{case_id}/transition"

        response = client.post(url, json={"transition_id": "assign"}, headers=AGENT)
        assert response.status_code == 422
        assert response.json()["requirements"] == ["comment"]

        response = client.post(url, json={"transition_id": "resolve"}, headers=AGENT)
        assert response.status_code == 404
        assert response.json()["error"] == "transition_not_found"

    def test_transition_flow(self, client, case_id):
        url = f"/api/v1/cases/{case_id}/transition"

        response = client.post(url, json={"transition_id": "assign", "comment": "on my way"}, headers=AGENT)
        assert response.status_code == 200
        assert response.json()["case"]["current_state_id"] == "assigned"

        response = client.post(url, json={"transition_id": "resolve"}, headers=AGENT)
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

        response = client.post(url, json={"transition_id": "resolve"}, headers=SUPERVISOR)
        assert response.status_code == 200

        history = client.get(f"/api/v1/cases/{case_id}/history", headers=AGENT).json()
        assert [h["to_state_id"] for h in history] == ["assigned", "resolved"]

    def test_available_transitions(self, client, case_id):
        response = client.get(f"/api/v1/cases/{case_id}/available-transitions", headers=AGENT)
        assert response.status_code == 200
        ids = {item["transition"]["id"] for item in response.json()}
        assert ids == {"assign", "close_duplicate"}

    def test_update_and_revisions(self, client, case_id):
        response = client.put(f"/api/v1/cases/{case_id}", json={"priority": 2}, headers=AGENT)
        assert response.status_code == 200
        assert response.json()["priority"] == 2

        response = client.get(
            f"/api/v1/cases/{case_id}/revisions", params={"action_type": "field_change"}, headers=AGENT,
        )
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["revision_number"] == 2

    def test_comments(self, client, case_id):
        response = client.post(
            f"/api/v1/cases/{case_id}/comments", json={"content": "Looks bad"}, headers=AGENT,
        )
        assert response.status_code == 201
        comment_id = response.json()["id"]

        response = client.put(
            f"/api/v1/cases/{case_id}/comments/{comment_id}", json={"content": "Fixed"}, headers=AGENT,
        )
        assert response.json()["content"] == "Fixed"

        response = client.delete(f"/api/v1/cases/{case_id}/comments/{comment_id}", headers=AGENT)
        assert response.status_code == 204
        assert client.get(f"/api/v1/cases/{case_id}/comments", headers=AGENT).json() == []

    def test_attachments(self, client, case_id):
        response = client.post(
            f"/api/v1/cases/{case_id}/attachments", json={"attachment_id": "file_1"}, headers=AGENT,
        )
        assert response.status_code == 201
        assert response.json()["attachment_ids"] == ["file_1"]

        response = client.delete(f"/api/v1/cases/{case_id}/attachments/file_1", headers=AGENT)
        assert response.status_code == 200
        assert response.json()["attachment_ids"] == []

    def test_delete_case(self, client, case_id):
        assert client.delete(f"/api/v1/cases/{case_id}", headers=AGENT).status_code == 204
        assert client.get(f"/api/v1/cases/{case_id}", headers=AGENT).status_code == 404

    def test_convert(self, client, case_id):
        client.post(
            "/api/v1/workflows", json=_workflow_body(code="REQ", record_type="request"), headers=AGENT,
        )

        response = client.get(f"/api/v1/cases/{case_id}/can-convert", headers=AGENT)
        assert response.json() == {"can_convert": True, "reasons": []}

        response = client.post(
            f"/api/v1/cases/{case_id}/convert", json={"classification_id": "C_REQ"}, headers=AGENT,
        )
        assert response.status_code == 201
        new_case = response.json()["new_case"]
        assert new_case["record_type"] == "request"
        assert new_case["source_incident_id"] == case_id


@pytest.mark.unit
class TestMergeRoutes:
    """Merge endpoints"""

    def _cases(self, client, workflow_id, count):
        return [
            client.post("/api/v1/cases", json={"workflow_id": workflow_id}, headers=AGENT).json()["id"]
            for _ in range(count)
        ]

    def test_merge_and_unmerge(self, client, workflow_id):
        master, *duplicates = self._cases(client, workflow_id, 3)

        response = client.post(
            "/api/v1/cases/merge/validate", json={"case_ids": [master, *duplicates]}, headers=AGENT,
        )
        assert response.status_code == 200
        assert response.json()["can_merge"] is True

        response = client.post(
            "/api/v1/cases/merge",
            json={"case_ids": [master, *duplicates], "master_id": master, "comment": "same leak"},
            headers=AGENT,
        )
        assert response.status_code == 200
        assert {c["master_incident_id"] for c in response.json()["merged"]} == {master}

        assert client.delete(f"/api/v1/cases/{master}", headers=AGENT).status_code == 409

        response = client.post(
            "/api/v1/cases/merge/bulk-unmerge", json={"case_ids": duplicates}, headers=AGENT,
        )
        assert response.json() == {"unmerged_count": 2, "failures": []}

    def test_invalid_merge(self, client, workflow_id):
        [only] = self._cases(client, workflow_id, 1)
        response = client.post(
            "/api/v1/cases/merge", json={"case_ids": [only], "master_id": only}, headers=AGENT,
        )
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_merge"


@pytest.mark.unit
class TestCaseQueries:
    """Filtered listings, caller-scoped listings and stats"""

    @pytest.fixture
    def cases(self, client, workflow_id):
        created = []
        for body, headers in (
            ({"title": "Broken meter", "priority": 2, "location_id": "L1"}, AGENT),
            ({"title": "Street light", "priority": 4, "assignee_id": "user_1"}, SUPERVISOR),
            ({"title": "Meter cabinet open", "priority": 2}, SUPERVISOR),
        ):
            response = client.post(
                "/api/v1/cases", json={"workflow_id": workflow_id, **body}, headers=headers,
            )
            assert response.status_code == 201
            created.append(response.json()["id"])
        return created

    def test_search_and_priority_filters(self, client, cases):
        response = client.get("/api/v1/cases", params={"search": "meter"}, headers=AGENT)
        assert response.json()["total"] == 2

        response = client.get(
            "/api/v1/cases", params={"search": "meter", "priority": 2, "location_id": "L1"}, headers=AGENT,
        )
        assert [c["id"] for c in response.json()["cases"]] == [cases[0]]

        response = client.get("/api/v1/cases", params={"priority": 9}, headers=AGENT)
        assert response.status_code == 422

    def test_my_reported_and_assigned(self, client, cases):
        response = client.get("/api/v1/cases/my-reported", headers=AGENT)
        assert response.status_code == 200
        assert [c["id"] for c in response.json()["cases"]] == [cases[0]]

        response = client.get("/api/v1/cases/my-assigned", headers=AGENT)
        assert [c["id"] for c in response.json()["cases"]] == [cases[1]]

        response = client.get("/api/v1/cases/my-reported", headers=SUPERVISOR)
        assert response.json()["total"] == 2

    def test_stats(self, client, cases):
        response = client.get("/api/v1/cases/stats", headers=AGENT)
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 3
        assert body["sla_breached"] == 0
        assert body["by_state"] == {"new": 3}
        assert body["by_record_type"] == {"incident": 3}
        assert body["by_priority"] == {"2": 2, "4": 1}

        response = client.get("/api/v1/cases/stats", params={"priority": 4}, headers=AGENT)
        assert response.json()["total"] == 1
