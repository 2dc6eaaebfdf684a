"""
API tests for the matching and records routers
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.actors.recalculation import recalculate_pivot
from app.database import get_db
from app.main import app
from app.models import Child
from app.routers.matching import get_matching_service
from app.services.matching_service import MatchingService


@pytest.fixture
def client(db, session_factory):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_matching_service] = lambda: MatchingService(db, session_factory=session_factory)
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestMatchingRouter:

    def test_run_matching(self, client, make_child, make_family):
        child = make_child()
        make_family(name="Rivera")

        response = client.post(f"/api/v1/matching/child/{child.id}/run")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["results"][0]["candidate_name"] == "Rivera"
        assert data["results"][0]["rank"] == 1

    def test_run_matching_unknown_pivot_is_200_with_failure(self, client):
        response = client.post("/api/v1/matching/child/999/run")

        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_persist_then_read_results(self, client, make_child, make_family):
        child = make_child()
        make_family()

        client.post(f"/api/v1/matching/child/{child.id}/run", params={"persist": "true"})
        response = client.get(f"/api/v1/matching/child/{child.id}/results")

        assert response.status_code == 200
        assert len(response.json()["results"]) == 1

    def test_batch_status(self, client):
        response = client.get("/api/v1/matching/batch/status")

        assert response.status_code == 200
        assert response.json()["status"] == "idle"

    def test_recalculate_single_pivot(self, client):
        with patch.object(recalculate_pivot, "send") as send:
            response = client.post(
                "/api/v1/matching/recalculate",
                json={"pivot_type": "child", "pivot_id": 4}
            )

        assert response.status_code == 202
        assert response.json()["scope"] == "pivot"
        send.assert_called_once()

    def test_recalculate_half_specified_pivot(self, client):
        response = client.post("/api/v1/matching/recalculate", json={"pivot_type": "child"})

        assert response.status_code == 422

    def test_status_update_requires_reason(self, client, make_child, make_family):
        child = make_child()
        make_family()
        client.post(f"/api/v1/matching/child/{child.id}/run", params={"persist": "true"})
        result_id = client.get(f"/api/v1/matching/child/{child.id}/results").json()["results"][0]["match_result_id"]

        response = client.patch(f"/api/v1/matches/{result_id}/status", json={"status": "Not Suitable"})
        assert response.status_code == 422

        response = client.patch(
            f"/api/v1/matches/{result_id}/status",
            json={"status": "Not Suitable", "reason_if_not_suitable": "Too far from school"}
        )
        assert response.status_code == 200
        assert response.json()["not_suitable_reason"] == "Too far from school"

    def test_status_update_unknown_result(self, client):
        response = client.patch("/api/v1/matches/999/status", json={"status": "On Hold"})

        assert response.status_code == 404


class TestRecordsRouter:

    def test_create_child(self, client, db):
        response = client.post("/api/v1/records/children", json={"name": "Ana", "age": 8, "gender": "Female"})

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "Needs Placement"
        assert db.get(Child, data["id"]) is not None

    def test_update_only_sent_fields(self, client, make_child):
        child = make_child(gender="Female")

        response = client.patch(f"/api/v1/records/children/{child.id}", json={"age": 9})

        assert response.status_code == 200
        assert response.json()["age"] == 9
        assert response.json()["gender"] == "Female"

    def test_preference_for_unknown_family(self, client):
        response = client.post("/api/v1/records/preferences", json={"family_id": 404})

        assert response.status_code == 404

    def test_delete_family(self, client, make_family):
        family = make_family()

        response = client.delete(f"/api/v1/records/families/{family.id}")

        assert response.status_code == 204

    def test_delete_unknown_record_type(self, client):
        response = client.delete("/api/v1/records/households/1")

        assert response.status_code == 404

    def test_invalid_payload(self, client):
        response = client.post("/api/v1/records/children", json={"name": "Ana", "special_needs_level": 7})

        assert response.status_code == 422


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["services"]["api"] == "running"
