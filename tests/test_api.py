"""
Tests for the HTTP API.

Uses FastAPI's TestClient with the database, tracker, identity and settings
dependencies overridden to point at the per-test fixtures.
"""

from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from isp_lifecycle.api import app
from isp_lifecycle.core.plan_year import plan_year_for
from isp_lifecycle.db.base import get_db
from isp_lifecycle.routes import get_app_settings, get_identity, get_session_factory, get_tracker


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def client(session_factory, tracker, identity, settings):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_tracker] = lambda: tracker
    app.dependency_overrides[get_identity] = lambda: identity
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def tracked(make_client, assign):
    tracked = make_client(first_name="Ann", last_name="Lee", anchor_date=date(2024, 3, 15))
    assign(tracked, "u-1")
    return tracked


class TestSystem:
    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_version(self, client):
        response = client.get("/version")
        assert response.status_code == 200
        assert "version" in response.json()


class TestClients:
    def test_create_and_list(self, client):
        response = client.post(
            "/clients",
            params={"created_by": "admin"},
            json={
                "tenant_id": "t1",
                "first_name": "Ann",
                "last_name": "Lee",
                "service_type": "residential",
                "anchor_date": "2024-03-15",
                "artifact_ref": "course-1",
            },
        )
        assert response.status_code == 201
        created = response.json()
        assert created["status"] == "active"

        listed = client.get("/clients", params={"tenant_id": "t1"}).json()
        assert [c["id"] for c in listed["clients"]] == [created["id"]]
        assert client.get("/clients", params={"tenant_id": "t2"}).json()["count"] == 0

    def test_create_invalid_service_type(self, client):
        response = client.post(
            "/clients",
            json={
                "tenant_id": "t1",
                "first_name": "Ann",
                "last_name": "Lee",
                "service_type": "hotel",
                "anchor_date": "2024-03-15",
                "artifact_ref": "course-1",
            },
        )
        assert response.status_code == 422
        assert response.json()["error"] == "validation_failed"

    def test_assign_and_remove_reviewer(self, client, make_client):
        tracked = make_client()

        response = client.post(
            f"/clients/{tracked.id}/reviewers",
            params={"tenant_id": "t1"},
            json={"reviewer_id": "u-1", "assigned_by": "admin"},
        )
        assert response.status_code == 201
        assert response.json()["reviewer_name"] == "Amy Able"

        response = client.delete(
            f"/clients/{tracked.id}/reviewers/u-1",
            params={"tenant_id": "t1", "unassigned_by": "admin"},
        )
        assert response.status_code == 200
        assert response.json()["unassigned_at"] is not None

    def test_assign_other_tenant_client_not_found(self, client, make_client):
        tracked = make_client(tenant_id="t1")
        response = client.post(
            f"/clients/{tracked.id}/reviewers",
            params={"tenant_id": "t2"},
            json={"reviewer_id": "u-9"},
        )
        assert response.status_code == 404


class TestCompletionLog:
    def test_log_newest_first(self, client, tracked, enable_tenant, tracker, make_sweep):
        enable_tenant("t1")
        tracker.mark_complete(tracked.artifact_ref, "u-1", utc(2024, 6, 1))
        make_sweep().run(now=utc(2025, 3, 15, 6))
        make_sweep().run(now=utc(2026, 3, 15, 6))

        response = client.get(f"/clients/{tracked.id}/completion-log", params={"tenant_id": "t1"})

        assert response.status_code == 200
        entries = response.json()["entries"]
        assert [e["plan_year_start"] for e in entries] == [
            "2025-03-15T00:00:00+00:00",
            "2024-03-15T00:00:00+00:00",
        ]
        assert entries[1]["completed_at"] == "2024-06-01T00:00:00+00:00"
        assert entries[0]["completed_at"] is None

        filtered = client.get(
            f"/clients/{tracked.id}/completion-log",
            params={"tenant_id": "t1", "plan_year_start": "2024-03-15T00:00:00+00:00"},
        ).json()
        assert filtered["count"] == 1

        gaps = client.get(f"/clients/{tracked.id}/gaps", params={"tenant_id": "t1"}).json()
        assert gaps["count"] == 1

        stats = client.get(f"/clients/{tracked.id}/stats", params={"tenant_id": "t1"}).json()
        assert stats == {"client_id": tracked.id, "total": 2, "completed": 1, "gaps": 1}

    def test_other_tenant_not_found(self, client, tracked):
        response = client.get(f"/clients/{tracked.id}/completion-log", params={"tenant_id": "t2"})
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_plan_year(self, client, tracked):
        response = client.get(
            f"/clients/{tracked.id}/plan-year",
            params={"tenant_id": "t1", "at": "2025-09-01T12:00:00+00:00"},
        )
        assert response.status_code == 200
        assert response.json() == {
            "client_id": tracked.id,
            "start": "2025-03-15T00:00:00+00:00",
            "end": "2026-03-15T00:00:00+00:00",
        }


class TestManualReset:
    def test_disabled_tenant_forbidden(self, client, tracked):
        response = client.post(
            f"/clients/{tracked.id}/reviewers/u-1/reset",
            json={"tenant_id": "t1", "performed_by": "admin"},
        )
        assert response.status_code == 403
        assert response.json()["error"] == "feature_disabled"

    def test_reset(self, client, tracked, enable_tenant, tracker):
        enable_tenant("t1")
        tracker.mark_complete(tracked.artifact_ref, "u-1")

        response = client.post(
            f"/clients/{tracked.id}/reviewers/u-1/reset",
            json={"tenant_id": "t1", "performed_by": "admin"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "archived"
        assert body["entry"]["notes"] == "manual_reset"
        assert body["entry"]["plan_year_start"] == plan_year_for(tracked.anchor_date).start.isoformat()
        assert tracker.reset_calls == [(tracked.artifact_ref, "u-1")]

        again = client.post(
            f"/clients/{tracked.id}/reviewers/u-1/reset",
            json={"tenant_id": "t1", "performed_by": "admin"},
        )
        assert again.json()["status"] == "already_done"

    def test_not_assigned(self, client, tracked, enable_tenant):
        enable_tenant("t1")
        response = client.post(
            f"/clients/{tracked.id}/reviewers/u-2/reset",
            json={"tenant_id": "t1", "performed_by": "admin"},
        )
        assert response.status_code == 404

    def test_performer_outside_tenant(self, client, tracked, enable_tenant):
        enable_tenant("t1")
        response = client.post(
            f"/clients/{tracked.id}/reviewers/u-1/reset",
            json={"tenant_id": "t1", "performed_by": "admin2"},
        )
        assert response.status_code == 422

    def test_reset_failure_reports_audit(self, client, tracked, enable_tenant, tracker):
        enable_tenant("t1")
        tracker.fail_resets.add("u-1")

        response = client.post(
            f"/clients/{tracked.id}/reviewers/u-1/reset",
            json={"tenant_id": "t1", "performed_by": "admin"},
        )

        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "completion_reset_failed"
        assert body["audit_recorded"] is True

    def test_read_failure_reports_no_audit(self, client, tracked, enable_tenant, tracker):
        enable_tenant("t1")
        tracker.fail_reads.add("u-1")

        response = client.post(
            f"/clients/{tracked.id}/reviewers/u-1/reset",
            json={"tenant_id": "t1", "performed_by": "admin"},
        )

        assert response.status_code == 502
        assert response.json()["audit_recorded"] is False


class TestTenantsAndSweeps:
    def test_tenant_settings(self, client):
        assert client.get("/tenants/t1/settings").json()["enabled"] is False

        response = client.post("/tenants/t1/settings", json={"enabled": True, "changed_by": "admin"})
        assert response.status_code == 200
        assert response.json()["enabled"] is True
        assert response.json()["enabled_by"] == "admin"
        assert client.get("/tenants/t1/settings").json()["enabled"] is True

        response = client.post("/tenants/t1/settings", json={"enabled": False, "changed_by": "admin"})
        assert response.json()["enabled"] is False

    def test_run_sweep(self, client):
        response = client.post("/sweeps")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["clients"]["processed"] == 0
