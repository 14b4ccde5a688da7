"""
Tests for the client and assignment registry.
"""

from datetime import date

import pytest

from isp_lifecycle.config import Settings
from isp_lifecycle.core.clients import AssignmentService, ClientService
from isp_lifecycle.core.errors import NotFoundError, ValidationError
from isp_lifecycle.core.plan_year import local_today
from isp_lifecycle.schemas import ClientCreate, ClientUpdate


def client_data(**overrides):
    data = {
        "tenant_id": "t1",
        "first_name": "Ann",
        "last_name": "Lee",
        "service_type": "residential",
        "anchor_date": date(2024, 3, 15),
        "artifact_ref": "course-1",
    }
    data.update(overrides)
    return ClientCreate(**data)


class TestClientService:
    """Tests for ClientService."""

    def test_create(self, db_session):
        client = ClientService(db_session).create(client_data(), created_by="admin", today=date(2025, 1, 1))

        assert client.id is not None
        assert client.status == "active"
        assert client.anchor_month == 3
        assert client.anchor_day == 15
        assert client.display_name == "Ann Lee"
        assert client.updated_by == "admin"

    def test_unknown_service_type(self, db_session):
        with pytest.raises(ValidationError):
            ClientService(db_session).create(client_data(service_type="hotel"), today=date(2025, 1, 1))

    def test_future_anchor_rejected(self, db_session):
        with pytest.raises(ValidationError):
            ClientService(db_session).create(client_data(anchor_date=date(2025, 6, 1)), today=date(2025, 1, 1))

    def test_future_anchor_uses_configured_timezone(self, db_session):
        # Kiritimati (UTC+14) is always at least one day ahead of Pago Pago (UTC-11)
        kiritimati_today = local_today(None, "Pacific/Kiritimati")

        ahead = ClientService(db_session, Settings(_env_file=None, timezone="Pacific/Kiritimati"))
        assert ahead.create(client_data(anchor_date=kiritimati_today)).id is not None

        behind = ClientService(db_session, Settings(_env_file=None, timezone="Pacific/Pago_Pago"))
        with pytest.raises(ValidationError):
            behind.create(client_data(first_name="Bo", anchor_date=kiritimati_today))

    def test_duplicate_name_case_insensitive(self, db_session):
        service = ClientService(db_session)
        service.create(client_data(), today=date(2025, 1, 1))
        with pytest.raises(ValidationError):
            service.create(client_data(first_name="ANN", last_name="lee"), today=date(2025, 1, 1))

    def test_same_name_other_tenant_allowed(self, db_session):
        service = ClientService(db_session)
        service.create(client_data(), today=date(2025, 1, 1))
        other = service.create(client_data(tenant_id="t2"), today=date(2025, 1, 1))
        assert other.tenant_id == "t2"

    def test_update_anchor_moves_anniversary(self, db_session, make_client):
        client = make_client()
        updated = ClientService(db_session).update(
            "t1", client.id, ClientUpdate(anchor_date=date(2023, 7, 4)), updated_by="admin", today=date(2025, 1, 1)
        )
        assert updated.anchor_month == 7
        assert updated.anchor_day == 4

    def test_update_rename_collision(self, db_session, make_client):
        make_client(first_name="Ann")
        bo = make_client(first_name="Bo")
        with pytest.raises(ValidationError):
            ClientService(db_session).update("t1", bo.id, ClientUpdate(first_name="ann"))

    def test_get_scoped_to_tenant(self, db_session, make_client):
        client = make_client(tenant_id="t1")
        with pytest.raises(NotFoundError):
            ClientService(db_session).get("t2", client.id)

    def test_archive_and_unarchive(self, db_session, make_client):
        service = ClientService(db_session)
        client = make_client()

        service.archive("t1", client.id, "admin")
        with pytest.raises(NotFoundError):
            service.get("t1", client.id)
        assert service.get("t1", client.id, active_only=False).status == "archived"

        service.unarchive("t1", client.id, "admin")
        assert service.get("t1", client.id).status == "active"

    def test_list(self, db_session, make_client):
        make_client(first_name="Zoe", last_name="Adams")
        make_client(first_name="Al", last_name="Brown")
        make_client(tenant_id="t2", first_name="Other")

        names = [c.display_name for c in ClientService(db_session).list("t1")]
        assert names == ["Zoe Adams", "Al Brown"]
        assert [c.display_name for c in ClientService(db_session).list("t1", search="bro")] == ["Al Brown"]


class TestAssignmentService:
    """Tests for AssignmentService."""

    def test_assign_snapshots_name(self, db_session, identity, make_client):
        client = make_client()
        assignment = AssignmentService(db_session, identity).assign(client.id, "u-1", "admin")
        assert assignment.reviewer_name == "Amy Able"
        assert assignment.is_active

    def test_unknown_reviewer(self, db_session, identity, make_client):
        client = make_client()
        with pytest.raises(NotFoundError):
            AssignmentService(db_session, identity).assign(client.id, "ghost")

    def test_reviewer_from_other_tenant(self, db_session, identity, make_client):
        client = make_client(tenant_id="t1")
        with pytest.raises(ValidationError):
            AssignmentService(db_session, identity).assign(client.id, "u-9")

    def test_unknown_client(self, db_session, identity):
        with pytest.raises(NotFoundError):
            AssignmentService(db_session, identity).assign(999, "u-1")

    def test_already_assigned(self, db_session, identity, make_client):
        client = make_client()
        service = AssignmentService(db_session, identity)
        service.assign(client.id, "u-1")
        with pytest.raises(ValidationError):
            service.assign(client.id, "u-1")

    def test_remove_and_reassign_keeps_history(self, db_session, identity, make_client):
        client = make_client()
        service = AssignmentService(db_session, identity)
        service.assign(client.id, "u-1")
        removed = service.remove(client.id, "u-1", "admin")
        assert not removed.is_active
        assert removed.unassigned_by == "admin"

        service.assign(client.id, "u-1")

        assert len(service.history(client.id)) == 2
        assert len(service.history(client.id, include_active=False)) == 1
        assert [a.reviewer_id for a in service.active_for(client.id)] == ["u-1"]

    def test_remove_without_assignment(self, db_session, identity, make_client):
        client = make_client()
        with pytest.raises(NotFoundError):
            AssignmentService(db_session, identity).remove(client.id, "u-1")

    def test_clients_for_reviewer(self, db_session, identity, make_client):
        service = AssignmentService(db_session, identity)
        first = make_client(first_name="Ann", last_name="Adams")
        second = make_client(first_name="Bo", last_name="Brown")
        make_client(first_name="Cy", last_name="Cole")
        service.assign(first.id, "u-1")
        service.assign(second.id, "u-1")
        ClientService(db_session).archive("t1", second.id)

        assert [c.id for c in service.clients_for_reviewer("u-1", "t1")] == [first.id]
