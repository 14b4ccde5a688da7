"""
Tests for the completion reset operation.

Verifies:
- reset_one archives the live completion, then resets it
- Idempotence: an archived cycle is never archived or reset twice
- Failure semantics: read failure writes nothing, reset failure keeps the entry
- manual_reset guards (tenant flag, membership, tenant scoping, assignment)
"""

from datetime import datetime, timezone

import pytest

from isp_lifecycle.core.errors import (
    CompletionResetError,
    ExternalDependencyError,
    FeatureDisabledError,
    NotFoundError,
    ValidationError,
)
from isp_lifecycle.core.events import EventTypes
from isp_lifecycle.core.plan_year import plan_year_for
from isp_lifecycle.core.reset import CompletionResetService, ResetStatus
from isp_lifecycle.db.completion_log import CompletionLogStore
from isp_lifecycle.db.models import CompletionLogModel, as_utc
from isp_lifecycle.schemas import CompletionLogEntryCreate


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


START = utc(2024, 3, 15)
END = utc(2025, 3, 15)
NOW = utc(2025, 3, 15, 2)


@pytest.fixture
def client(make_client, assign):
    client = make_client(first_name="Ann", last_name="Lee")
    assign(client, "u-1")
    return client


@pytest.fixture
def service(db_session, tracker, identity, settings):
    return CompletionResetService(db_session, tracker, identity, settings)


class TestResetOne:
    """Tests for reset_one()."""

    def test_archives_completion_and_resets(self, service, client, tracker, db_session):
        tracker.mark_complete(client.artifact_ref, "u-1", utc(2024, 6, 1))

        outcome = service.reset_one(client, "u-1", START, END, now=NOW)

        assert outcome.status == ResetStatus.ARCHIVED
        assert outcome.archived
        assert as_utc(outcome.entry.completed_at) == utc(2024, 6, 1)
        assert as_utc(outcome.entry.plan_year_start) == START
        assert as_utc(outcome.entry.plan_year_end) == END
        assert as_utc(outcome.entry.archived_at) == NOW
        assert outcome.entry.notes is None
        assert outcome.entry.reviewer_name == "Amy Able"
        assert tracker.reset_calls == [(client.artifact_ref, "u-1")]
        assert tracker.get_current_completion(client.artifact_ref, "u-1") is None

    def test_archived_event(self, service, client):
        outcome = service.reset_one(client, "u-1", START, END, now=NOW)

        assert [e.type for e in outcome.events] == [EventTypes.COMPLETION_ARCHIVED]
        data = outcome.events[0].data
        assert data["client_id"] == client.id
        assert data["reviewer_id"] == "u-1"
        assert data["gap"] is True

    def test_no_completion_is_gap(self, service, client):
        outcome = service.reset_one(client, "u-1", START, END, now=NOW)
        assert outcome.entry.completed_at is None
        assert outcome.entry.is_gap

    def test_second_call_is_already_done(self, service, client, tracker, db_session):
        tracker.mark_complete(client.artifact_ref, "u-1")
        service.reset_one(client, "u-1", START, END, now=NOW)
        tracker.mark_complete(client.artifact_ref, "u-1")

        outcome = service.reset_one(client, "u-1", START, END, now=NOW)

        assert outcome.status == ResetStatus.ALREADY_DONE
        assert outcome.entry is None
        assert outcome.events == []
        assert len(tracker.reset_calls) == 1
        assert tracker.get_current_completion(client.artifact_ref, "u-1") is not None
        assert db_session.query(CompletionLogModel).count() == 1

    def test_lost_race_is_already_done(self, db_session, session_factory, client, tracker, identity, settings):
        """exists() said no, but another writer committed before our insert."""

        class StaleReadStore(CompletionLogStore):
            """Answers the first exists() from before the other writer committed."""

            stale = True

            def exists(self, client_id, reviewer_id, plan_year_start):
                if self.stale:
                    self.stale = False
                    return False
                return super().exists(client_id, reviewer_id, plan_year_start)

        other = session_factory()
        try:
            CompletionLogStore(other).append(
                CompletionLogEntryCreate(
                    client_id=client.id,
                    reviewer_id="u-1",
                    plan_year_start=START,
                    plan_year_end=END,
                    archived_at=NOW,
                )
            )
        finally:
            other.close()

        service = CompletionResetService(
            db_session, tracker, identity, settings, log_store=StaleReadStore(db_session)
        )
        outcome = service.reset_one(client, "u-1", START, END, now=NOW)

        assert outcome.status == ResetStatus.ALREADY_DONE
        assert tracker.reset_calls == []
        assert db_session.query(CompletionLogModel).count() == 1

    def test_read_failure_writes_nothing(self, service, client, tracker, db_session):
        tracker.fail_reads.add("u-1")

        with pytest.raises(ExternalDependencyError):
            service.reset_one(client, "u-1", START, END, now=NOW)

        assert db_session.query(CompletionLogModel).count() == 0
        assert tracker.reset_calls == []

    def test_reset_failure_keeps_entry(self, service, client, tracker, db_session):
        tracker.mark_complete(client.artifact_ref, "u-1", utc(2024, 6, 1))
        tracker.fail_resets.add("u-1")

        with pytest.raises(CompletionResetError) as exc_info:
            service.reset_one(client, "u-1", START, END, now=NOW)

        error = exc_info.value
        assert isinstance(error, ExternalDependencyError)
        assert error.entry is not None
        assert error.to_dict()["audit_recorded"] is True
        assert error.to_dict()["entry_id"] == error.entry.id
        assert CompletionLogStore(db_session).exists(client.id, "u-1", START)
        # Live state untouched
        assert tracker.get_current_completion(client.artifact_ref, "u-1") == utc(2024, 6, 1)

    def test_reset_failure_then_rerun_is_already_done(self, service, client, tracker):
        tracker.fail_resets.add("u-1")
        with pytest.raises(CompletionResetError):
            service.reset_one(client, "u-1", START, END, now=NOW)

        tracker.fail_resets.clear()
        outcome = service.reset_one(client, "u-1", START, END, now=NOW)
        assert outcome.status == ResetStatus.ALREADY_DONE

    def test_reviewer_name_looked_up_when_missing(self, service, client):
        outcome = service.reset_one(client, "u-2", START, END, now=NOW)
        assert outcome.entry.reviewer_name == "Zed Zulu"


class TestManualReset:
    """Tests for manual_reset()."""

    MANUAL_NOW = utc(2025, 9, 1, 15, 30)

    def test_requires_enabled_tenant(self, service, client):
        with pytest.raises(FeatureDisabledError):
            service.manual_reset("t1", client.id, "u-1", "admin", now=self.MANUAL_NOW)

    def test_performer_must_be_member(self, service, client, enable_tenant):
        enable_tenant("t1")
        with pytest.raises(ValidationError):
            service.manual_reset("t1", client.id, "u-1", "admin2", now=self.MANUAL_NOW)

    def test_client_in_other_tenant_not_found(self, service, client, enable_tenant):
        enable_tenant("t2")
        with pytest.raises(NotFoundError):
            service.manual_reset("t2", client.id, "u-1", "admin2", now=self.MANUAL_NOW)

    def test_unassigned_reviewer_not_found(self, service, client, enable_tenant):
        enable_tenant("t1")
        with pytest.raises(NotFoundError) as exc_info:
            service.manual_reset("t1", client.id, "u-2", "admin", now=self.MANUAL_NOW)
        assert exc_info.value.entity_kind == "Assignment"

    def test_archives_current_plan_year(self, service, client, tracker, enable_tenant):
        enable_tenant("t1")
        tracker.mark_complete(client.artifact_ref, "u-1", utc(2025, 4, 2))

        outcome = service.manual_reset("t1", client.id, "u-1", "admin", now=self.MANUAL_NOW)

        expected = plan_year_for(client.anchor_date, self.MANUAL_NOW, "UTC")
        assert outcome.archived
        assert as_utc(outcome.entry.plan_year_start) == expected.start == utc(2025, 3, 15)
        assert as_utc(outcome.entry.plan_year_end) == self.MANUAL_NOW
        assert outcome.entry.notes == "manual_reset"
        assert as_utc(outcome.entry.completed_at) == utc(2025, 4, 2)
        assert tracker.reset_calls == [(client.artifact_ref, "u-1")]

    def test_events_in_order(self, service, client, enable_tenant):
        enable_tenant("t1")
        outcome = service.manual_reset("t1", client.id, "u-1", "admin", now=self.MANUAL_NOW)

        assert [e.type for e in outcome.events] == [
            EventTypes.COMPLETION_ARCHIVED,
            EventTypes.COMPLETION_MANUALLY_RESET,
        ]
        assert outcome.events[1].data["performed_by"] == "admin"

    def test_after_scheduled_entry_is_already_done(self, service, client, tracker, enable_tenant, db_session):
        """A sweep already archived the plan year containing now."""
        enable_tenant("t1")
        current = plan_year_for(client.anchor_date, self.MANUAL_NOW, "UTC")
        service.reset_one(client, "u-1", current.start, current.end, now=current.start)
        tracker.reset_calls.clear()
        tracker.mark_complete(client.artifact_ref, "u-1")

        outcome = service.manual_reset("t1", client.id, "u-1", "admin", now=self.MANUAL_NOW)

        assert outcome.status == ResetStatus.ALREADY_DONE
        assert outcome.events == []
        assert tracker.reset_calls == []
        assert db_session.query(CompletionLogModel).count() == 1

    def test_second_manual_reset_same_year_is_already_done(self, service, client, tracker, enable_tenant):
        enable_tenant("t1")
        service.manual_reset("t1", client.id, "u-1", "admin", now=self.MANUAL_NOW)
        outcome = service.manual_reset("t1", client.id, "u-1", "admin", now=utc(2025, 10, 1))

        assert outcome.status == ResetStatus.ALREADY_DONE
        assert len(tracker.reset_calls) == 1

    def test_to_dict(self, service, client, enable_tenant):
        enable_tenant("t1")
        data = service.manual_reset("t1", client.id, "u-1", "admin", now=self.MANUAL_NOW).to_dict()

        assert data["status"] == "archived"
        assert data["entry"]["notes"] == "manual_reset"
        assert [e["type"] for e in data["events"]] == [
            "completion.archived",
            "completion.manually_reset",
        ]
