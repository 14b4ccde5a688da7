"""Test configuration and fixtures."""

import itertools
import logging
from datetime import date
from typing import List

import pytest
import structlog
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from isp_lifecycle.config import Settings
from isp_lifecycle.core.clients import AssignmentService, ClientService
from isp_lifecycle.core.errors import ExternalDependencyError
from isp_lifecycle.core.feature_gate import FeatureGate
from isp_lifecycle.core.interfaces import StaticIdentityProvider
from isp_lifecycle.db.base import Base
from isp_lifecycle.integrations.completion_tracker import StubCompletionTracker
from isp_lifecycle.schemas import ClientCreate
from isp_lifecycle.worker.notifications import NotificationAggregator, Notifier, TenantRenewalSummary
from isp_lifecycle.worker.sweep import RenewalSweep

MEMBERS = {
    "t1": {
        "admin": "Ada Admin",
        "u-1": "Amy Able",
        "u-2": "Zed Zulu",
        "u-3": "Max Mid",
    },
    "t2": {
        "admin2": "Bo Boss",
        "u-9": "Nia Nine",
    },
}


class FakeCompletionTracker(StubCompletionTracker):
    """Stub tracker with failure injection by artifact ref or reviewer id."""

    def __init__(self):
        super().__init__()
        self.fail_reads = set()
        self.fail_resets = set()

    def get_current_completion(self, artifact_ref, reviewer_id):
        if artifact_ref in self.fail_reads or reviewer_id in self.fail_reads:
            raise ExternalDependencyError("completion service unavailable")
        return super().get_current_completion(artifact_ref, reviewer_id)

    def reset_completion(self, artifact_ref, reviewer_id):
        if artifact_ref in self.fail_resets or reviewer_id in self.fail_resets:
            raise ExternalDependencyError("reset rejected")
        super().reset_completion(artifact_ref, reviewer_id)


class RecordingNotifier(Notifier):
    """Keeps every summary it is asked to send."""

    def __init__(self):
        self.sent: List[TenantRenewalSummary] = []

    def send(self, summary: TenantRenewalSummary) -> None:
        self.sent.append(summary)


@pytest.fixture(autouse=True)
def quiet_structlog():
    """Drop structlog output below CRITICAL so CLI output stays parseable."""
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL))
    yield
    structlog.reset_defaults()


@pytest.fixture
def engine(tmp_path):
    """A fresh file-backed SQLite database per test."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'isp.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(_env_file=None, timezone="UTC", sweep_page_size=2, sweep_max_workers=1)


@pytest.fixture
def identity():
    return StaticIdentityProvider(MEMBERS)


@pytest.fixture
def tracker():
    return FakeCompletionTracker()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_sweep(tracker, identity, settings, session_factory, notifier):
    """Build a RenewalSweep wired to the test database."""

    def _make(**kwargs):
        options = {
            "tracker": tracker,
            "identity": identity,
            "settings": settings,
            "session_factory": session_factory,
            "notifications": NotificationAggregator(notifier),
        }
        options.update(kwargs)
        return RenewalSweep(**options)

    return _make


@pytest.fixture
def make_client(db_session):
    """Create a client; anchor dates are never in the future for the service."""
    counter = itertools.count(1)

    def _make(
        tenant_id="t1",
        first_name=None,
        last_name="Lee",
        anchor_date=date(2024, 3, 15),
        service_type="residential",
        artifact_ref=None,
    ):
        n = next(counter)
        data = ClientCreate(
            tenant_id=tenant_id,
            first_name=first_name or f"Client{n}",
            last_name=last_name,
            service_type=service_type,
            anchor_date=anchor_date,
            artifact_ref=artifact_ref or f"course-{tenant_id}-{n}",
        )
        return ClientService(db_session).create(data, created_by="admin", today=anchor_date)

    return _make


@pytest.fixture
def assign(db_session, identity):
    def _assign(client, reviewer_id, assigned_by="admin"):
        return AssignmentService(db_session, identity).assign(client.id, reviewer_id, assigned_by)

    return _assign


@pytest.fixture
def enable_tenant(db_session):
    def _enable(tenant_id="t1", enabled_by="admin"):
        return FeatureGate(db_session).enable(tenant_id, enabled_by)

    return _enable
