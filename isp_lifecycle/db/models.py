"""
SQLAlchemy models for the ISP lifecycle engine.

Four tables:
- clients: tracked compliance subjects, one tenant each
- assignments: reviewer <-> client responsibility windows (soft-closed)
- completion_log: append-only per-reviewer, per-plan-year snapshots
- tenant_settings: per-tenant feature flag
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .base import Base

SERVICE_TYPES = (
    "residential",
    "attendant_care",
    "dsa",
    "foster_care",
    "other",
)

STATUS_ACTIVE = "active"
STATUS_ARCHIVED = "archived"

client_status_enum = Enum(STATUS_ACTIVE, STATUS_ARCHIVED, name="client_status")
service_type_enum = Enum(*SERVICE_TYPES, name="client_service_type")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


class ClientModel(Base):
    """A tracked compliance subject owned by exactly one tenant."""

    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, index=True)

    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    # Lower-cased "first last", backs the per-tenant uniqueness rule
    name_key = Column(String(201), nullable=False)

    service_type = Column(service_type_enum, nullable=False)

    # The anniversary; month/day are denormalised for the daily selection query
    anchor_date = Column(Date, nullable=False)
    anchor_month = Column(Integer, nullable=False)
    anchor_day = Column(Integer, nullable=False)

    # Opaque reference to the companion course/document
    artifact_ref = Column(String(256), nullable=False)

    status = Column(client_status_enum, nullable=False, default=STATUS_ACTIVE)

    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_by = Column(String(64), nullable=True)

    assignments = relationship(
        "AssignmentModel", back_populates="client", order_by="AssignmentModel.id"
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "name_key", name="uq_clients_tenant_name"),
        Index("ix_clients_due", "status", "anchor_month", "anchor_day"),
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "service_type": self.service_type,
            "anchor_date": self.anchor_date.isoformat() if self.anchor_date else None,
            "artifact_ref": self.artifact_ref,
            "status": self.status,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "updated_by": self.updated_by,
        }


class AssignmentModel(Base):
    """One reviewer's responsibility window for one client.

    ``unassigned_at`` NULL means the assignment is active. Rows are closed,
    never deleted; at most one active row per (client, reviewer).
    """

    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    reviewer_id = Column(String(64), nullable=False, index=True)
    reviewer_name = Column(String(200), nullable=True)

    assigned_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    unassigned_at = Column(DateTime(timezone=True), nullable=True)
    assigned_by = Column(String(64), nullable=True)
    unassigned_by = Column(String(64), nullable=True)

    client = relationship("ClientModel", back_populates="assignments")

    __table_args__ = (
        Index(
            "uq_assignments_active",
            "client_id",
            "reviewer_id",
            unique=True,
            sqlite_where=text("unassigned_at IS NULL"),
            postgresql_where=text("unassigned_at IS NULL"),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.unassigned_at is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "reviewer_id": self.reviewer_id,
            "reviewer_name": self.reviewer_name,
            "assigned_at": _iso(self.assigned_at),
            "unassigned_at": _iso(self.unassigned_at),
            "assigned_by": self.assigned_by,
            "unassigned_by": self.unassigned_by,
        }


class CompletionLogModel(Base):
    """Immutable snapshot of one reviewer's outcome for one plan year.

    The (client_id, reviewer_id, plan_year_start) triple is unique; it is
    the idempotency key that keeps a cycle from being archived twice.
    """

    __tablename__ = "completion_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    reviewer_id = Column(String(64), nullable=False, index=True)
    # Display snapshot taken at archive time; cleared on anonymisation
    reviewer_name = Column(String(200), nullable=True)

    plan_year_start = Column(DateTime(timezone=True), nullable=False)
    plan_year_end = Column(DateTime(timezone=True), nullable=False)

    # NULL = gap, the reviewer did not finish this cycle
    completed_at = Column(DateTime(timezone=True), nullable=True)
    archived_at = Column(DateTime(timezone=True), nullable=False)

    notes = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "client_id",
            "reviewer_id",
            "plan_year_start",
            name="uq_completion_log_cycle",
        ),
        Index("ix_completion_log_client_year", "client_id", "plan_year_start"),
    )

    @property
    def is_gap(self) -> bool:
        return self.completed_at is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "client_id": self.client_id,
            "reviewer_id": self.reviewer_id,
            "reviewer_name": self.reviewer_name,
            "plan_year_start": _iso(self.plan_year_start),
            "plan_year_end": _iso(self.plan_year_end),
            "completed_at": _iso(self.completed_at),
            "archived_at": _iso(self.archived_at),
            "notes": self.notes,
        }


class TenantSettingsModel(Base):
    """Per-tenant feature flag for the lifecycle engine."""

    __tablename__ = "tenant_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False, unique=True)
    enabled = Column(Boolean, nullable=False, default=False)
    enabled_by = Column(String(64), nullable=True)
    enabled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "tenant_id": self.tenant_id,
            "enabled": bool(self.enabled),
            "enabled_by": self.enabled_by,
            "enabled_at": _iso(self.enabled_at),
            "updated_at": _iso(self.updated_at),
        }
