"""
Request and record schemas.

Pydantic models describing the shapes that cross the service boundary.
Business rules (future anchor dates, duplicate names) are enforced by the
services, which raise the engine's own ValidationError.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, constr

MANUAL_RESET_NOTE = "manual_reset"


class ClientCreate(BaseModel):
    """Fields needed to start tracking a client."""

    model_config = ConfigDict(extra="forbid")

    tenant_id: constr(min_length=1, max_length=64)
    first_name: constr(strip_whitespace=True, min_length=1, max_length=100)
    last_name: constr(strip_whitespace=True, min_length=1, max_length=100)
    service_type: str = Field(..., description="One of the supported service types")
    anchor_date: date = Field(..., description="ISP anniversary; month/day recur yearly")
    artifact_ref: constr(min_length=1, max_length=256) = Field(
        ..., description="Reference to the provisioned course/document"
    )


class ClientUpdate(BaseModel):
    """Explicit edit of a client's descriptive fields."""

    model_config = ConfigDict(extra="forbid")

    first_name: Optional[constr(strip_whitespace=True, min_length=1, max_length=100)] = None
    last_name: Optional[constr(strip_whitespace=True, min_length=1, max_length=100)] = None
    service_type: Optional[str] = None
    anchor_date: Optional[date] = None


class CompletionLogEntryCreate(BaseModel):
    """A snapshot about to be appended to the completion log."""

    model_config = ConfigDict(extra="forbid")

    client_id: int
    reviewer_id: constr(min_length=1, max_length=64)
    reviewer_name: Optional[str] = None
    plan_year_start: datetime
    plan_year_end: datetime
    completed_at: Optional[datetime] = None
    archived_at: datetime
    notes: Optional[str] = None


class ManualResetRequest(BaseModel):
    """Administrator-triggered out-of-cycle reset."""

    model_config = ConfigDict(extra="forbid")

    tenant_id: constr(min_length=1, max_length=64)
    performed_by: constr(min_length=1, max_length=64)


class TenantSettingsUpdate(BaseModel):
    """Enable or disable the engine for a tenant."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool
    changed_by: constr(min_length=1, max_length=64)


class AssignmentCreate(BaseModel):
    """Assign a reviewer to a client."""

    model_config = ConfigDict(extra="forbid")

    reviewer_id: constr(min_length=1, max_length=64)
    assigned_by: Optional[constr(min_length=1, max_length=64)] = None
