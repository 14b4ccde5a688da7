"""
Error taxonomy for the lifecycle engine.

Every error carries a stable ``code`` for programmatic handling and a
human-readable ``message``; ``to_dict()`` is what the API and the sweep
report serialise.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class LifecycleError(Exception):
    """Base class for engine errors."""

    code = "lifecycle_error"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        return {
            "error": self.code,
            "message": self.message,
        }


class ValidationError(LifecycleError):
    """Input rejected before anything was written."""

    code = "validation_failed"


class NotFoundError(LifecycleError):
    """A client, reviewer or assignment does not exist (in this tenant)."""

    code = "not_found"

    def __init__(self, entity_kind: str, entity_id: Any):
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        super().__init__(f"{entity_kind} '{entity_id}' not found")


class FeatureDisabledError(LifecycleError):
    """The tenant has not enabled the lifecycle engine."""

    code = "feature_disabled"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"ISP lifecycle is not enabled for tenant '{tenant_id}'")


class DuplicateEntryError(LifecycleError):
    """A completion log entry for this (client, reviewer, plan year) exists."""

    code = "duplicate_entry"

    def __init__(self, client_id: int, reviewer_id: str, plan_year_start: Any):
        self.client_id = client_id
        self.reviewer_id = reviewer_id
        self.plan_year_start = plan_year_start
        super().__init__(
            f"completion already archived for client {client_id}, "
            f"reviewer {reviewer_id}, plan year starting {plan_year_start}"
        )


class ExternalDependencyError(LifecycleError):
    """A collaborator (completion tracker, identity provider) failed."""

    code = "external_dependency_failed"


class CompletionResetError(ExternalDependencyError):
    """The live completion reset failed after the log entry was committed.

    The audit entry is kept; ``entry`` is the committed row so callers can
    report it and retry the reset out of band.
    """

    code = "completion_reset_failed"

    def __init__(self, message: str, entry: Any = None):
        self.entry = entry
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["audit_recorded"] = self.entry is not None
        if self.entry is not None:
            data["entry_id"] = self.entry.id
        return data
