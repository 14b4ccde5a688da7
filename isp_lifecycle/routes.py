"""
ISP lifecycle API routes.

Client-scoped endpoints take a ``tenant_id`` query parameter and answer 404
for clients outside that tenant. Engine errors are mapped to HTTP statuses
by the handler installed in ``api.py``.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .core.clients import AssignmentService, ClientService
from .core.feature_gate import FeatureGate
from .core.interfaces import CompletionTracker, IdentityProvider
from .core.plan_year import plan_year_for
from .core.reset import CompletionResetService
from .db.base import get_db, get_session_local
from .db.completion_log import CompletionLogStore
from .integrations import get_completion_tracker, get_identity_provider
from .schemas import AssignmentCreate, ClientCreate, ManualResetRequest, TenantSettingsUpdate
from .worker.sweep import RenewalSweep

router = APIRouter(tags=["ISP lifecycle"])

_tracker: Optional[CompletionTracker] = None
_identity: Optional[IdentityProvider] = None


def get_app_settings() -> Settings:
    return get_settings()


def get_tracker() -> CompletionTracker:
    """Completion tracker shared by all requests."""
    global _tracker
    if _tracker is None:
        _tracker = get_completion_tracker(get_settings())
    return _tracker


def get_identity() -> IdentityProvider:
    """Identity provider shared by all requests."""
    global _identity
    if _identity is None:
        _identity = get_identity_provider(get_settings())
    return _identity


def get_session_factory() -> Callable[[], Session]:
    return get_session_local()


# =============================================================================
# Client registry
# =============================================================================


@router.post("/clients", status_code=201)
def create_client(
    data: ClientCreate,
    created_by: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """Start tracking a client."""
    client = ClientService(db, settings).create(data, created_by=created_by)
    return client.to_dict()


@router.get("/clients")
def list_clients(
    tenant_id: str,
    status: Optional[str] = Query("active"),
    search: str = Query(""),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """List a tenant's clients."""
    clients = ClientService(db).list(
        tenant_id, status=status, search=search, limit=limit, offset=offset
    )
    return {
        "clients": [c.to_dict() for c in clients],
        "count": len(clients),
    }


@router.post("/clients/{client_id}/reviewers", status_code=201)
def assign_reviewer(
    client_id: int,
    data: AssignmentCreate,
    tenant_id: str,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity),
) -> Dict[str, Any]:
    """Assign a reviewer to a client."""
    ClientService(db).get(tenant_id, client_id)
    assignment = AssignmentService(db, identity).assign(
        client_id, data.reviewer_id, assigned_by=data.assigned_by
    )
    return assignment.to_dict()


@router.delete("/clients/{client_id}/reviewers/{reviewer_id}")
def remove_reviewer(
    client_id: int,
    reviewer_id: str,
    tenant_id: str,
    unassigned_by: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity),
) -> Dict[str, Any]:
    """Close a reviewer's assignment. History is kept."""
    ClientService(db).get(tenant_id, client_id, active_only=False)
    assignment = AssignmentService(db, identity).remove(
        client_id, reviewer_id, unassigned_by=unassigned_by
    )
    return assignment.to_dict()


# =============================================================================
# Completion log
# =============================================================================


@router.get("/clients/{client_id}/completion-log")
def get_completion_log(
    client_id: int,
    tenant_id: str,
    reviewer_id: Optional[str] = Query(None),
    plan_year_start: Optional[datetime] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Completion history, newest plan year first."""
    ClientService(db).get(tenant_id, client_id, active_only=False)
    entries = CompletionLogStore(db).query(
        client_id=client_id,
        reviewer_id=reviewer_id,
        plan_year_start=plan_year_start,
        limit=limit,
        offset=offset,
    )
    return {
        "client_id": client_id,
        "entries": [e.to_dict() for e in entries],
        "count": len(entries),
    }


@router.get("/clients/{client_id}/gaps")
def get_gaps(
    client_id: int,
    tenant_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Archived cycles with no completion."""
    ClientService(db).get(tenant_id, client_id, active_only=False)
    gaps = CompletionLogStore(db).gaps(client_id)
    return {
        "client_id": client_id,
        "gaps": [e.to_dict() for e in gaps],
        "count": len(gaps),
    }


@router.get("/clients/{client_id}/stats")
def get_stats(
    client_id: int,
    tenant_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Completed vs. gap counts for a client."""
    ClientService(db).get(tenant_id, client_id, active_only=False)
    stats = CompletionLogStore(db).stats(client_id)
    return {"client_id": client_id, **stats.to_dict()}


@router.get("/clients/{client_id}/plan-year")
def get_plan_year(
    client_id: int,
    tenant_id: str,
    at: Optional[datetime] = Query(None, description="Instant to evaluate (default: now)"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """The plan year containing ``at``."""
    client = ClientService(db).get(tenant_id, client_id, active_only=False)
    plan_year = plan_year_for(client.anchor_date, at, settings.timezone)
    return {"client_id": client_id, **plan_year.to_dict()}


# =============================================================================
# Resets and sweeps
# =============================================================================


@router.post("/clients/{client_id}/reviewers/{reviewer_id}/reset")
def manual_reset(
    client_id: int,
    reviewer_id: str,
    request: ManualResetRequest,
    db: Session = Depends(get_db),
    tracker: CompletionTracker = Depends(get_tracker),
    identity: IdentityProvider = Depends(get_identity),
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """Archive and reset one reviewer's current cycle now."""
    service = CompletionResetService(db, tracker, identity, settings)
    outcome = service.manual_reset(
        request.tenant_id, client_id, reviewer_id, request.performed_by
    )
    return outcome.to_dict()


@router.post("/sweeps")
def run_sweep(
    tracker: CompletionTracker = Depends(get_tracker),
    identity: IdentityProvider = Depends(get_identity),
    settings: Settings = Depends(get_app_settings),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> Dict[str, Any]:
    """Run the renewal sweep now and return its report."""
    sweep = RenewalSweep(
        tracker=tracker,
        identity=identity,
        settings=settings,
        session_factory=session_factory,
    )
    return sweep.run().to_dict()


# =============================================================================
# Tenant settings
# =============================================================================


@router.get("/tenants/{tenant_id}/settings")
def get_tenant_settings(
    tenant_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Whether the engine is enabled for a tenant."""
    row = FeatureGate(db).get(tenant_id)
    if row is None:
        return {"tenant_id": tenant_id, "enabled": False}
    return row.to_dict()


@router.post("/tenants/{tenant_id}/settings")
def update_tenant_settings(
    tenant_id: str,
    data: TenantSettingsUpdate,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Enable or disable the engine for a tenant."""
    gate = FeatureGate(db)
    if data.enabled:
        row = gate.enable(tenant_id, data.changed_by)
    else:
        row = gate.disable(tenant_id)
    if row is None:
        return {"tenant_id": tenant_id, "enabled": False}
    return row.to_dict()
