"""
Personal-data export and anonymisation for staff identities.

Nothing is deleted: the completion log must survive a reviewer leaving, so
anonymisation blanks the identity's name snapshots and actor columns.
"""

from __future__ import annotations

from typing import Any, Dict

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..db.completion_log import CompletionLogStore
from ..db.models import (
    AssignmentModel,
    ClientModel,
    CompletionLogModel,
    TenantSettingsModel,
)

logger = structlog.get_logger()


def export_identity_data(db: Session, identity_id: str) -> Dict[str, Any]:
    """Everything stored about an identity.

    Args:
        db: Database session
        identity_id: Staff identity ID

    Returns:
        Dict with the identity's assignments (as reviewer) and completion history
    """
    assignments = (
        db.query(AssignmentModel)
        .filter(AssignmentModel.reviewer_id == identity_id)
        .order_by(AssignmentModel.assigned_at.asc(), AssignmentModel.id.asc())
        .all()
    )
    entries = (
        db.query(CompletionLogModel)
        .filter(CompletionLogModel.reviewer_id == identity_id)
        .order_by(CompletionLogModel.plan_year_start.asc(), CompletionLogModel.id.asc())
        .all()
    )

    return {
        "identity_id": identity_id,
        "assignments": [a.to_dict() for a in assignments],
        "completion_log": [e.to_dict() for e in entries],
    }


def anonymize_identity(db: Session, identity_id: str) -> Dict[str, int]:
    """Blank every reference to an identity's name or actions.

    Args:
        db: Database session
        identity_id: Staff identity ID

    Returns:
        Rows touched per table
    """
    counts = {}

    counts["assignments_reviewer"] = db.execute(
        update(AssignmentModel)
        .where(AssignmentModel.reviewer_id == identity_id)
        .values(reviewer_name=None)
    ).rowcount
    counts["assignments_assigned_by"] = db.execute(
        update(AssignmentModel)
        .where(AssignmentModel.assigned_by == identity_id)
        .values(assigned_by=None)
    ).rowcount
    counts["assignments_unassigned_by"] = db.execute(
        update(AssignmentModel)
        .where(AssignmentModel.unassigned_by == identity_id)
        .values(unassigned_by=None)
    ).rowcount
    counts["clients"] = db.execute(
        update(ClientModel)
        .where(ClientModel.updated_by == identity_id)
        .values(updated_by=None)
    ).rowcount
    counts["tenant_settings"] = db.execute(
        update(TenantSettingsModel)
        .where(TenantSettingsModel.enabled_by == identity_id)
        .values(enabled_by=None)
    ).rowcount
    counts["completion_log"] = CompletionLogStore(db).anonymize_reviewer(identity_id, commit=False)

    db.commit()
    logger.info("identity_anonymized", identity_id=identity_id, **counts)
    return counts
