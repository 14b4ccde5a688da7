"""
Completion reset operation.

Archive the reviewer's current completion into the completion log, then
clear the live completion so a new cycle can begin. Used identically by the
renewal sweep and by administrator-triggered manual resets.

Guarantees:
- Idempotent per (client, reviewer, plan_year_start): a second call, or the
  loser of a race against another writer, returns ALREADY_DONE and does not
  touch the completion tracker.
- The log entry is committed before the live reset is attempted and is never
  rolled back. If the live reset fails, CompletionResetError carries the
  committed entry so the reset can be retried out of band.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db.completion_log import CompletionLogStore
from ..db.models import ClientModel, CompletionLogModel
from ..schemas import MANUAL_RESET_NOTE, CompletionLogEntryCreate
from .clients import AssignmentService, ClientService
from .errors import (
    CompletionResetError,
    DuplicateEntryError,
    ExternalDependencyError,
    NotFoundError,
    ValidationError,
)
from .events import DomainEvent, EventTypes
from .feature_gate import FeatureGate
from .interfaces import CompletionTracker, IdentityProvider
from .plan_year import plan_year_for

logger = structlog.get_logger()


class ResetStatus(str, Enum):
    """Result of a reset attempt."""

    ARCHIVED = "archived"
    ALREADY_DONE = "already_done"


@dataclass
class ResetOutcome:
    """What a reset did, plus the events it raised, in order."""

    status: ResetStatus
    client_id: int
    reviewer_id: str
    plan_year_start: datetime
    entry: Optional[CompletionLogModel] = None
    events: List[DomainEvent] = field(default_factory=list)

    @property
    def archived(self) -> bool:
        return self.status == ResetStatus.ARCHIVED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "client_id": self.client_id,
            "reviewer_id": self.reviewer_id,
            "plan_year_start": self.plan_year_start.isoformat(),
            "entry": self.entry.to_dict() if self.entry is not None else None,
            "events": [event.to_dict() for event in self.events],
        }


class CompletionResetService:
    """Archive-then-reset for one reviewer on one client."""

    def __init__(
        self,
        db: Session,
        tracker: CompletionTracker,
        identity: IdentityProvider,
        settings: Optional[Settings] = None,
        log_store: Optional[CompletionLogStore] = None,
    ):
        self.db = db
        self.tracker = tracker
        self.identity = identity
        self.settings = settings or get_settings()
        self.log_store = log_store or CompletionLogStore(db)

    def reset_one(
        self,
        client: ClientModel,
        reviewer_id: str,
        plan_year_start: datetime,
        plan_year_end: datetime,
        notes: Optional[str] = None,
        reviewer_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ResetOutcome:
        """Archive the reviewer's completion for a plan year and reset it.

        Args:
            client: Client whose artifact is being reset
            reviewer_id: Reviewer identity ID
            plan_year_start: Start of the plan year being closed
            plan_year_end: End of the plan year being closed
            notes: None for scheduled renewals, ``manual_reset`` for manual ones
            reviewer_name: Display snapshot to store (looked up if omitted)
            now: Archive timestamp (defaults to current UTC time)

        Returns:
            ResetOutcome with status ARCHIVED or ALREADY_DONE

        Raises:
            ExternalDependencyError: Reading the current completion failed;
                nothing was written
            CompletionResetError: The entry was archived but the live reset
                failed
        """
        log = logger.bind(
            client_id=client.id,
            reviewer_id=reviewer_id,
            plan_year_start=plan_year_start.isoformat(),
        )

        if self.log_store.exists(client.id, reviewer_id, plan_year_start):
            log.info("reset_already_done")
            return ResetOutcome(
                status=ResetStatus.ALREADY_DONE,
                client_id=client.id,
                reviewer_id=reviewer_id,
                plan_year_start=plan_year_start,
            )

        try:
            completed_at = self.tracker.get_current_completion(client.artifact_ref, reviewer_id)
        except ExternalDependencyError:
            raise
        except Exception as e:
            raise ExternalDependencyError(
                f"could not read completion for reviewer {reviewer_id}: {e}"
            ) from e

        if reviewer_name is None:
            reviewer_name = self.identity.display_name(reviewer_id)

        entry = CompletionLogEntryCreate(
            client_id=client.id,
            reviewer_id=reviewer_id,
            reviewer_name=reviewer_name,
            plan_year_start=plan_year_start,
            plan_year_end=plan_year_end,
            completed_at=completed_at,
            archived_at=now or datetime.now(timezone.utc),
            notes=notes,
        )

        try:
            row = self.log_store.append(entry)
        except DuplicateEntryError:
            # Another writer archived this cycle between exists() and append()
            log.info("reset_lost_race")
            return ResetOutcome(
                status=ResetStatus.ALREADY_DONE,
                client_id=client.id,
                reviewer_id=reviewer_id,
                plan_year_start=plan_year_start,
            )

        log.info("completion_archived", entry_id=row.id, gap=row.is_gap)

        try:
            self.tracker.reset_completion(client.artifact_ref, reviewer_id)
        except Exception as e:
            log.error("completion_reset_failed", entry_id=row.id, error=str(e))
            raise CompletionResetError(
                f"completion archived (entry {row.id}) but live reset failed: {e}",
                entry=row,
            ) from e

        log.info("completion_reset")

        return ResetOutcome(
            status=ResetStatus.ARCHIVED,
            client_id=client.id,
            reviewer_id=reviewer_id,
            plan_year_start=plan_year_start,
            entry=row,
            events=[
                DomainEvent(
                    type=EventTypes.COMPLETION_ARCHIVED,
                    data={
                        "client_id": client.id,
                        "tenant_id": client.tenant_id,
                        "reviewer_id": reviewer_id,
                        "entry_id": row.id,
                        "gap": row.is_gap,
                    },
                )
            ],
        )

    def manual_reset(
        self,
        tenant_id: str,
        client_id: int,
        reviewer_id: str,
        performed_by: str,
        now: Optional[datetime] = None,
    ) -> ResetOutcome:
        """Administrator-triggered out-of-cycle reset.

        Archives the plan year containing ``now`` with its end set to ``now``
        and the ``manual_reset`` note. If the cycle is already archived
        (by the sweep or an earlier manual reset) this is a no-op.

        Raises:
            FeatureDisabledError: Tenant has not enabled the engine
            ValidationError: ``performed_by`` is not a member of the tenant
            NotFoundError: Client not in tenant, or reviewer not assigned
        """
        now = now or datetime.now(timezone.utc)

        FeatureGate(self.db).require_enabled(tenant_id)
        if not self.identity.is_member(performed_by, tenant_id):
            raise ValidationError(f"'{performed_by}' is not a member of tenant '{tenant_id}'")

        client = ClientService(self.db, self.settings).get(tenant_id, client_id)
        assignment = AssignmentService(self.db, self.identity).get_active(client.id, reviewer_id)
        if assignment is None:
            raise NotFoundError("Assignment", f"{client_id}/{reviewer_id}")

        plan_year = plan_year_for(client.anchor_date, now, self.settings.timezone)

        outcome = self.reset_one(
            client,
            reviewer_id,
            plan_year.start,
            now,
            notes=MANUAL_RESET_NOTE,
            reviewer_name=assignment.reviewer_name,
            now=now,
        )

        if outcome.archived:
            outcome.events.append(
                DomainEvent(
                    type=EventTypes.COMPLETION_MANUALLY_RESET,
                    data={
                        "client_id": client.id,
                        "tenant_id": tenant_id,
                        "reviewer_id": reviewer_id,
                        "performed_by": performed_by,
                        "plan_year_start": plan_year.start.isoformat(),
                    },
                )
            )
            logger.info(
                "completion_manually_reset",
                client_id=client.id,
                reviewer_id=reviewer_id,
                performed_by=performed_by,
            )

        return outcome
