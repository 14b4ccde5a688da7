"""
Completion Log Store.

Append-only ledger of per-reviewer, per-plan-year completion snapshots.
Rows are never updated or deleted; the one exception is blanking a
reviewer's display snapshot when an identity is anonymised.

The (client_id, reviewer_id, plan_year_start) unique constraint is enforced
by the database, so concurrent writers cannot archive the same cycle twice:
the loser of a race gets DuplicateEntryError.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, func, nulls_last, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from ..core.errors import DuplicateEntryError, ValidationError
from ..schemas import MANUAL_RESET_NOTE, CompletionLogEntryCreate
from .models import ClientModel, CompletionLogModel, as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionStats:
    """Aggregate counts for one client's completion log."""

    total: int
    completed: int
    gaps: int

    def to_dict(self) -> Dict[str, Any]:
        return {"total": self.total, "completed": self.completed, "gaps": self.gaps}


class CompletionLogStore:
    """Service for the completion log table.

    Usage:
        store = CompletionLogStore(db_session)
        if not store.exists(client.id, "u-7", plan_year.start):
            store.append(entry)
    """

    def __init__(self, db: Session):
        self.db = db

    def exists(self, client_id: int, reviewer_id: str, plan_year_start: datetime) -> bool:
        """Check whether this cycle has already been archived.

        Args:
            client_id: Client ID
            reviewer_id: Reviewer identity ID
            plan_year_start: Start boundary of the plan year

        Returns:
            True if an entry exists for the exact triple
        """
        found = (
            self.db.query(CompletionLogModel.id)
            .filter(
                CompletionLogModel.client_id == client_id,
                CompletionLogModel.reviewer_id == reviewer_id,
                CompletionLogModel.plan_year_start == as_utc(plan_year_start),
            )
            .first()
        )
        return found is not None

    def append(self, entry: CompletionLogEntryCreate) -> CompletionLogModel:
        """Insert one immutable entry and commit it.

        Args:
            entry: The snapshot to archive

        Returns:
            The committed CompletionLogModel

        Raises:
            DuplicateEntryError: The triple is already archived
            ValidationError: Unknown notes value
        """
        if entry.notes not in (None, MANUAL_RESET_NOTE):
            raise ValidationError(f"unknown completion log note: {entry.notes!r}")

        row = CompletionLogModel(
            client_id=entry.client_id,
            reviewer_id=entry.reviewer_id,
            reviewer_name=entry.reviewer_name,
            plan_year_start=as_utc(entry.plan_year_start),
            plan_year_end=as_utc(entry.plan_year_end),
            completed_at=as_utc(entry.completed_at),
            archived_at=as_utc(entry.archived_at),
            notes=entry.notes,
        )

        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if self.exists(entry.client_id, entry.reviewer_id, entry.plan_year_start):
                logger.info(
                    "Duplicate completion log entry rejected: client=%s reviewer=%s start=%s",
                    entry.client_id,
                    entry.reviewer_id,
                    entry.plan_year_start.isoformat(),
                )
                raise DuplicateEntryError(
                    entry.client_id, entry.reviewer_id, entry.plan_year_start
                ) from exc
            raise

        self.db.refresh(row)
        return row

    def _ordered(self, query: Query) -> Query:
        return query.order_by(
            desc(CompletionLogModel.plan_year_start),
            nulls_last(CompletionLogModel.reviewer_name.asc()),
            CompletionLogModel.reviewer_id.asc(),
        )

    def query(
        self,
        client_id: Optional[int] = None,
        reviewer_id: Optional[str] = None,
        plan_year_start: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[CompletionLogModel]:
        """List entries matching any combination of filters.

        Args:
            client_id: Optional client filter
            reviewer_id: Optional reviewer filter
            plan_year_start: Optional exact plan-year start filter
            limit: Maximum number of entries to return (None = all)
            offset: Number of entries to skip

        Returns:
            Entries, newest plan year first, then by reviewer name
        """
        query = self.db.query(CompletionLogModel)

        if client_id is not None:
            query = query.filter(CompletionLogModel.client_id == client_id)
        if reviewer_id is not None:
            query = query.filter(CompletionLogModel.reviewer_id == reviewer_id)
        if plan_year_start is not None:
            query = query.filter(
                CompletionLogModel.plan_year_start == as_utc(plan_year_start)
            )

        query = self._ordered(query).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def gaps(self, client_id: int) -> List[CompletionLogModel]:
        """Entries where the reviewer did not finish the cycle."""
        query = self.db.query(CompletionLogModel).filter(
            CompletionLogModel.client_id == client_id,
            CompletionLogModel.completed_at.is_(None),
        )
        return self._ordered(query).all()

    def stats(self, client_id: int) -> CompletionStats:
        """Total, completed and gap counts for a client."""
        total, completed = (
            self.db.query(
                func.count(CompletionLogModel.id),
                func.count(CompletionLogModel.completed_at),
            )
            .filter(CompletionLogModel.client_id == client_id)
            .one()
        )
        total = total or 0
        completed = completed or 0
        return CompletionStats(total=total, completed=completed, gaps=total - completed)

    def plan_years(self, client_id: int) -> List[datetime]:
        """Distinct plan-year starts recorded for a client, newest first."""
        rows = (
            self.db.query(CompletionLogModel.plan_year_start)
            .filter(CompletionLogModel.client_id == client_id)
            .distinct()
            .order_by(desc(CompletionLogModel.plan_year_start))
            .all()
        )
        return [as_utc(row[0]) for row in rows]

    def reviewer_history(self, reviewer_id: str, tenant_id: str) -> List[CompletionLogModel]:
        """One reviewer's entries across a tenant's clients."""
        return (
            self.db.query(CompletionLogModel)
            .join(ClientModel, ClientModel.id == CompletionLogModel.client_id)
            .filter(
                CompletionLogModel.reviewer_id == reviewer_id,
                ClientModel.tenant_id == tenant_id,
            )
            .order_by(
                desc(CompletionLogModel.plan_year_start),
                ClientModel.last_name.asc(),
                ClientModel.first_name.asc(),
            )
            .all()
        )

    def anonymize_reviewer(self, reviewer_id: str, commit: bool = True) -> int:
        """Blank the reviewer's display snapshot; rows are kept.

        Args:
            reviewer_id: Reviewer identity ID
            commit: Commit immediately; pass False to join a larger transaction

        Returns:
            Number of entries touched
        """
        result = self.db.execute(
            update(CompletionLogModel)
            .where(CompletionLogModel.reviewer_id == reviewer_id)
            .values(reviewer_name=None)
        )
        if commit:
            self.db.commit()
        return result.rowcount or 0
