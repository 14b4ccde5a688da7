"""
Renewal sweep - the daily batch run.

Flow:
1. Select: stream active clients of enabled tenants whose anniversary is today
2. Per client (own session): plan year ending today, active reviewers
3. Reset: archive + reset each reviewer, skipping cycles already archived
4. Isolate: a failing reviewer or client is recorded, the run continues
5. Notify: renewed clients grouped per tenant
6. Report: machine-readable summary of the run

Only a failure of the selection query aborts the run.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

import structlog
from sqlalchemy.orm import Session
from ulid import ULID

from ..config import Settings, get_settings
from ..core.clients import AssignmentService
from ..core.errors import FeatureDisabledError, LifecycleError, NotFoundError
from ..core.events import DomainEvent, EventTypes
from ..core.feature_gate import FeatureGate
from ..core.interfaces import CompletionTracker, IdentityProvider
from ..core.plan_year import PlanYear, anchor_days_for, local_today, plan_year_ending_on
from ..core.reset import CompletionResetService
from ..db.base import get_session_local
from ..db.models import STATUS_ACTIVE, ClientModel, TenantSettingsModel
from .notifications import NotificationAggregator, RenewedClient, TenantRenewalSummary

logger = structlog.get_logger()


@dataclass
class SweepError:
    """One recorded failure."""

    client_id: int
    tenant_id: Optional[str]
    code: str
    message: str
    reviewer_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "tenant_id": self.tenant_id,
            "reviewer_id": self.reviewer_id,
            "code": self.code,
            "message": self.message,
        }


@dataclass
class ClientResult:
    """Outcome of one client unit."""

    client_id: int
    tenant_id: str
    client_name: str
    plan_year: Optional[PlanYear] = None
    archived: int = 0
    skipped: int = 0
    errors: List[SweepError] = field(default_factory=list)
    events: List[DomainEvent] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors)


@dataclass
class SweepReport:
    """Summary of one sweep run."""

    run_date: date
    started_at: datetime
    run_id: str = field(default_factory=lambda: str(ULID()))
    finished_at: Optional[datetime] = None
    clients_processed: int = 0
    clients_failed: int = 0
    clients_skipped: int = 0
    clients_cancelled: int = 0
    reviewers_archived: int = 0
    reviewers_skipped: int = 0
    reviewers_failed: int = 0
    errors: List[SweepError] = field(default_factory=list)
    renewed: List[RenewedClient] = field(default_factory=list)
    notifications: List[TenantRenewalSummary] = field(default_factory=list)
    events: List[DomainEvent] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.clients_failed == 0

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": "ok" if self.ok else "partial_failure",
            "run_date": self.run_date.isoformat(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "clients": {
                "processed": self.clients_processed,
                "failed": self.clients_failed,
                "skipped": self.clients_skipped,
                "cancelled": self.clients_cancelled,
            },
            "reviewers": {
                "archived": self.reviewers_archived,
                "skipped": self.reviewers_skipped,
                "failed": self.reviewers_failed,
            },
            "errors": [error.to_dict() for error in self.errors],
            "notifications": [summary.to_dict() for summary in self.notifications],
        }


class RenewalSweep:
    """Finds clients due for renewal today and resets their reviewers."""

    def __init__(
        self,
        tracker: CompletionTracker,
        identity: IdentityProvider,
        settings: Optional[Settings] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        notifications: Optional[NotificationAggregator] = None,
        max_workers: Optional[int] = None,
        page_size: Optional[int] = None,
    ):
        """Initialize the sweep.

        Args:
            tracker: Completion tracker used to read and reset live state
            identity: Identity provider for reviewer display names
            settings: Settings (timezone, paging, concurrency, notify email)
            session_factory: Callable returning a new Session per client unit
            notifications: Aggregator for tenant summaries
            max_workers: Parallel client units (default from settings; 1 = sequential)
            page_size: Clients fetched per selection page (default from settings)
        """
        self.settings = settings or get_settings()
        self.tracker = tracker
        self.identity = identity
        self.session_factory = session_factory or get_session_local()
        self.notifications = notifications or NotificationAggregator(
            cc_email=self.settings.renewal_notify_email
        )
        self.max_workers = max_workers or self.settings.sweep_max_workers
        self.page_size = page_size or self.settings.sweep_page_size
        self._lock = threading.Lock()

    # Selection

    def due_client_pages(self, today: date) -> Iterator[List[int]]:
        """Yield pages of due client IDs using keyset pagination on id."""
        last_id = 0
        while True:
            with self.session_factory() as db:
                rows = (
                    db.query(ClientModel.id)
                    .join(
                        TenantSettingsModel,
                        TenantSettingsModel.tenant_id == ClientModel.tenant_id,
                    )
                    .filter(
                        ClientModel.status == STATUS_ACTIVE,
                        TenantSettingsModel.enabled.is_(True),
                        ClientModel.anchor_month == today.month,
                        ClientModel.anchor_day.in_(anchor_days_for(today)),
                        ClientModel.id > last_id,
                    )
                    .order_by(ClientModel.id)
                    .limit(self.page_size)
                    .all()
                )
            if not rows:
                return
            ids = [row[0] for row in rows]
            yield ids
            last_id = ids[-1]

    # Run

    def run(
        self,
        now: Optional[datetime] = None,
        cancel: Optional[threading.Event] = None,
        time_budget_seconds: Optional[float] = None,
    ) -> SweepReport:
        """Run one sweep.

        Args:
            now: The instant the sweep runs as (defaults to current UTC time)
            cancel: Set to stop scheduling further clients
            time_budget_seconds: Stop scheduling clients after this long

        Returns:
            SweepReport

        Raises:
            Exception: Whatever the client-selection query raised
        """
        now = now or datetime.now(timezone.utc)
        today = local_today(now, self.settings.timezone)
        budget = time_budget_seconds or self.settings.sweep_time_budget_seconds
        deadline = time.monotonic() + budget if budget else None

        def should_stop() -> bool:
            if cancel is not None and cancel.is_set():
                return True
            return deadline is not None and time.monotonic() >= deadline

        report = SweepReport(run_date=today, started_at=datetime.now(timezone.utc))
        log = logger.bind(run_id=report.run_id, run_date=today.isoformat())
        log.info("sweep_started", max_workers=self.max_workers)

        def unit(client_id: int) -> None:
            if should_stop():
                with self._lock:
                    report.clients_cancelled += 1
                return
            result = self._run_client_unit(client_id, today, now)
            self._record(report, result)

        pool = ThreadPoolExecutor(max_workers=self.max_workers) if self.max_workers > 1 else None
        try:
            for page in self.due_client_pages(today):
                if pool is None:
                    for client_id in page:
                        unit(client_id)
                else:
                    list(pool.map(unit, page))
        finally:
            if pool is not None:
                pool.shutdown(wait=True)

        report.notifications = self.notifications.dispatch(report.renewed)
        for summary in report.notifications:
            report.events.append(
                DomainEvent(type=EventTypes.RENEWAL_SUMMARY, data=summary.to_dict())
            )

        report.finished_at = datetime.now(timezone.utc)
        log.info(
            "sweep_finished",
            processed=report.clients_processed,
            failed=report.clients_failed,
            skipped=report.clients_skipped,
            cancelled=report.clients_cancelled,
            archived=report.reviewers_archived,
        )
        for error in report.errors:
            log.warning("sweep_error", **error.to_dict())

        return report

    def _run_client_unit(self, client_id: int, today: date, now: datetime) -> Optional[ClientResult]:
        try:
            return self.process_client(client_id, today, now)
        except (NotFoundError, FeatureDisabledError) as e:
            logger.info("sweep_client_skipped", client_id=client_id, reason=e.message)
            return None
        except LifecycleError as e:
            logger.error("sweep_client_failed", client_id=client_id, error=e.message)
            return self._failed_result(client_id, e.code, e.message)
        except Exception as e:
            logger.exception("sweep_client_failed", client_id=client_id, error=str(e))
            return self._failed_result(client_id, "unexpected_error", str(e))

    def _failed_result(self, client_id: int, code: str, message: str) -> ClientResult:
        result = ClientResult(client_id=client_id, tenant_id="", client_name="")
        result.errors.append(
            SweepError(client_id=client_id, tenant_id=None, code=code, message=message)
        )
        return result

    def _record(self, report: SweepReport, result: Optional[ClientResult]) -> None:
        with self._lock:
            if result is None:
                report.clients_skipped += 1
                return

            report.reviewers_archived += result.archived
            report.reviewers_skipped += result.skipped
            report.reviewers_failed += sum(1 for e in result.errors if e.reviewer_id)
            report.errors.extend(result.errors)
            report.events.extend(result.events)

            if result.failed:
                report.clients_failed += 1
                return

            report.clients_processed += 1
            report.renewed.append(
                RenewedClient(
                    tenant_id=result.tenant_id,
                    client_id=result.client_id,
                    client_name=result.client_name,
                    reviewer_count=result.archived,
                )
            )

    def process_client(self, client_id: int, today: date, now: datetime) -> ClientResult:
        """Renew one client in its own session.

        Raises:
            NotFoundError: The client disappeared or was archived after selection
            FeatureDisabledError: The tenant was disabled after selection
        """
        with self.session_factory() as db:
            client = db.get(ClientModel, client_id)
            if client is None or client.status != STATUS_ACTIVE:
                raise NotFoundError("Client", client_id)
            FeatureGate(db).require_enabled(client.tenant_id)

            plan_year = plan_year_ending_on(client.anchor_date, today, self.settings.timezone)
            result = ClientResult(
                client_id=client.id,
                tenant_id=client.tenant_id,
                client_name=client.display_name,
                plan_year=plan_year,
            )
            log = logger.bind(
                client_id=client.id,
                tenant_id=client.tenant_id,
                plan_year_start=plan_year.start.isoformat(),
            )

            assignments = AssignmentService(db, self.identity).active_for(client.id)
            reset = CompletionResetService(db, self.tracker, self.identity, self.settings)

            for assignment in assignments:
                try:
                    outcome = reset.reset_one(
                        client,
                        assignment.reviewer_id,
                        plan_year.start,
                        plan_year.end,
                        notes=None,
                        reviewer_name=assignment.reviewer_name,
                        now=now,
                    )
                except LifecycleError as e:
                    log.error("sweep_reviewer_failed", reviewer_id=assignment.reviewer_id, error=e.message)
                    db.rollback()
                    result.errors.append(
                        SweepError(
                            client_id=client.id,
                            tenant_id=client.tenant_id,
                            reviewer_id=assignment.reviewer_id,
                            code=e.code,
                            message=e.message,
                        )
                    )
                    continue
                except Exception as e:
                    log.exception("sweep_reviewer_failed", reviewer_id=assignment.reviewer_id, error=str(e))
                    db.rollback()
                    result.errors.append(
                        SweepError(
                            client_id=client.id,
                            tenant_id=client.tenant_id,
                            reviewer_id=assignment.reviewer_id,
                            code="unexpected_error",
                            message=str(e),
                        )
                    )
                    continue

                if outcome.archived:
                    result.archived += 1
                    result.events.extend(outcome.events)
                else:
                    log.info("sweep_reviewer_skipped", reviewer_id=assignment.reviewer_id)
                    result.skipped += 1

            if not result.failed:
                client.updated_at = now
                db.commit()
                result.events.append(
                    DomainEvent(
                        type=EventTypes.CLIENT_RENEWED,
                        data={
                            "client_id": client.id,
                            "tenant_id": client.tenant_id,
                            "plan_year_start": plan_year.start.isoformat(),
                            "plan_year_end": plan_year.end.isoformat(),
                            "reviewer_count": result.archived,
                        },
                    )
                )

            log.info(
                "sweep_client_processed",
                archived=result.archived,
                skipped=result.skipped,
                failed=len(result.errors),
            )
            return result
