"""
Daily renewal scheduler.

Waits until the configured local time of day, runs one sweep, and repeats.
SIGINT/SIGTERM stop the loop; a sweep already running is asked to stop
scheduling new clients and the loop exits once it returns.
"""
from __future__ import annotations

import logging
import signal
import threading
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional

from ..config import Settings, get_settings
from ..core.plan_year import resolve_tz
from ..integrations import get_completion_tracker, get_identity_provider
from .sweep import RenewalSweep, SweepReport

logger = logging.getLogger(__name__)


def next_run_after(now: datetime, run_at: time, tz=None) -> datetime:
    """The next instant strictly after ``now`` at local time ``run_at``, in UTC."""
    zone = resolve_tz(tz)
    local_now = now.astimezone(zone)
    candidate = datetime.combine(local_now.date(), run_at, tzinfo=zone)
    if candidate <= local_now:
        candidate = datetime.combine(local_now.date() + timedelta(days=1), run_at, tzinfo=zone)
    return candidate.astimezone(timezone.utc)


class RenewalScheduler:
    """Runs the renewal sweep once a day."""

    def __init__(
        self,
        sweep: RenewalSweep,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the scheduler.

        Args:
            sweep: Sweep to run
            settings: Settings (run time and timezone)
            clock: Returns the current UTC time
        """
        self.sweep = sweep
        self.settings = settings or get_settings()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.stopped = threading.Event()
        self.last_report: Optional[SweepReport] = None

        logger.info(
            f"Scheduler initialized: run_at={self.settings.sweep_run_at}, "
            f"timezone={self.settings.timezone}"
        )

    def run_once(self) -> SweepReport:
        """Run a sweep immediately."""
        report = self.sweep.run(now=self.clock(), cancel=self.stopped)
        self.last_report = report
        return report

    def start(self, install_signal_handlers: bool = True) -> None:
        """Run until stopped."""
        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)

        logger.info("Scheduler starting...")
        try:
            while not self.stopped.is_set():
                due = next_run_after(self.clock(), self.settings.sweep_run_at, self.settings.timezone)
                logger.info(f"Next renewal sweep at {due.isoformat()}")

                wait = (due - self.clock()).total_seconds()
                if wait > 0 and self.stopped.wait(wait):
                    break

                try:
                    report = self.run_once()
                    logger.info(
                        f"Renewal sweep {report.run_id} finished: "
                        f"processed={report.clients_processed} failed={report.clients_failed}"
                    )
                except Exception as e:
                    logger.exception(f"Renewal sweep failed: {e}")
        finally:
            logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Signal the scheduler to stop."""
        logger.info("Scheduler stopping...")
        self.stopped.set()

    def _signal_handler(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        self.stop()


def build_sweep(settings: Optional[Settings] = None) -> RenewalSweep:
    """Wire a sweep from configuration."""
    settings = settings or get_settings()
    return RenewalSweep(
        tracker=get_completion_tracker(settings),
        identity=get_identity_provider(settings),
        settings=settings,
    )
