"""
Renewal worker - the daily sweep and its scheduler.

Usage:
    python -m isp_lifecycle.worker

Components:
    - sweep: select due clients, archive and reset their reviewers
    - notifications: per-tenant renewal summaries
    - scheduler: run the sweep daily at the configured local time
"""

from .notifications import (
    LoggingNotifier,
    NotificationAggregator,
    Notifier,
    RenewedClient,
    TenantRenewalSummary,
)
from .scheduler import RenewalScheduler, build_sweep, next_run_after
from .sweep import ClientResult, RenewalSweep, SweepError, SweepReport

__all__ = [
    "ClientResult",
    "LoggingNotifier",
    "NotificationAggregator",
    "Notifier",
    "RenewalScheduler",
    "RenewalSweep",
    "RenewedClient",
    "SweepError",
    "SweepReport",
    "TenantRenewalSummary",
    "build_sweep",
    "next_run_after",
]
