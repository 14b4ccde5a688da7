"""
ISP Lifecycle

Plan-year completion tracking for Individual Support Plans: anniversary
windows, an append-only completion log, and the daily renewal sweep.
"""

import importlib.metadata

__author__ = "George Loudon"
__email__ = "george@example.com"
__version__ = importlib.metadata.version("isp-lifecycle")

from .core.errors import (
    CompletionResetError,
    DuplicateEntryError,
    ExternalDependencyError,
    FeatureDisabledError,
    LifecycleError,
    NotFoundError,
    ValidationError,
)
from .core.plan_year import PlanYear, plan_year_ending_on, plan_year_for
from .core.reset import CompletionResetService, ResetOutcome, ResetStatus
from .worker.sweep import RenewalSweep, SweepReport

__all__ = [
    "CompletionResetError",
    "CompletionResetService",
    "DuplicateEntryError",
    "ExternalDependencyError",
    "FeatureDisabledError",
    "LifecycleError",
    "NotFoundError",
    "PlanYear",
    "RenewalSweep",
    "ResetOutcome",
    "ResetStatus",
    "SweepReport",
    "ValidationError",
    "plan_year_ending_on",
    "plan_year_for",
]
