"""
Database package for the ISP lifecycle engine.
"""

from .base import Base, get_db, get_engine, get_session_local, init_database
from .completion_log import CompletionLogStore, CompletionStats
from .models import (
    AssignmentModel,
    ClientModel,
    CompletionLogModel,
    TenantSettingsModel,
)

__all__ = [
    "AssignmentModel",
    "Base",
    "ClientModel",
    "CompletionLogModel",
    "CompletionLogStore",
    "CompletionStats",
    "TenantSettingsModel",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
]
