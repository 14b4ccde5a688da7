"""
Adapters for the collaborators the engine depends on.
"""

from .completion_tracker import (
    HttpCompletionTracker,
    StubCompletionTracker,
    get_completion_tracker,
)
from .identity import get_identity_provider

__all__ = [
    "HttpCompletionTracker",
    "StubCompletionTracker",
    "get_completion_tracker",
    "get_identity_provider",
]
