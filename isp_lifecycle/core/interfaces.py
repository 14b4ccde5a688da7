"""
Collaborator interfaces.

The engine does not own identities or live completion state. It talks to
them through these interfaces so adapters can be swapped without touching
the reset operation or the sweep.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional


class CompletionTracker(ABC):
    """Owner of the live "has this reviewer finished the current cycle" state."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Adapter name for logging and identification."""
        pass

    @abstractmethod
    def get_current_completion(
        self, artifact_ref: str, reviewer_id: str
    ) -> Optional[datetime]:
        """Return when the reviewer completed the artifact, or None.

        Raises:
            ExternalDependencyError: The tracker could not be reached
        """
        pass

    @abstractmethod
    def reset_completion(self, artifact_ref: str, reviewer_id: str) -> None:
        """Clear the reviewer's completion so a new cycle can begin.

        Raises:
            ExternalDependencyError: The reset was not applied
        """
        pass


class IdentityProvider(ABC):
    """Resolves staff identities and tenant membership."""

    @abstractmethod
    def is_member(self, identity_id: str, tenant_id: str) -> bool:
        """True if the identity belongs to the tenant."""
        pass

    @abstractmethod
    def display_name(self, identity_id: str) -> Optional[str]:
        """Human-readable name, or None if the identity is unknown."""
        pass


class StaticIdentityProvider(IdentityProvider):
    """Identity provider backed by an in-memory directory.

    Used by the CLI and local runs where no external directory is wired in.
    ``members`` maps tenant id to {identity id: display name}.
    """

    def __init__(self, members: Optional[dict] = None, open_membership: bool = False):
        self.members = members or {}
        self.open_membership = open_membership

    def is_member(self, identity_id: str, tenant_id: str) -> bool:
        if self.open_membership:
            return True
        return identity_id in self.members.get(tenant_id, {})

    def display_name(self, identity_id: str) -> Optional[str]:
        for directory in self.members.values():
            if identity_id in directory:
                return directory[identity_id]
        return identity_id if self.open_membership else None
