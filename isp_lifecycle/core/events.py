"""
Domain events.

Operations return the events they raise as an ordered list instead of
publishing them; the caller decides how and when to dispatch.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from ulid import ULID


class EventTypes(str, Enum):
    """Event names raised by the engine."""

    COMPLETION_ARCHIVED = "completion.archived"
    COMPLETION_MANUALLY_RESET = "completion.manually_reset"
    CLIENT_RENEWED = "client.renewed"
    RENEWAL_SUMMARY = "renewal.summary"


@dataclass
class DomainEvent:
    """Something that happened, with enough data to notify about it."""

    type: EventTypes
    data: Dict[str, Any]
    id: str = field(default_factory=lambda: str(ULID()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert the event to a dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "data": self.data,
            "occurred_at": self.occurred_at.isoformat(),
        }
