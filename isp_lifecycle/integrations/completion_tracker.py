"""
Completion tracker adapters.

HttpCompletionTracker talks to the course-completion service that owns the
live "has this reviewer finished" state. StubCompletionTracker keeps that
state in memory for local runs and demos.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import httpx

from ..config import Settings, get_settings
from ..core.errors import ExternalDependencyError
from ..core.interfaces import CompletionTracker

logger = logging.getLogger(__name__)


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class HttpCompletionTracker(CompletionTracker):
    """
    Client for the completion-tracking web service.

    Endpoints:
        GET  /api/completions?artifact_ref=..&reviewer_id=..  -> {"completed_at": iso|null}
        POST /api/completions/reset {"artifact_ref", "reviewer_id"}
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = client or httpx.Client(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"} if api_key else {},
        )

    @property
    def name(self) -> str:
        return "http"

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def get_current_completion(
        self, artifact_ref: str, reviewer_id: str
    ) -> Optional[datetime]:
        params = {"artifact_ref": artifact_ref, "reviewer_id": reviewer_id}
        try:
            response = self.client.get(f"{self.base_url}/api/completions", params=params)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return _parse_timestamp(response.json().get("completed_at"))
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to read completion for {artifact_ref}/{reviewer_id}: {e}")
            raise ExternalDependencyError(
                f"completion lookup failed for reviewer {reviewer_id}: {e}"
            ) from e

    def reset_completion(self, artifact_ref: str, reviewer_id: str) -> None:
        data = {"artifact_ref": artifact_ref, "reviewer_id": reviewer_id}
        try:
            response = self.client.post(f"{self.base_url}/api/completions/reset", json=data)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to reset completion for {artifact_ref}/{reviewer_id}: {e}")
            raise ExternalDependencyError(
                f"completion reset failed for reviewer {reviewer_id}: {e}"
            ) from e

        body = response.json() if response.content else {}
        if body.get("error"):
            raise ExternalDependencyError(
                f"completion reset rejected for reviewer {reviewer_id}: {body['error']}"
            )


class StubCompletionTracker(CompletionTracker):
    """In-memory completion state.

    ``completions`` maps (artifact_ref, reviewer_id) to a completion time.
    Resets are recorded in ``reset_calls`` in call order.
    """

    def __init__(self, completions: Optional[Dict[Tuple[str, str], datetime]] = None):
        self.completions: Dict[Tuple[str, str], datetime] = dict(completions or {})
        self.reset_calls = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "stub"

    def mark_complete(self, artifact_ref: str, reviewer_id: str, when: Optional[datetime] = None) -> None:
        with self._lock:
            self.completions[(artifact_ref, reviewer_id)] = when or datetime.now(timezone.utc)

    def get_current_completion(
        self, artifact_ref: str, reviewer_id: str
    ) -> Optional[datetime]:
        with self._lock:
            return self.completions.get((artifact_ref, reviewer_id))

    def reset_completion(self, artifact_ref: str, reviewer_id: str) -> None:
        with self._lock:
            self.completions.pop((artifact_ref, reviewer_id), None)
            self.reset_calls.append((artifact_ref, reviewer_id))


def get_completion_tracker(settings: Optional[Settings] = None) -> CompletionTracker:
    """Build the tracker selected by ``settings.completion_tracker``.

    Raises:
        ValueError: ``http`` selected without ``completion_service_url``
    """
    settings = settings or get_settings()

    if settings.completion_tracker == "http":
        if not settings.completion_service_url:
            raise ValueError("COMPLETION_SERVICE_URL must be set for the http tracker")
        return HttpCompletionTracker(
            settings.completion_service_url,
            api_key=settings.completion_service_api_key,
            timeout=settings.completion_service_timeout,
        )

    return StubCompletionTracker()
