"""
Renewal notifications.

After a sweep the renewed clients are grouped by tenant and each tenant gets
one summary listing ``{client_name, reviewer_count}``. Delivery is behind
the Notifier interface; LoggingNotifier is the default.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import structlog

logger = structlog.get_logger()

SUBJECT = "ISP annual renewal processed"


@dataclass(frozen=True)
class RenewedClient:
    """One line of a tenant summary."""

    tenant_id: str
    client_id: int
    client_name: str
    reviewer_count: int


@dataclass
class TenantRenewalSummary:
    """Everything renewed for one tenant in one sweep."""

    tenant_id: str
    clients: List[RenewedClient] = field(default_factory=list)
    cc_email: Optional[str] = None

    @property
    def subject(self) -> str:
        return SUBJECT

    @property
    def body(self) -> str:
        lines = [
            f"- {item.client_name} ({item.reviewer_count} reviewers)"
            for item in self.clients
        ]
        return (
            "The following clients had their annual ISP renewal processed today:\n\n"
            + "\n".join(lines)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "clients": [
                {"client_name": item.client_name, "reviewer_count": item.reviewer_count}
                for item in self.clients
            ],
        }


class Notifier(ABC):
    """Delivers a tenant summary (message, email, ...)."""

    @abstractmethod
    def send(self, summary: TenantRenewalSummary) -> None:
        pass


class LoggingNotifier(Notifier):
    """Writes summaries to the log; used when no delivery channel is wired."""

    def send(self, summary: TenantRenewalSummary) -> None:
        logger.info(
            "renewal_summary",
            tenant_id=summary.tenant_id,
            clients=len(summary.clients),
            cc_email=summary.cc_email,
            subject=summary.subject,
            body=summary.body,
        )


class NotificationAggregator:
    """Groups renewed clients by tenant and hands one summary per tenant to a notifier."""

    def __init__(self, notifier: Optional[Notifier] = None, cc_email: Optional[str] = None):
        self.notifier = notifier or LoggingNotifier()
        self.cc_email = cc_email

    def group(self, renewed: Iterable[RenewedClient]) -> List[TenantRenewalSummary]:
        """Build summaries, tenants in first-seen order, clients in input order."""
        by_tenant: "OrderedDict[str, TenantRenewalSummary]" = OrderedDict()
        for item in renewed:
            summary = by_tenant.get(item.tenant_id)
            if summary is None:
                summary = TenantRenewalSummary(tenant_id=item.tenant_id, cc_email=self.cc_email)
                by_tenant[item.tenant_id] = summary
            summary.clients.append(item)
        return list(by_tenant.values())

    def dispatch(self, renewed: Iterable[RenewedClient]) -> List[TenantRenewalSummary]:
        """Group and send. Delivery failures are logged, never raised."""
        summaries = self.group(renewed)
        for summary in summaries:
            try:
                self.notifier.send(summary)
            except Exception as e:
                logger.warning(
                    "renewal_notification_failed",
                    tenant_id=summary.tenant_id,
                    error=str(e),
                )
        return summaries
