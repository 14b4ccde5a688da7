"""Tenant-level feature flag backed by the tenant_settings table."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from ..db.models import TenantSettingsModel
from .errors import FeatureDisabledError


class FeatureGate:
    """Checks and flips the per-tenant enabled flag.

    A tenant without a settings row is disabled.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, tenant_id: str) -> Optional[TenantSettingsModel]:
        return (
            self.db.query(TenantSettingsModel)
            .filter(TenantSettingsModel.tenant_id == tenant_id)
            .first()
        )

    def is_enabled(self, tenant_id: str) -> bool:
        if not tenant_id:
            return False
        record = self.get(tenant_id)
        return bool(record and record.enabled)

    def require_enabled(self, tenant_id: str) -> None:
        if not self.is_enabled(tenant_id):
            raise FeatureDisabledError(tenant_id)

    def enable(self, tenant_id: str, enabled_by: str) -> TenantSettingsModel:
        now = datetime.now(timezone.utc)
        record = self.get(tenant_id)
        if record is None:
            record = TenantSettingsModel(tenant_id=tenant_id)
            self.db.add(record)

        record.enabled = True
        record.enabled_by = enabled_by
        record.enabled_at = now
        record.updated_at = now

        self.db.commit()
        self.db.refresh(record)
        return record

    def disable(self, tenant_id: str) -> Optional[TenantSettingsModel]:
        # No row means already disabled
        record = self.get(tenant_id)
        if record is None:
            return None

        record.enabled = False
        record.updated_at = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(record)
        return record

    def list_settings(self) -> List[TenantSettingsModel]:
        return (
            self.db.query(TenantSettingsModel)
            .order_by(TenantSettingsModel.tenant_id)
            .all()
        )
