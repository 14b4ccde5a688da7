"""
Client and assignment registry.

The engine needs clients (with their anchor dates and artifact references)
and the reviewer assignments hanging off them. Creation validates the
business rules; nothing here ever deletes a row.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..db.models import (
    SERVICE_TYPES,
    STATUS_ACTIVE,
    STATUS_ARCHIVED,
    AssignmentModel,
    ClientModel,
)
from ..schemas import ClientCreate, ClientUpdate
from .errors import NotFoundError, ValidationError
from .interfaces import IdentityProvider
from .plan_year import local_today


def _name_key(first_name: str, last_name: str) -> str:
    return f"{first_name.strip()} {last_name.strip()}".lower()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ClientService:
    """Service for managing tracked clients within tenants."""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def _today(self) -> date:
        return local_today(None, self.settings.timezone)

    def _check_service_type(self, service_type: str) -> None:
        if service_type not in SERVICE_TYPES:
            raise ValidationError(
                f"service_type must be one of: {', '.join(SERVICE_TYPES)}"
            )

    def _check_anchor(self, anchor_date: date, today: date) -> None:
        if anchor_date > today:
            raise ValidationError("anchor date cannot be in the future")

    def _name_taken(
        self, tenant_id: str, name_key: str, exclude_id: Optional[int] = None
    ) -> bool:
        query = self.db.query(ClientModel.id).filter(
            ClientModel.tenant_id == tenant_id,
            ClientModel.name_key == name_key,
        )
        if exclude_id is not None:
            query = query.filter(ClientModel.id != exclude_id)
        return query.first() is not None

    def create(
        self,
        data: ClientCreate,
        created_by: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ClientModel:
        """Start tracking a client.

        Raises:
            ValidationError: Unknown service type, future anchor date, or a
                client with the same name already exists in the tenant
        """
        self._check_service_type(data.service_type)
        self._check_anchor(data.anchor_date, today or self._today())

        name_key = _name_key(data.first_name, data.last_name)
        if self._name_taken(data.tenant_id, name_key):
            raise ValidationError("a client with this name already exists in the tenant")

        now = _utc_now()
        client = ClientModel(
            tenant_id=data.tenant_id,
            first_name=data.first_name,
            last_name=data.last_name,
            name_key=name_key,
            service_type=data.service_type,
            anchor_date=data.anchor_date,
            anchor_month=data.anchor_date.month,
            anchor_day=data.anchor_date.day,
            artifact_ref=data.artifact_ref,
            status=STATUS_ACTIVE,
            created_at=now,
            updated_at=now,
            updated_by=created_by,
        )

        self.db.add(client)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ValidationError(
                "a client with this name already exists in the tenant"
            ) from exc

        self.db.refresh(client)
        return client

    def update(
        self,
        tenant_id: str,
        client_id: int,
        data: ClientUpdate,
        updated_by: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ClientModel:
        """Apply an explicit edit; this is the only way the anchor date changes."""
        client = self.get(tenant_id, client_id, active_only=False)

        if data.service_type is not None:
            self._check_service_type(data.service_type)
        if data.anchor_date is not None:
            self._check_anchor(data.anchor_date, today or self._today())

        first_name = data.first_name or client.first_name
        last_name = data.last_name or client.last_name
        name_key = _name_key(first_name, last_name)
        if name_key != client.name_key and self._name_taken(tenant_id, name_key, client.id):
            raise ValidationError("a client with this name already exists in the tenant")

        changed = False
        for field in ("first_name", "last_name", "service_type", "anchor_date"):
            value = getattr(data, field)
            if value is not None and value != getattr(client, field):
                setattr(client, field, value)
                changed = True

        if not changed:
            return client

        client.name_key = name_key
        client.anchor_month = client.anchor_date.month
        client.anchor_day = client.anchor_date.day
        client.updated_at = _utc_now()
        client.updated_by = updated_by

        self.db.commit()
        self.db.refresh(client)
        return client

    def _set_status(
        self, tenant_id: str, client_id: int, status: str, changed_by: Optional[str]
    ) -> ClientModel:
        client = self.get(tenant_id, client_id, active_only=False)
        if client.status != status:
            client.status = status
            client.updated_at = _utc_now()
            client.updated_by = changed_by
            self.db.commit()
            self.db.refresh(client)
        return client

    def archive(self, tenant_id: str, client_id: int, changed_by: Optional[str] = None) -> ClientModel:
        return self._set_status(tenant_id, client_id, STATUS_ARCHIVED, changed_by)

    def unarchive(self, tenant_id: str, client_id: int, changed_by: Optional[str] = None) -> ClientModel:
        return self._set_status(tenant_id, client_id, STATUS_ACTIVE, changed_by)

    def get(self, tenant_id: str, client_id: int, active_only: bool = True) -> ClientModel:
        """Get a client scoped to a tenant.

        Raises:
            NotFoundError: No such client in this tenant (or it is archived
                and ``active_only`` is set)
        """
        query = self.db.query(ClientModel).filter(
            ClientModel.id == client_id,
            ClientModel.tenant_id == tenant_id,
        )
        if active_only:
            query = query.filter(ClientModel.status == STATUS_ACTIVE)

        client = query.first()
        if client is None:
            raise NotFoundError("Client", client_id)
        return client

    def list(
        self,
        tenant_id: str,
        status: Optional[str] = STATUS_ACTIVE,
        search: str = "",
        service_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ClientModel]:
        """List a tenant's clients, ordered by last then first name."""
        query = self.db.query(ClientModel).filter(ClientModel.tenant_id == tenant_id)

        if status:
            query = query.filter(ClientModel.status == status)
        if search:
            query = query.filter(ClientModel.name_key.contains(search.lower()))
        if service_type:
            query = query.filter(ClientModel.service_type == service_type)

        return (
            query.order_by(ClientModel.last_name, ClientModel.first_name)
            .offset(offset)
            .limit(limit)
            .all()
        )


class AssignmentService:
    """Service for reviewer assignments.

    Assignments are soft-closed: removing a reviewer sets ``unassigned_at``
    and re-assigning creates a new row.
    """

    def __init__(self, db: Session, identity: IdentityProvider):
        self.db = db
        self.identity = identity

    def _client(self, client_id: int) -> ClientModel:
        client = self.db.get(ClientModel, client_id)
        if client is None:
            raise NotFoundError("Client", client_id)
        return client

    def get_active(self, client_id: int, reviewer_id: str) -> Optional[AssignmentModel]:
        return (
            self.db.query(AssignmentModel)
            .filter(
                AssignmentModel.client_id == client_id,
                AssignmentModel.reviewer_id == reviewer_id,
                AssignmentModel.unassigned_at.is_(None),
            )
            .first()
        )

    def assign(self, client_id: int, reviewer_id: str, assigned_by: Optional[str] = None) -> AssignmentModel:
        """Make a reviewer responsible for a client.

        Raises:
            NotFoundError: Unknown client or reviewer
            ValidationError: Reviewer is outside the client's tenant or is
                already assigned
        """
        client = self._client(client_id)

        reviewer_name = self.identity.display_name(reviewer_id)
        if reviewer_name is None:
            raise NotFoundError("Reviewer", reviewer_id)
        if not self.identity.is_member(reviewer_id, client.tenant_id):
            raise ValidationError("the selected reviewer is not a member of the client's tenant")
        if self.get_active(client_id, reviewer_id) is not None:
            raise ValidationError("this reviewer is already assigned to this client")

        assignment = AssignmentModel(
            client_id=client_id,
            reviewer_id=reviewer_id,
            reviewer_name=reviewer_name,
            assigned_at=_utc_now(),
            assigned_by=assigned_by,
        )
        self.db.add(assignment)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ValidationError("this reviewer is already assigned to this client") from exc

        self.db.refresh(assignment)
        return assignment

    def remove(self, client_id: int, reviewer_id: str, unassigned_by: Optional[str] = None) -> AssignmentModel:
        """Close the reviewer's active assignment.

        Raises:
            NotFoundError: No active assignment
        """
        assignment = self.get_active(client_id, reviewer_id)
        if assignment is None:
            raise NotFoundError("Assignment", f"{client_id}/{reviewer_id}")

        assignment.unassigned_at = _utc_now()
        assignment.unassigned_by = unassigned_by
        self.db.commit()
        self.db.refresh(assignment)
        return assignment

    def active_for(self, client_id: int) -> List[AssignmentModel]:
        """Currently assigned reviewers of a client."""
        return (
            self.db.query(AssignmentModel)
            .filter(
                AssignmentModel.client_id == client_id,
                AssignmentModel.unassigned_at.is_(None),
            )
            .order_by(AssignmentModel.reviewer_name, AssignmentModel.reviewer_id)
            .all()
        )

    def history(self, client_id: int, include_active: bool = True) -> List[AssignmentModel]:
        """Every assignment a client has had, newest first."""
        query = self.db.query(AssignmentModel).filter(AssignmentModel.client_id == client_id)
        if not include_active:
            query = query.filter(AssignmentModel.unassigned_at.isnot(None))
        return query.order_by(AssignmentModel.assigned_at.desc(), AssignmentModel.id.desc()).all()

    def clients_for_reviewer(self, reviewer_id: str, tenant_id: str) -> List[ClientModel]:
        """Active clients the reviewer is currently assigned to."""
        return (
            self.db.query(ClientModel)
            .join(AssignmentModel, AssignmentModel.client_id == ClientModel.id)
            .filter(
                AssignmentModel.reviewer_id == reviewer_id,
                AssignmentModel.unassigned_at.is_(None),
                ClientModel.tenant_id == tenant_id,
                ClientModel.status == STATUS_ACTIVE,
            )
            .order_by(ClientModel.last_name, ClientModel.first_name)
            .all()
        )
