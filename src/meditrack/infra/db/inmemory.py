from __future__ import annotations

from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from src.meditrack.domain.models.organization import Organization, OrganizationCategory
from src.meditrack.domain.models.principal import Principal
from src.meditrack.infra.db.passwords import hash_password
from src.meditrack.infra.db.repositories import (
    AuthAdminClient,
    AuthAdminError,
    OrganizationRepository,
)


def metadata_organization_id(user_metadata: Dict[str, Any]) -> Optional[UUID]:
    raw = user_metadata.get("organization_id")
    if raw is None:
        return None
    return raw if isinstance(raw, UUID) else UUID(str(raw))


class InMemoryOrganizationRepository(OrganizationRepository):
    """Process-local organization store used in tests and local development."""

    def __init__(self) -> None:
        self._organizations: Dict[UUID, Organization] = {}
        self._lock = Lock()

    def insert(
        self,
        *,
        name: str,
        type: str,
        category: OrganizationCategory,
        email: str,
    ) -> Organization:
        organization = Organization(
            id=uuid4(),
            name=name,
            type=type,
            category=category,
            email=email,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._organizations[organization.id] = organization
        return organization

    def count_created_since(self, *, email: str, since: datetime) -> int:
        with self._lock:
            return sum(
                1
                for org in self._organizations.values()
                if org.email == email and org.created_at >= since
            )

    def get(self, organization_id: UUID) -> Optional[Organization]:
        with self._lock:
            return self._organizations.get(organization_id)

    def delete(self, organization_id: UUID) -> None:
        with self._lock:
            self._organizations.pop(organization_id, None)

    def all(self) -> List[Organization]:
        with self._lock:
            return list(self._organizations.values())


class InMemoryAuthAdminClient(AuthAdminClient):
    """Process-local auth store.

    Enforces the same unique-email constraint as the managed auth service and
    keeps only a password hash.
    """

    def __init__(self) -> None:
        self._by_email: Dict[str, Principal] = {}
        self._password_hashes: Dict[UUID, str] = {}
        self._lock = Lock()

    def create_user(
        self,
        *,
        email: str,
        password: str,
        email_confirm: bool,
        user_metadata: Dict[str, Any],
    ) -> Principal:
        email = email.lower()
        password_hash = hash_password(password)
        with self._lock:
            if email in self._by_email:
                raise AuthAdminError("A user with this email address has already been registered")
            principal = Principal(
                id=uuid4(),
                email=email,
                full_name=user_metadata.get("full_name"),
                organization_id=metadata_organization_id(user_metadata),
                email_confirmed=email_confirm,
                created_at=datetime.now(timezone.utc),
            )
            self._by_email[email] = principal
            self._password_hashes[principal.id] = password_hash
        return principal

    def get_user_by_email(self, email: str) -> Optional[Principal]:
        with self._lock:
            return self._by_email.get(email.lower())

    def password_hash_for(self, principal_id: UUID) -> Optional[str]:
        with self._lock:
            return self._password_hashes.get(principal_id)


organization_repository: OrganizationRepository = InMemoryOrganizationRepository()
auth_admin_client: AuthAdminClient = InMemoryAuthAdminClient()
