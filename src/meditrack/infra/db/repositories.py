from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from src.meditrack.domain.models.organization import Organization, OrganizationCategory
from src.meditrack.domain.models.principal import Principal


class StorageError(Exception):
    """Raised by an OrganizationRepository when the storage layer rejects or
    fails an operation. Only ``str(exc)`` is surfaced to API callers.
    """


class InsertNotConfirmed(StorageError):
    """The storage layer accepted an insert but the stored row could not be
    read back. ``organization_id`` is set when the new row's id is known, so
    the caller can still delete it.
    """

    def __init__(self, message: str, organization_id: Optional[UUID] = None) -> None:
        super().__init__(message)
        self.organization_id = organization_id


class AuthAdminError(Exception):
    """Raised by an AuthAdminClient when a principal cannot be created."""


class OrganizationRepository(ABC):
    @abstractmethod
    def insert(
        self,
        *,
        name: str,
        type: str,
        category: OrganizationCategory,
        email: str,
    ) -> Organization:
        raise NotImplementedError

    @abstractmethod
    def count_created_since(self, *, email: str, since: datetime) -> int:
        """Number of organizations with this contact email created at or after
        ``since``.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, organization_id: UUID) -> Optional[Organization]:
        raise NotImplementedError

    @abstractmethod
    def delete(self, organization_id: UUID) -> None:
        """Delete an organization. Deleting a missing id is not an error."""
        raise NotImplementedError


class AuthAdminClient(ABC):
    @abstractmethod
    def create_user(
        self,
        *,
        email: str,
        password: str,
        email_confirm: bool,
        user_metadata: Dict[str, Any],
    ) -> Principal:
        raise NotImplementedError

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[Principal]:
        raise NotImplementedError
