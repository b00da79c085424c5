from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from src.meditrack.domain.models.organization import Organization, OrganizationCategory
from src.meditrack.domain.models.principal import Principal
from src.meditrack.infra.db.inmemory import metadata_organization_id
from src.meditrack.infra.db.models import AuthUserORM, OrganizationORM
from src.meditrack.infra.db.passwords import hash_password
from src.meditrack.infra.db.repositories import (
    AuthAdminClient,
    AuthAdminError,
    OrganizationRepository,
    StorageError,
)
from src.meditrack.infra.db.session import SessionFactory


class SqlOrganizationRepository(OrganizationRepository):
    """SQL-backed OrganizationRepository.

    Every operation runs in its own session and commits before returning, so
    an inserted organization is durable before the caller moves on.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

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
        session = self._session_factory()
        try:
            session.add(OrganizationORM.from_domain(organization))
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(str(exc.orig) if getattr(exc, "orig", None) else str(exc)) from exc
        finally:
            session.close()
        return organization

    def count_created_since(self, *, email: str, since: datetime) -> int:
        session = self._session_factory()
        try:
            query = select(func.count()).select_from(OrganizationORM).where(
                OrganizationORM.email == email,
                OrganizationORM.created_at >= since,
            )
            return session.scalar(query) or 0
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        finally:
            session.close()

    def get(self, organization_id: UUID) -> Optional[Organization]:
        session = self._session_factory()
        try:
            orm = session.get(OrganizationORM, organization_id)
            return orm.to_domain() if orm is not None else None
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        finally:
            session.close()

    def delete(self, organization_id: UUID) -> None:
        session = self._session_factory()
        try:
            session.execute(delete(OrganizationORM).where(OrganizationORM.id == organization_id))
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(str(exc)) from exc
        finally:
            session.close()


class SqlAuthAdminClient(AuthAdminClient):
    """Auth store on the same database, for deployments without the managed
    auth service. The unique index on ``auth_users.email`` is what rejects
    the loser of two concurrent identical signups.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def create_user(
        self,
        *,
        email: str,
        password: str,
        email_confirm: bool,
        user_metadata: Dict[str, Any],
    ) -> Principal:
        orm = AuthUserORM(
            id=uuid4(),
            email=email.lower(),
            password_hash=hash_password(password),
            full_name=user_metadata.get("full_name"),
            organization_id=metadata_organization_id(user_metadata),
            email_confirmed=email_confirm,
            created_at=datetime.now(timezone.utc),
        )
        session = self._session_factory()
        try:
            session.add(orm)
            session.commit()
            return orm.to_domain()
        except IntegrityError as exc:
            session.rollback()
            raise AuthAdminError("A user with this email address has already been registered") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise AuthAdminError(str(exc)) from exc
        finally:
            session.close()

    def get_user_by_email(self, email: str) -> Optional[Principal]:
        session = self._session_factory()
        try:
            orm = session.scalars(select(AuthUserORM).where(AuthUserORM.email == email.lower())).first()
            return orm.to_domain() if orm is not None else None
        finally:
            session.close()
