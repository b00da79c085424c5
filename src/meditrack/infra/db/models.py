from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.meditrack.domain.models.organization import Organization, OrganizationCategory
from src.meditrack.domain.models.principal import Principal


class Base(DeclarativeBase):
    pass


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OrganizationORM(Base):
    __tablename__ = "organizations"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    @classmethod
    def from_domain(cls, organization: Organization) -> "OrganizationORM":
        return cls(
            id=organization.id,
            name=organization.name,
            type=organization.type,
            category=organization.category.value,
            email=organization.email,
            created_at=organization.created_at,
        )

    def to_domain(self) -> Organization:
        return Organization(
            id=self.id,
            name=self.name,
            type=self.type,
            category=OrganizationCategory(self.category),
            email=self.email,
            created_at=_as_utc(self.created_at),
        )


class AuthUserORM(Base):
    __tablename__ = "auth_users"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)
    # Unique constraint is the race-safety backstop for concurrent signups.
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # No ON DELETE CASCADE: an organization is only deleted while it has no user.
    organization_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("organizations.id"), nullable=True, index=True
    )
    email_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def to_domain(self) -> Principal:
        return Principal(
            id=self.id,
            email=self.email,
            full_name=self.full_name,
            organization_id=self.organization_id,
            email_confirmed=self.email_confirmed,
            created_at=_as_utc(self.created_at),
        )
