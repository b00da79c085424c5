from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class OrganizationCategory(str, Enum):
    HOPITAL = "hopital"
    CLINIQUE = "clinique"
    PHARMACIE = "pharmacie"
    PARTICULIER = "particulier"

    @classmethod
    def parse(cls, value: object) -> Optional["OrganizationCategory"]:
        """Return the category for a raw value, or None if it is not one.

        The signup form posts the French identifiers; English aliases are
        accepted for API clients and mapped onto the same categories.
        """

        if not isinstance(value, str):
            return None
        value = _CATEGORY_ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            return None


_CATEGORY_ALIASES = {
    "hospital": OrganizationCategory.HOPITAL.value,
    "clinic": OrganizationCategory.CLINIQUE.value,
    "pharmacy": OrganizationCategory.PHARMACIE.value,
    "individual": OrganizationCategory.PARTICULIER.value,
}


class Organization(BaseModel):
    """A tenant: the hospital, clinic, pharmacy or individual practice that
    owns patients, appointments and staff records.
    """

    id: UUID
    name: str
    type: str
    category: OrganizationCategory
    # Contact email used at signup; also the key of the duplicate-signup guard.
    email: str
    created_at: datetime
