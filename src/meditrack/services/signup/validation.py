from __future__ import annotations

import re
from typing import Any, List, Mapping

from src.meditrack.domain.models.organization import OrganizationCategory
from src.meditrack.domain.models.signup import SignupRequest

# Latin letters plus the Latin-1 accented range (À-ÿ), same as the signup form.
_FULL_NAME_RE = re.compile(r"^[a-zA-ZÀ-ÿ\s'-]+$")
_ORGANIZATION_NAME_RE = re.compile(r"^[a-zA-ZÀ-ÿ0-9\s.,'&-]+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _is_present_string(value: Any) -> bool:
    return isinstance(value, str) and value != ""


def validate_signup_input(data: Any) -> List[str]:
    """Return every validation message for a raw signup payload.

    Each field is checked independently and all violations are reported in
    field order, so the caller can fix the whole form in one round trip. An
    empty list means the payload is valid.
    """

    if not isinstance(data, Mapping):
        data = {}

    errors: List[str] = []

    full_name = data.get("fullName")
    if not _is_present_string(full_name):
        errors.append("Nom complet requis")
    else:
        full_name = full_name.strip()
        if len(full_name) < 2 or len(full_name) > 100:
            errors.append("Le nom doit contenir entre 2 et 100 caractères")
        if not _FULL_NAME_RE.match(full_name):
            errors.append("Le nom contient des caractères invalides")

    organization_name = data.get("organizationName")
    if not _is_present_string(organization_name):
        errors.append("Nom de l'organisation requis")
    else:
        organization_name = organization_name.strip()
        if len(organization_name) < 2 or len(organization_name) > 200:
            errors.append("Le nom de l'organisation doit contenir entre 2 et 200 caractères")
        if not _ORGANIZATION_NAME_RE.match(organization_name):
            errors.append("Le nom de l'organisation contient des caractères invalides")

    email = data.get("email")
    if not _is_present_string(email):
        errors.append("Email requis")
    else:
        email = email.strip().lower()
        if len(email) > 255:
            errors.append("L'email ne peut pas dépasser 255 caractères")
        if not _EMAIL_RE.match(email):
            errors.append("Email invalide")

    password = data.get("password")
    if not _is_present_string(password):
        errors.append("Mot de passe requis")
    else:
        if len(password) < 8 or len(password) > 100:
            errors.append("Le mot de passe doit contenir entre 8 et 100 caractères")
        if not re.search(r"[A-Z]", password):
            errors.append("Le mot de passe doit contenir au moins une majuscule")
        if not re.search(r"[a-z]", password):
            errors.append("Le mot de passe doit contenir au moins une minuscule")
        if not re.search(r"[0-9]", password):
            errors.append("Le mot de passe doit contenir au moins un chiffre")

    if OrganizationCategory.parse(data.get("organizationCategory")) is None:
        errors.append("Type d'organisation invalide")

    return errors


def normalize_signup_input(data: Mapping[str, Any]) -> SignupRequest:
    """Build the normalized request from a payload that passed validation.

    The password is passed through untouched.
    """

    category = OrganizationCategory.parse(data["organizationCategory"])
    if category is None:
        raise ValueError("normalize_signup_input called on an unvalidated payload")

    return SignupRequest(
        full_name=data["fullName"].strip(),
        organization_name=data["organizationName"].strip(),
        email=data["email"].strip().lower(),
        password=data["password"],
        organization_category=category,
    )
