from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import status


class SignupError(Exception):
    """Base class for the failures ``provision_tenant`` reports to callers.

    Each subclass knows its HTTP status and JSON body. Only the textual
    message of an underlying storage/auth error is ever exposed.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Erreur serveur inattendue"

    def __init__(self, details: Optional[str] = None) -> None:
        super().__init__(self.message if details is None else f"{self.message}: {details}")
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, "details": self.details}


class ValidationFailed(SignupError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Validation échouée"

    def __init__(self, details: List[str]) -> None:
        super().__init__("; ".join(details))
        self.messages = list(details)

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, "details": self.messages}


class RateLimited(SignupError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Un compte avec cet email a déjà été créé récemment. Veuillez réessayer plus tard."

    def __init__(self) -> None:
        super().__init__()

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message}


class TenantCreationFailed(SignupError):
    message = "Impossible de créer l'organisation"


class PrincipalCreationFailed(SignupError):
    message = "Impossible de créer le compte utilisateur"
