from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List, Optional
from uuid import UUID

import httpx
from pydantic import ValidationError

from src.meditrack.config import settings
from src.meditrack.domain.models.organization import Organization, OrganizationCategory
from src.meditrack.domain.models.principal import Principal
from src.meditrack.infra.db.inmemory import metadata_organization_id
from src.meditrack.infra.db.repositories import (
    AuthAdminClient,
    AuthAdminError,
    InsertNotConfirmed,
    OrganizationRepository,
    StorageError,
)


logger = logging.getLogger("supabase")


@dataclass
class SupabaseConfig:
    """Connection settings for the managed backend.

    The service-role key bypasses row-level security; it is only ever used
    server-side by this process.
    """

    url: str
    service_role_key: str
    timeout_seconds: float

    @classmethod
    def from_settings(cls) -> Optional["SupabaseConfig"]:
        if not settings.supabase_url or not settings.supabase_service_role_key:
            return None
        return cls(
            url=settings.supabase_url.rstrip("/"),
            service_role_key=settings.supabase_service_role_key,
            timeout_seconds=settings.supabase_timeout_seconds,
        )


def _error_message(response: httpx.Response) -> str:
    # PostgREST uses "message", GoTrue uses "msg" (or "error_description" on
    # older releases). Fall back to the raw body.
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        for key in ("msg", "message", "error_description", "error"):
            if data.get(key):
                return str(data[key])
    return response.text or f"HTTP {response.status_code}"


class SupabaseClient:
    """Very small HTTP client for the two backend APIs the signup flow uses:
    PostgREST (``/rest/v1``) and the GoTrue admin API (``/auth/v1/admin``).

    No session is persisted and no token refresh happens; every call is
    authenticated with the service-role key.
    """

    def __init__(self, config: SupabaseConfig, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._config = config
        self._client = httpx.Client(
            base_url=config.url,
            timeout=config.timeout_seconds,
            transport=transport,
            headers={
                "apikey": config.service_role_key,
                "Authorization": f"Bearer {config.service_role_key}",
            },
        )

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Send one request; transport failures propagate as httpx errors."""

        return self._client.request(method, path, params=params, json=json, headers=headers)

    def close(self) -> None:
        self._client.close()


def _uuid_or_none(value: Any) -> Optional[UUID]:
    try:
        return UUID(str(value)) if value is not None else None
    except ValueError:
        return None


class SupabaseOrganizationRepository(OrganizationRepository):
    table = "organizations"

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    def _call(self, method: str, *, params: Optional[Dict[str, str]] = None, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, f"/rest/v1/{self.table}", params=params, **kwargs)
        except httpx.HTTPError as exc:
            logger.exception("PostgREST %s %s failed", method, self.table)
            raise StorageError(str(exc)) from exc
        if response.is_error:
            message = _error_message(response)
            logger.error("PostgREST %s %s returned %s: %s", method, self.table, response.status_code, message)
            raise StorageError(message)
        return response

    def _rows(self, response: httpx.Response) -> List[Dict[str, Any]]:
        try:
            rows = response.json()
        except ValueError as exc:
            raise StorageError(f"PostgREST returned a non-JSON body: {exc}") from exc
        if not isinstance(rows, list):
            raise StorageError("PostgREST returned an unexpected body")
        return rows

    def insert(
        self,
        *,
        name: str,
        type: str,
        category: OrganizationCategory,
        email: str,
    ) -> Organization:
        response = self._call(
            "POST",
            params={"select": "id,name,type,category,email,created_at"},
            json={"name": name, "type": type, "category": category.value, "email": email},
            headers={"Prefer": "return=representation"},
        )
        # From here on the row is committed; failures must carry its id so
        # the caller can delete it.
        try:
            rows = self._rows(response)
        except StorageError as exc:
            logger.error("Organization insert succeeded but its row is unreadable: %s", exc)
            raise InsertNotConfirmed(str(exc)) from exc
        if not rows or not isinstance(rows[0], dict):
            logger.error("Organization insert succeeded but returned no row")
            raise InsertNotConfirmed("Insert returned no row")

        row = rows[0]
        organization_id = _uuid_or_none(row.get("id"))
        try:
            return Organization.model_validate(row)
        except (ValueError, ValidationError) as exc:
            logger.error("Organization %s was stored but returned an invalid row: %s", organization_id, exc)
            raise InsertNotConfirmed(
                f"Stored organization {organization_id} could not be read back",
                organization_id=organization_id,
            ) from exc

    def count_created_since(self, *, email: str, since: datetime) -> int:
        response = self._call(
            "GET",
            params={"select": "created_at,email", "email": f"eq.{email}", "created_at": f"gte.{since.isoformat()}"},
        )
        return len(self._rows(response))

    def get(self, organization_id: UUID) -> Optional[Organization]:
        response = self._call(
            "GET",
            params={"select": "id,name,type,category,email,created_at", "id": f"eq.{organization_id}"},
        )
        rows = self._rows(response)
        if not rows:
            return None
        try:
            return Organization.model_validate(rows[0])
        except (ValueError, ValidationError) as exc:
            raise StorageError(f"Organization {organization_id} has an invalid row") from exc

    def delete(self, organization_id: UUID) -> None:
        self._call("DELETE", params={"id": f"eq.{organization_id}"})


def _principal_from_user(user: Dict[str, Any]) -> Principal:
    metadata = user.get("user_metadata") or {}
    return Principal(
        id=user["id"],
        email=user["email"],
        full_name=metadata.get("full_name"),
        organization_id=metadata_organization_id(metadata),
        email_confirmed=bool(user.get("email_confirmed_at")),
        created_at=user.get("created_at"),
    )


class SupabaseAuthAdminClient(AuthAdminClient):
    # GoTrue caps per_page at 1000.
    page_size = 1000

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    def _call(self, method: str, *, params: Optional[Dict[str, str]] = None, json: Any = None) -> Any:
        try:
            response = self._client.request(method, "/auth/v1/admin/users", params=params, json=json)
        except httpx.HTTPError as exc:
            logger.exception("GoTrue %s admin/users failed", method)
            raise AuthAdminError(str(exc)) from exc
        if response.is_error:
            message = _error_message(response)
            logger.error("GoTrue %s admin/users returned %s: %s", method, response.status_code, message)
            raise AuthAdminError(message)
        try:
            return response.json()
        except ValueError as exc:
            raise AuthAdminError(f"Auth service returned a non-JSON body: {exc}") from exc

    def create_user(
        self,
        *,
        email: str,
        password: str,
        email_confirm: bool,
        user_metadata: Dict[str, Any],
    ) -> Principal:
        body = {
            "email": email,
            "password": password,
            "email_confirm": email_confirm,
            "user_metadata": {key: str(value) if isinstance(value, UUID) else value for key, value in user_metadata.items()},
        }
        data = self._call("POST", json=body)
        # Older GoTrue releases wrap the user object.
        user = data.get("user") if isinstance(data, dict) and isinstance(data.get("user"), dict) else data
        if not isinstance(user, dict) or not user.get("id"):
            raise AuthAdminError("Auth service returned no user")
        try:
            return _principal_from_user(user)
        except (KeyError, ValueError, ValidationError) as exc:
            raise AuthAdminError(f"Auth service returned an invalid user: {exc}") from exc

    def get_user_by_email(self, email: str) -> Optional[Principal]:
        """Find a principal by scanning the admin user listing page by page.

        The admin API has no lookup by email; meant for operator tooling and
        verification, not the signup path.
        """

        email = email.lower()
        page = 1
        while True:
            data = self._call("GET", params={"page": str(page), "per_page": str(self.page_size)})
            users = data.get("users", []) if isinstance(data, dict) else data
            if not isinstance(users, list):
                raise AuthAdminError("Auth service returned an unexpected user listing")
            for user in users:
                if str(user.get("email", "")).lower() == email:
                    return _principal_from_user(user)
            if len(users) < self.page_size:
                return None
            page += 1


_client_lock: Lock = Lock()
_client_instance: Optional[SupabaseClient] = None


def get_supabase_client() -> Optional[SupabaseClient]:
    """Return a singleton SupabaseClient, or ``None`` when SUPABASE_URL or
    SUPABASE_SERVICE_ROLE_KEY is missing.
    """

    global _client_instance
    if _client_instance is not None:
        return _client_instance

    with _client_lock:
        if _client_instance is None:
            cfg = SupabaseConfig.from_settings()
            if cfg is None:
                logger.error(
                    "REPOSITORY_BACKEND is supabase but SUPABASE_URL or "
                    "SUPABASE_SERVICE_ROLE_KEY is missing; skipping client initialization.",
                )
                return None
            _client_instance = SupabaseClient(cfg)

    return _client_instance
