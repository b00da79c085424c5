import json
from datetime import datetime, timezone
from uuid import UUID, uuid4

import httpx
import pytest

from src.meditrack.domain.models.organization import OrganizationCategory
from src.meditrack.infra.db.repositories import AuthAdminError, InsertNotConfirmed, StorageError
from src.meditrack.infra.supabase.client import (
    SupabaseAuthAdminClient,
    SupabaseClient,
    SupabaseConfig,
    SupabaseOrganizationRepository,
)
from src.meditrack.services.reconciliation.service import OrphanLedger
from src.meditrack.services.signup.errors import PrincipalCreationFailed, RateLimited, TenantCreationFailed
from src.meditrack.services.signup.service import SignupService


class FakeBackend:
    """Minimal stand-in for PostgREST and the GoTrue admin API."""

    def __init__(self, *, auth_error=None, insert_overrides=None, delete_status=204, lookup_body=None, users=None):
        self.requests = []
        self.rows = {}
        self.users = list(users or [])
        self.auth_error = auth_error
        self.insert_overrides = insert_overrides or {}
        self.delete_status = delete_status
        self.lookup_body = lookup_body

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/rest/v1/organizations":
            return self._organizations(request)
        if path == "/auth/v1/admin/users" and request.method == "GET":
            page = int(request.url.params["page"])
            per_page = int(request.url.params["per_page"])
            return httpx.Response(
                200, json={"aud": "authenticated", "users": self.users[(page - 1) * per_page : page * per_page]}
            )
        if path == "/auth/v1/admin/users" and request.method == "POST":
            if self.auth_error is not None:
                return httpx.Response(422, json={"code": 422, "error_code": "email_exists", "msg": self.auth_error})
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "id": str(uuid4()),
                    "email": body["email"],
                    "email_confirmed_at": "2026-10-19T08:00:00Z" if body["email_confirm"] else None,
                    "user_metadata": body["user_metadata"],
                    "created_at": "2026-10-19T08:00:00Z",
                },
            )
        return httpx.Response(404, json={"message": "not found"})

    def _organizations(self, request: httpx.Request) -> httpx.Response:
        params = request.url.params
        if request.method == "POST":
            row = dict(json.loads(request.content), id=str(uuid4()), created_at=datetime.now(timezone.utc).isoformat())
            row.update(self.insert_overrides)
            self.rows[row["id"]] = row
            return httpx.Response(201, json=[row])
        if request.method == "GET":
            if self.lookup_body is not None:
                return httpx.Response(200, text=self.lookup_body)
            rows = list(self.rows.values())
            if "id" in params:
                rows = [r for r in rows if f"eq.{r['id']}" == params["id"]]
            if "email" in params:
                rows = [r for r in rows if f"eq.{r['email']}" == params["email"]]
            columns = params.get("select", "*")
            if columns != "*":
                rows = [{column: r.get(column) for column in columns.split(",")} for r in rows]
            return httpx.Response(200, json=rows)
        if request.method == "DELETE":
            if self.delete_status >= 400:
                return httpx.Response(self.delete_status, json={"message": "upstream connect error"})
            self.rows.pop(params["id"].removeprefix("eq."), None)
            return httpx.Response(self.delete_status)
        return httpx.Response(405)


def _client(backend) -> SupabaseClient:
    config = SupabaseConfig(url="https://project.supabase.co", service_role_key="service-role-key", timeout_seconds=5)
    return SupabaseClient(config, transport=httpx.MockTransport(backend))


def test_requests_carry_service_role_credentials():
    backend = FakeBackend()
    repository = SupabaseOrganizationRepository(_client(backend))

    organization = repository.insert(
        name="Clinique du Lac",
        type="clinique_privee",
        category=OrganizationCategory.CLINIQUE,
        email="lac@example.com",
    )

    [request] = backend.requests
    assert request.method == "POST"
    assert request.headers["apikey"] == "service-role-key"
    assert request.headers["authorization"] == "Bearer service-role-key"
    assert request.headers["prefer"] == "return=representation"
    assert json.loads(request.content) == {
        "name": "Clinique du Lac",
        "type": "clinique_privee",
        "category": "clinique",
        "email": "lac@example.com",
    }
    assert organization.category == OrganizationCategory.CLINIQUE
    assert repository.get(organization.id).name == "Clinique du Lac"


def test_recent_lookup_uses_postgrest_filters():
    backend = FakeBackend()
    repository = SupabaseOrganizationRepository(_client(backend))
    since = datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc)

    assert repository.count_created_since(email="lac@example.com", since=since) == 0

    params = backend.requests[-1].url.params
    assert params["select"] == "created_at,email"
    assert params["email"] == "eq.lac@example.com"
    assert params["created_at"] == "gte.2026-10-18T08:00:00+00:00"


def test_recent_lookup_counts_rows_that_fail_model_validation():
    backend = FakeBackend()
    backend.rows["legacy"] = {
        "id": "legacy",
        "name": "Cabinet ancien",
        "type": "clinique_privee",
        "category": None,
        "email": "lac@example.com",
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    repository = SupabaseOrganizationRepository(_client(backend))
    since = datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc)

    assert repository.count_created_since(email="lac@example.com", since=since) == 1


def test_non_json_lookup_body_becomes_storage_error():
    backend = FakeBackend(lookup_body="<html>502 Bad Gateway</html>")
    repository = SupabaseOrganizationRepository(_client(backend))

    with pytest.raises(StorageError, match="non-JSON"):
        repository.count_created_since(email="lac@example.com", since=datetime.now(timezone.utc))


def test_insert_with_unreadable_row_reports_the_stored_id():
    backend = FakeBackend(insert_overrides={"category": None})
    repository = SupabaseOrganizationRepository(_client(backend))

    with pytest.raises(InsertNotConfirmed) as excinfo:
        repository.insert(
            name="Clinique du Lac",
            type="clinique_privee",
            category=OrganizationCategory.CLINIQUE,
            email="lac@example.com",
        )

    [stored_id] = backend.rows
    assert excinfo.value.organization_id == UUID(stored_id)
    assert isinstance(excinfo.value, StorageError)


def test_insert_with_non_json_body_is_not_confirmed():
    def backend(request):
        return httpx.Response(201, text="created")

    repository = SupabaseOrganizationRepository(_client(backend))
    with pytest.raises(InsertNotConfirmed) as excinfo:
        repository.insert(name="X Y", type="clinique_privee", category=OrganizationCategory.HOPITAL, email="a@b.fr")
    assert excinfo.value.organization_id is None


def test_postgrest_error_message_becomes_storage_error():
    def backend(request):
        return httpx.Response(403, json={"code": "42501", "message": "permission denied for table organizations"})

    repository = SupabaseOrganizationRepository(_client(backend))
    with pytest.raises(StorageError, match="permission denied for table organizations"):
        repository.insert(name="X Y", type="clinique_privee", category=OrganizationCategory.HOPITAL, email="a@b.fr")


def test_transport_failure_becomes_storage_error():
    def backend(request):
        raise httpx.ConnectError("connection refused", request=request)

    repository = SupabaseOrganizationRepository(_client(backend))
    with pytest.raises(StorageError):
        repository.delete(uuid4())


def test_create_user_sends_confirmed_flag_and_metadata():
    backend = FakeBackend()
    auth = SupabaseAuthAdminClient(_client(backend))
    organization_id = uuid4()

    principal = auth.create_user(
        email="lac@example.com",
        password="Passw0rd",
        email_confirm=True,
        user_metadata={"full_name": "Jean Dupont", "organization_id": organization_id},
    )

    body = json.loads(backend.requests[-1].content)
    assert body["email_confirm"] is True
    assert body["user_metadata"] == {"full_name": "Jean Dupont", "organization_id": str(organization_id)}
    assert principal.email_confirmed is True
    assert principal.organization_id == organization_id


def test_auth_error_message_becomes_auth_admin_error():
    backend = FakeBackend(auth_error="A user with this email address has already been registered")
    auth = SupabaseAuthAdminClient(_client(backend))

    with pytest.raises(AuthAdminError, match="already been registered"):
        auth.create_user(email="lac@example.com", password="Passw0rd", email_confirm=True, user_metadata={})


def test_signup_rollback_issues_delete_against_postgrest():
    backend = FakeBackend(auth_error="A user with this email address has already been registered")
    client = _client(backend)
    service = SignupService(
        organizations=SupabaseOrganizationRepository(client),
        auth=SupabaseAuthAdminClient(client),
        ledger=OrphanLedger(),
    )

    with pytest.raises(PrincipalCreationFailed):
        service.provision_tenant(
            {
                "fullName": "Jean Dupont",
                "organizationName": "Clinique du Lac",
                "email": "Lac@Example.com",
                "password": "Passw0rd",
                "organizationCategory": "clinique",
            }
        )

    methods = [(r.method, r.url.path) for r in backend.requests]
    assert methods == [
        ("GET", "/rest/v1/organizations"),
        ("POST", "/rest/v1/organizations"),
        ("POST", "/auth/v1/admin/users"),
        ("DELETE", "/rest/v1/organizations"),
    ]
    assert backend.rows == {}


SIGNUP = {
    "fullName": "Jean Dupont",
    "organizationName": "Clinique du Lac",
    "email": "Lac@Example.com",
    "password": "Passw0rd",
    "organizationCategory": "clinique",
}


def _signup_service(backend, ledger):
    client = _client(backend)
    return SignupService(
        organizations=SupabaseOrganizationRepository(client),
        auth=SupabaseAuthAdminClient(client),
        ledger=ledger,
    )


def test_unreadable_insert_is_rolled_back_before_any_principal():
    backend = FakeBackend(insert_overrides={"category": None})
    ledger = OrphanLedger()

    with pytest.raises(TenantCreationFailed):
        _signup_service(backend, ledger).provision_tenant(dict(SIGNUP))

    methods = [(r.method, r.url.path) for r in backend.requests]
    assert methods == [
        ("GET", "/rest/v1/organizations"),
        ("POST", "/rest/v1/organizations"),
        ("DELETE", "/rest/v1/organizations"),
    ]
    assert backend.rows == {}
    assert len(ledger) == 0


def test_unreadable_insert_with_failed_delete_lands_in_orphan_ledger():
    backend = FakeBackend(insert_overrides={"category": None}, delete_status=503)
    ledger = OrphanLedger()

    with pytest.raises(TenantCreationFailed):
        _signup_service(backend, ledger).provision_tenant(dict(SIGNUP))

    [stored_id] = backend.rows
    [orphan] = ledger.pending()
    assert orphan.organization_id == UUID(stored_id)
    assert orphan.email == "lac@example.com"


def test_legacy_row_without_category_still_rate_limits():
    backend = FakeBackend()
    backend.rows["legacy"] = {
        "id": "legacy",
        "name": "Cabinet ancien",
        "type": "clinique_privee",
        "category": None,
        "email": "lac@example.com",
        "created_at": datetime.now(timezone.utc).isoformat(),
    }

    with pytest.raises(RateLimited):
        _signup_service(backend, OrphanLedger()).provision_tenant(dict(SIGNUP))

    assert [r.method for r in backend.requests] == ["GET"]


def test_non_json_lookup_does_not_block_signup():
    backend = FakeBackend(lookup_body="<html>502 Bad Gateway</html>")

    account = _signup_service(backend, OrphanLedger()).provision_tenant(dict(SIGNUP))

    assert account.email == "lac@example.com"
    assert len(backend.rows) == 1


def _user(email):
    return {
        "id": str(uuid4()),
        "email": email,
        "email_confirmed_at": "2026-10-19T08:00:00Z",
        "user_metadata": {"full_name": "Jean Dupont"},
        "created_at": "2026-10-19T08:00:00Z",
    }


def test_get_user_by_email_matches_case_insensitively():
    backend = FakeBackend(users=[_user("autre@example.com"), _user("lac@example.com")])
    auth = SupabaseAuthAdminClient(_client(backend))

    principal = auth.get_user_by_email("Lac@Example.com")

    assert principal is not None
    assert principal.email == "lac@example.com"
    assert principal.email_confirmed is True
    [request] = backend.requests
    assert request.url.params["page"] == "1"
    assert request.url.params["per_page"] == "1000"


def test_get_user_by_email_walks_every_page():
    users = [_user(f"user{i}@example.com") for i in range(4)] + [_user("lac@example.com")]
    backend = FakeBackend(users=users)
    auth = SupabaseAuthAdminClient(_client(backend))
    auth.page_size = 2

    assert auth.get_user_by_email("lac@example.com").email == "lac@example.com"
    assert [r.url.params["page"] for r in backend.requests] == ["1", "2", "3"]


def test_get_user_by_email_stops_at_the_last_page():
    backend = FakeBackend(users=[_user(f"user{i}@example.com") for i in range(4)])
    auth = SupabaseAuthAdminClient(_client(backend))
    auth.page_size = 2

    assert auth.get_user_by_email("lac@example.com") is None
    assert [r.url.params["page"] for r in backend.requests] == ["1", "2", "3"]


def test_get_user_by_email_listing_error_becomes_auth_admin_error():
    def backend(request):
        return httpx.Response(401, json={"msg": "This endpoint requires a Bearer token"})

    auth = SupabaseAuthAdminClient(_client(backend))
    with pytest.raises(AuthAdminError, match="Bearer token"):
        auth.get_user_by_email("lac@example.com")
