import pytest

from src.meditrack.infra.db import inmemory as repos
from src.meditrack.services.reconciliation.service import orphan_ledger


@pytest.fixture(autouse=True)
def fresh_stores():
    """Give every test empty in-memory organization and auth stores."""

    organizations = repos.InMemoryOrganizationRepository()
    auth = repos.InMemoryAuthAdminClient()
    previous = (repos.organization_repository, repos.auth_admin_client)
    repos.organization_repository = organizations
    repos.auth_admin_client = auth
    for entry in orphan_ledger.pending():
        orphan_ledger.resolve(entry.organization_id)
    yield organizations, auth
    repos.organization_repository, repos.auth_admin_client = previous
