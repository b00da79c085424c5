from __future__ import annotations

import logging
from typing import Optional

from src.meditrack.config import settings
from src.meditrack.infra.db import inmemory as repos
from src.meditrack.infra.db.models import Base
from src.meditrack.infra.db.session import create_database_engine, create_sqlalchemy_session_factory
from src.meditrack.infra.db.sql_organizations import SqlAuthAdminClient, SqlOrganizationRepository
from src.meditrack.infra.supabase.client import (
    SupabaseAuthAdminClient,
    SupabaseOrganizationRepository,
    get_supabase_client,
)

logger = logging.getLogger("bootstrap")


def init_sql_repositories(database_url: Optional[str] = None) -> bool:
    db_url = database_url or settings.database_url
    if not db_url:
        logger.error("REPOSITORY_BACKEND is sql but DATABASE_URL is not set; keeping in-memory repositories")
        return False

    engine = create_database_engine(db_url)

    # Create tables if they do not exist. Deployments on the managed backend
    # own their schema through migrations instead.
    Base.metadata.create_all(engine)

    session_factory = create_sqlalchemy_session_factory(engine)
    repos.organization_repository = SqlOrganizationRepository(session_factory)
    repos.auth_admin_client = SqlAuthAdminClient(session_factory)
    return True


def init_supabase_repositories() -> bool:
    client = get_supabase_client()
    if client is None:
        return False
    repos.organization_repository = SupabaseOrganizationRepository(client)
    repos.auth_admin_client = SupabaseAuthAdminClient(client)
    return True


def init_repositories() -> str:
    """Switch the collaborator singletons to the configured backend.

    Called from the application startup hook. With REPOSITORY_BACKEND=memory
    (tests, local dev) or on misconfiguration this is a no-op and the
    in-memory stores stay active. Returns the backend actually in use.
    """

    backend = settings.repository_backend
    if backend == "sql" and init_sql_repositories():
        return "sql"
    if backend == "supabase" and init_supabase_repositories():
        return "supabase"
    if backend not in {"memory", "sql", "supabase"}:
        logger.error("Unknown REPOSITORY_BACKEND %r; keeping in-memory repositories", backend)
    return "memory"
