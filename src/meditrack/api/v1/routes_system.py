from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from src.meditrack.security import get_api_key
from src.meditrack.services.reconciliation.service import (
    OrphanedOrganization,
    ReconciliationReport,
    orphan_ledger,
    reconciliation_service,
)

router = APIRouter(prefix="", tags=["system"])


@router.get("/health")
async def health_check_v1() -> dict:
    """API v1 health endpoint."""
    return {"status": "ok", "version": "v1"}


@router.get("/system/orphans", response_model=List[OrphanedOrganization], dependencies=[Depends(get_api_key)])
async def list_orphaned_organizations() -> List[OrphanedOrganization]:
    """Organizations whose signup rollback failed and are still pending."""
    return orphan_ledger.pending()


@router.post("/system/reconcile", response_model=ReconciliationReport, dependencies=[Depends(get_api_key)])
async def reconcile_orphaned_organizations() -> ReconciliationReport:
    """Retry the compensating delete for every pending orphan."""
    return await run_in_threadpool(reconciliation_service.sweep)
