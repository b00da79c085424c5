from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel

from src.meditrack.infra.db import inmemory as repos
from src.meditrack.infra.db.repositories import OrganizationRepository, StorageError
from src.meditrack.services.audit.service import AuditService, audit_service

logger = logging.getLogger("reconciliation")


class OrphanedOrganization(BaseModel):
    """An organization whose compensating delete failed, so it may exist with
    no principal attached.
    """

    organization_id: UUID
    email: str
    reason: str
    recorded_at: datetime
    attempts: int = 0
    last_error: Optional[str] = None


class ReconciliationReport(BaseModel):
    attempted: int
    resolved: List[UUID]
    remaining: List[UUID]


class OrphanLedger:
    """Thread-safe, process-local record of unresolved compensations."""

    def __init__(self) -> None:
        self._entries: Dict[UUID, OrphanedOrganization] = {}
        self._lock = Lock()

    def record(self, *, organization_id: UUID, email: str, reason: str) -> OrphanedOrganization:
        entry = OrphanedOrganization(
            organization_id=organization_id,
            email=email,
            reason=reason,
            recorded_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._entries[organization_id] = entry
        return entry

    def pending(self) -> List[OrphanedOrganization]:
        with self._lock:
            return list(self._entries.values())

    def resolve(self, organization_id: UUID) -> None:
        with self._lock:
            self._entries.pop(organization_id, None)

    def mark_failed(self, organization_id: UUID, error: str) -> None:
        with self._lock:
            entry = self._entries.get(organization_id)
            if entry is not None:
                entry.attempts += 1
                entry.last_error = error

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ReconciliationService:
    """Retries compensating deletes that failed during signup."""

    def __init__(
        self,
        *,
        ledger: OrphanLedger,
        organizations: Callable[[], OrganizationRepository],
        audit: AuditService = audit_service,
    ) -> None:
        self._ledger = ledger
        self._organizations = organizations
        self._audit = audit

    def sweep(self) -> ReconciliationReport:
        repository = self._organizations()
        pending = self._ledger.pending()
        resolved: List[UUID] = []
        remaining: List[UUID] = []

        for entry in pending:
            try:
                # delete() treats a missing id as success, so an organization
                # removed by hand also clears its entry.
                repository.delete(entry.organization_id)
            except StorageError as exc:
                logger.warning("Orphaned organization %s still not deleted: %s", entry.organization_id, exc)
                self._ledger.mark_failed(entry.organization_id, str(exc))
                remaining.append(entry.organization_id)
                continue
            self._ledger.resolve(entry.organization_id)
            resolved.append(entry.organization_id)

        report = ReconciliationReport(attempted=len(pending), resolved=resolved, remaining=remaining)
        if pending:
            self._audit.log_event(
                action="reconciliation.sweep",
                resource_type="organization",
                extra={"attempted": report.attempted, "resolved": len(resolved), "remaining": len(remaining)},
            )
        return report


def _current_organization_repository() -> OrganizationRepository:
    return repos.organization_repository


orphan_ledger = OrphanLedger()
reconciliation_service = ReconciliationService(ledger=orphan_ledger, organizations=_current_organization_repository)
