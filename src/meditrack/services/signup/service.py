from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, Optional
from uuid import UUID

from src.meditrack.config import settings
from src.meditrack.domain.models.organization import Organization
from src.meditrack.domain.models.signup import ProvisionedAccount, SignupAttempt, SignupState
from src.meditrack.infra.db import inmemory as repos
from src.meditrack.infra.db.repositories import (
    AuthAdminClient,
    AuthAdminError,
    InsertNotConfirmed,
    OrganizationRepository,
    StorageError,
)
from src.meditrack.services.audit.service import AuditService, audit_service
from src.meditrack.services.reconciliation.service import OrphanLedger, orphan_ledger
from src.meditrack.services.signup.errors import (
    PrincipalCreationFailed,
    RateLimited,
    TenantCreationFailed,
    ValidationFailed,
)
from src.meditrack.services.signup.validation import normalize_signup_input, validate_signup_input

logger = logging.getLogger("signup")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignupService:
    """Provisions a tenant and its first administrator in one request.

    The organization and the auth principal live in two systems with no
    shared transaction, so the flow is: create the organization, create the
    principal, and delete the organization again if the principal could not
    be created. Callers either get a fully provisioned account or a
    ``SignupError`` with nothing left behind (except when the compensating
    delete itself fails, in which case the organization is recorded in the
    orphan ledger for the reconciliation sweep).

    All collaborator calls are blocking and strictly sequential.
    """

    def __init__(
        self,
        *,
        organizations: OrganizationRepository,
        auth: AuthAdminClient,
        ledger: OrphanLedger,
        audit: AuditService = audit_service,
        rate_limit_window: timedelta = timedelta(hours=24),
        organization_type: str = "clinique_privee",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._organizations = organizations
        self._auth = auth
        self._ledger = ledger
        self._audit = audit
        self._rate_limit_window = rate_limit_window
        self._organization_type = organization_type
        self._clock = clock

    def provision_tenant(self, data: Any, attempt: Optional[SignupAttempt] = None) -> ProvisionedAccount:
        """Validate ``data`` and create the organization and its principal.

        ``data`` is the raw JSON body (fullName, organizationName, email,
        password, organizationCategory). Pass ``attempt`` to observe the
        state trail of this call.

        Raises ValidationFailed, RateLimited, TenantCreationFailed or
        PrincipalCreationFailed. Anything else a collaborator raises
        propagates unchanged, after compensation when it applies.
        """

        attempt = attempt if attempt is not None else SignupAttempt()
        try:
            account = self._provision(data, attempt)
        except BaseException:
            attempt.advance(SignupState.FAILED)
            raise
        attempt.advance(SignupState.DONE)
        return account

    def _provision(self, data: Any, attempt: SignupAttempt) -> ProvisionedAccount:
        errors = validate_signup_input(data)
        if errors:
            raise ValidationFailed(errors)
        request = normalize_signup_input(data)

        attempt.advance(SignupState.RATE_LIMIT_CHECKING)
        self._check_rate_limit(request.email)

        attempt.advance(SignupState.CREATING_TENANT)
        try:
            organization = self._organizations.insert(
                name=request.organization_name,
                type=self._organization_type,
                category=request.organization_category,
                email=request.email,
            )
        except InsertNotConfirmed as exc:
            logger.error("Organization creation error: %s", exc)
            if exc.organization_id is not None:
                attempt.advance(SignupState.DELETING_TENANT)
                self._compensate(exc.organization_id, email=request.email, reason=str(exc))
            raise TenantCreationFailed(str(exc)) from exc
        except StorageError as exc:
            logger.error("Organization creation error: %s", exc)
            raise TenantCreationFailed(str(exc)) from exc

        attempt.advance(SignupState.CREATING_PRINCIPAL)
        with self._provisional(organization, attempt):
            try:
                principal = self._auth.create_user(
                    email=request.email,
                    password=request.password,
                    email_confirm=True,
                    user_metadata={
                        "full_name": request.full_name,
                        "organization_id": str(organization.id),
                    },
                )
            except AuthAdminError as exc:
                logger.error("User creation error for organization %s: %s", organization.id, exc)
                raise PrincipalCreationFailed(str(exc)) from exc

        self._audit.log_event(
            action="signup.provisioned",
            resource_type="organization",
            resource_id=str(organization.id),
            extra={"principal_id": str(principal.id), "category": organization.category.value},
        )
        return ProvisionedAccount(id=principal.id, email=principal.email)

    def _check_rate_limit(self, email: str) -> None:
        since = self._clock() - self._rate_limit_window
        try:
            recent = self._organizations.count_created_since(email=email, since=since)
        except StorageError as exc:
            # Advisory only: the unique email on the principal is the real
            # guarantee, so a failed lookup does not block signup.
            logger.error("Error checking existing organizations: %s", exc)
            return

        if recent:
            self._audit.log_event(action="signup.rate_limited", resource_type="organization")
            raise RateLimited()

    @contextmanager
    def _provisional(self, organization: Organization, attempt: SignupAttempt) -> Iterator[None]:
        """Delete ``organization`` if the wrapped block raises.

        Runs for every exception type, including cancellation, so the
        organization never outlives a failed principal creation.
        """

        try:
            yield
        except BaseException as exc:
            attempt.advance(SignupState.DELETING_TENANT)
            self._compensate(organization.id, email=organization.email, reason=str(exc))
            raise

    def _compensate(self, organization_id: UUID, *, email: str, reason: str) -> None:
        try:
            self._organizations.delete(organization_id)
        except Exception as exc:
            # The original failure is what the caller sees; the orphan goes
            # to the ledger for the reconciliation sweep.
            logger.exception("Rollback failed: organization %s has no principal", organization_id)
            self._ledger.record(organization_id=organization_id, email=email, reason=reason)
            self._audit.log_event(
                action="signup.compensation_failed",
                resource_type="organization",
                resource_id=str(organization_id),
                extra={"error": str(exc)},
            )
            return

        self._audit.log_event(
            action="signup.rolled_back",
            resource_type="organization",
            resource_id=str(organization_id),
        )


def get_signup_service() -> SignupService:
    """Build a SignupService over the collaborators selected at startup."""

    return SignupService(
        organizations=repos.organization_repository,
        auth=repos.auth_admin_client,
        ledger=orphan_ledger,
        rate_limit_window=timedelta(hours=settings.signup_rate_limit_hours),
        organization_type=settings.organization_type,
    )
