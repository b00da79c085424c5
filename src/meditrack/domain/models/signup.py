from __future__ import annotations

from enum import Enum
from typing import List
from uuid import UUID

from pydantic import BaseModel, Field

from src.meditrack.domain.models.organization import OrganizationCategory


class SignupRequest(BaseModel):
    """Validated and normalized signup request.

    Only built by ``normalize_signup_input`` after validation passed, so the
    names are trimmed and the email is trimmed and lowercased.
    """

    full_name: str
    organization_name: str
    email: str
    password: str = Field(repr=False)
    organization_category: OrganizationCategory


class ProvisionedAccount(BaseModel):
    id: UUID
    email: str


class SignupState(str, Enum):
    VALIDATING = "VALIDATING"
    RATE_LIMIT_CHECKING = "RATE_LIMIT_CHECKING"
    CREATING_TENANT = "CREATING_TENANT"
    CREATING_PRINCIPAL = "CREATING_PRINCIPAL"
    DELETING_TENANT = "DELETING_TENANT"
    DONE = "DONE"
    FAILED = "FAILED"


# Allowed transitions. No state is re-entered within one attempt.
SIGNUP_TRANSITIONS = {
    SignupState.VALIDATING: {SignupState.RATE_LIMIT_CHECKING, SignupState.FAILED},
    SignupState.RATE_LIMIT_CHECKING: {SignupState.CREATING_TENANT, SignupState.FAILED},
    SignupState.CREATING_TENANT: {SignupState.CREATING_PRINCIPAL, SignupState.DELETING_TENANT, SignupState.FAILED},
    SignupState.CREATING_PRINCIPAL: {SignupState.DONE, SignupState.DELETING_TENANT, SignupState.FAILED},
    SignupState.DELETING_TENANT: {SignupState.FAILED},
    SignupState.DONE: set(),
    SignupState.FAILED: set(),
}


class SignupAttempt(BaseModel):
    """State trail of a single ``provision_tenant`` call."""

    states: List[SignupState] = Field(default_factory=lambda: [SignupState.VALIDATING])

    @property
    def state(self) -> SignupState:
        return self.states[-1]

    def advance(self, new_state: SignupState) -> None:
        if new_state not in SIGNUP_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal signup transition {self.state.value} -> {new_state.value}")
        self.states.append(new_state)
