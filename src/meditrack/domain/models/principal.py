from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class Principal(BaseModel):
    id: UUID
    # Always lowercase; unique across the auth store.
    email: str
    full_name: Optional[str] = None
    # Organization created in the same signup request. Set once at creation.
    organization_id: Optional[UUID] = None
    email_confirmed: bool = False
    created_at: Optional[datetime] = None
