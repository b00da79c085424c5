from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class Settings:
    """Centralized application settings.

    This keeps environment-variable handling in one place so other modules can
    depend on strongly-typed attributes instead of calling os.getenv
    directly.
    """

    # Which collaborator implementations back the signup flow: "memory"
    # (default, used by tests and local dev), "sql" or "supabase".
    repository_backend: str = os.getenv("REPOSITORY_BACKEND", "memory").lower()

    # SQL-backed repositories (REPOSITORY_BACKEND=sql).
    database_url: Optional[str] = os.getenv("DATABASE_URL")

    # Managed backend (REPOSITORY_BACKEND=supabase). The service-role key
    # bypasses row-level security and must never reach the browser.
    supabase_url: Optional[str] = os.getenv("SUPABASE_URL")
    supabase_service_role_key: Optional[str] = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    supabase_timeout_seconds: float = float(os.getenv("SUPABASE_TIMEOUT_SECONDS", "10"))

    # Trailing window (hours) during which a second organization for the same
    # contact email is refused.
    signup_rate_limit_hours: int = int(os.getenv("SIGNUP_RATE_LIMIT_HOURS", "24"))

    # Organization type written on every self-service signup.
    organization_type: str = os.getenv("ORGANIZATION_TYPE", "clinique_privee")

    # Basic API authentication for operator endpoints.
    # When ENABLE_API_AUTH=true, protected endpoints require a valid API key.
    enable_api_auth: bool = os.getenv("ENABLE_API_AUTH", "false").lower() == "true"
    # Comma-separated list of allowed API keys when auth is enabled.
    api_keys: Optional[str] = os.getenv("API_KEYS")

    # CORS configuration: comma-separated origins. The signup form is served
    # from a different origin, so the default is "*".
    cors_allow_origins: str = os.getenv("CORS_ALLOW_ORIGINS", "*")

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
