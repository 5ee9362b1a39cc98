from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_JWT_SECRET = "change-me-in-prod-dealerhub-signing-key"


def parse_csv(value: str | None) -> list[str]:
    # Split comma-delimited settings while dropping blanks.
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "dealerhub"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    # Root directory for per-tenant JSON documents, the audit log and archives.
    data_dir: str = "data"
    # Tenant used when a request does not name one.
    default_tenant_id: str = "main"

    # HMAC secret for access and refresh tokens; override outside development.
    jwt_secret: str = DEFAULT_JWT_SECRET
    access_token_ttl_s: int = 900
    refresh_token_ttl_s: int = 60 * 60 * 24 * 7
    password_hash_iterations: int = 120_000
    # Optional shared-secret bearer that bypasses JWT issuance.
    static_api_key: str | None = None
    # Refresh cookie is scoped to the auth routes only.
    refresh_cookie_name: str = "refreshToken"
    refresh_cookie_path: str = "/v1/auth"

    # Double-submit CSRF protection for browser clients.
    csrf_enabled: bool = True
    csrf_cookie_name: str = "csrfToken"
    csrf_header_name: str = "X-CSRF-Token"
    csrf_cookie_ttl_s: int = 60 * 60 * 24
    csrf_protected_methods: str = "POST,PUT,PATCH,DELETE"
    cookie_secure: bool = False

    # In-process token bucket keyed by client address.
    rate_limit_enabled: bool = True
    rate_limit_rps: float = 5.0
    rate_limit_burst: int = 300

    enforce_https: bool = False
    hsts_max_age_s: int = 31_536_000

    # Field names masked in audit records and exports.
    pii_mask_fields: str = "email,phone,ssn"

    list_default_limit: int = 50
    list_max_limit: int = 200

    # Retention sweep; policies are collection:days pairs.
    retention_enabled: bool = True
    retention_policies: str = "leads:365,service_tickets:730,web_fetches:30,tool_calls:30"
    audit_retention_days: int = 90
    retention_interval_hours: float = 24

    # Remote fetching on behalf of the assistant surface.
    web_fetch_enabled: bool = False
    web_fetch_timeout_ms: int = 7000
    web_fetch_allowlist: str = "*"
    web_fetch_per_tenant_per_minute: int = 10
    web_fetch_preview_chars: int = 2000
    web_fetch_user_agent: str = "DealerHub-Assistant/1.0"

    seed_admin_username: str = "admin"
    seed_admin_password: str | None = None

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir)

    @property
    def uses_default_jwt_secret(self) -> bool:
        return self.jwt_secret == DEFAULT_JWT_SECRET

    @property
    def mask_fields(self) -> list[str]:
        return parse_csv(self.pii_mask_fields)

    @property
    def csrf_methods(self) -> set[str]:
        return {method.upper() for method in parse_csv(self.csrf_protected_methods)}


@lru_cache
def get_settings() -> Settings:
    return Settings()
