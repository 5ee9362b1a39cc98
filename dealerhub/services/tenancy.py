from __future__ import annotations

import re
from typing import Any, Iterable, Mapping

from dealerhub.core.config import get_settings
from dealerhub.core.errors import TenantRequiredError
from dealerhub.persistence.context import TENANTS_COLLECTION, DataContext


_INVALID_SLUG_CHARS = re.compile(r"[^a-z0-9_-]+")
_REPEATED_DASHES = re.compile(r"-{2,}")


def _slugify_tenant(value: Any) -> str:
    text = str(value).strip().lower()
    text = _INVALID_SLUG_CHARS.sub("-", text)
    text = _REPEATED_DASHES.sub("-", text)
    return text.strip("-")


def normalize_tenant_id(value: Any, default: str | None = None) -> str:
    """Return a slug-shaped tenant id, falling back to the default tenant.

    Never fails, and is idempotent: normalizing a normalized id returns it unchanged.
    """
    fallback = _slugify_tenant(default or get_settings().default_tenant_id) or "main"
    if value is None:
        return fallback
    slug = _slugify_tenant(value)
    return slug or fallback


def matches_tenant(record_tenant_id: Any, requested_tenant_id: Any) -> bool:
    return normalize_tenant_id(record_tenant_id) == normalize_tenant_id(requested_tenant_id)


def attach_tenant(record: Mapping[str, Any], tenant_id: Any) -> dict[str, Any]:
    # Shallow copy; the caller's mapping is left untouched.
    stamped = dict(record)
    stamped["tenantId"] = normalize_tenant_id(tenant_id)
    return stamped


def filter_by_tenant(items: Iterable[Mapping[str, Any]], tenant_id: Any) -> list[Mapping[str, Any]]:
    normalized = normalize_tenant_id(tenant_id)
    return [item for item in items if matches_tenant(item.get("tenantId"), normalized)]


def require_tenant(raw_tenant_id: Any) -> str:
    # Used by endpoints that must not silently fall back to the default tenant.
    if raw_tenant_id is None or _slugify_tenant(raw_tenant_id) == "":
        raise TenantRequiredError("An explicit tenant identifier is required for this endpoint")
    return normalize_tenant_id(raw_tenant_id)


class TenantService:
    """Tenant registry operations on top of the shared data context."""

    def __init__(self, context: DataContext) -> None:
        self.context = context

    def resolve(self, raw_tenant_id: Any) -> str:
        tenant_id = normalize_tenant_id(raw_tenant_id, self.context.default_tenant_id)
        self.context.ensure_tenant(tenant_id)
        return tenant_id

    def ensure_tenant(self, tenant_id: Any, *, name: str | None = None) -> str:
        normalized = normalize_tenant_id(tenant_id, self.context.default_tenant_id)
        self.context.ensure_tenant(normalized, name=name)
        return normalized

    def get(self, tenant_id: Any) -> dict[str, Any] | None:
        normalized = normalize_tenant_id(tenant_id, self.context.default_tenant_id)
        for entry in self.context.system_snapshot(TENANTS_COLLECTION):
            if entry.get("id") == normalized:
                return entry
        return None

    def list_tenants(self) -> list[dict[str, Any]]:
        return self.context.system_snapshot(TENANTS_COLLECTION)
