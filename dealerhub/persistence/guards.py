from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TenantPredicateError(RuntimeError):
    # Raised when a tenant-scoped storage call is made without a tenant.
    message: str

    def __str__(self) -> str:
        return self.message


def require_tenant_id(tenant_id: str | None) -> str:
    # Every tenant-scoped read or write must name its tenant explicitly.
    if not tenant_id:
        raise TenantPredicateError("Tenant predicate required but tenant_id is missing")
    return tenant_id
