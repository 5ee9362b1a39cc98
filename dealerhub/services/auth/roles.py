from __future__ import annotations

import hmac
from typing import Iterable


ROLES: tuple[str, ...] = ("admin", "sales", "marketing", "service", "viewer")

# Role sets used by the HTTP surface.
ADMIN_ONLY = frozenset({"admin"})
SALES_STAFF = frozenset({"admin", "sales"})
CRM_STAFF = frozenset({"admin", "sales", "marketing"})
MARKETING_STAFF = frozenset({"admin", "marketing"})
SERVICE_STAFF = frozenset({"admin", "service"})
ANY_STAFF = frozenset(ROLES)
# Everyone except read-only viewers.
WRITERS = frozenset({"admin", "sales", "marketing", "service"})


def normalize_role(role: str) -> str:
    # Enforce a stable, lowercased role vocabulary for RBAC checks.
    normalized = (role or "").strip().lower()
    if normalized not in ROLES:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def role_allows(*, role: str, allowed: Iterable[str]) -> bool:
    # Admin may do anything a narrower role may do.
    return role == "admin" or role in set(allowed)


def matches_static_api_key(presented: str | None, configured: str | None) -> bool:
    # Constant-time comparison; an unset key never matches.
    if not presented or not configured:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), configured.encode("utf-8"))
