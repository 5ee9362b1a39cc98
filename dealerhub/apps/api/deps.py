from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, Request
from pydantic import BaseModel

from dealerhub.core.errors import AuthRequiredError, ForbiddenError
from dealerhub.services.audit import get_request_context
from dealerhub.services.auth.roles import matches_static_api_key, role_allows
from dealerhub.services.container import ServiceContainer
from dealerhub.services.tenancy import normalize_tenant_id, require_tenant


logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-Id"
TENANT_QUERY_PARAM = "tenantId"


class Principal(BaseModel):
    # Authenticated identity used for tenant scoping and RBAC.
    subject: str
    user_id: str | None = None
    tenant_id: str
    role: str
    auth_method: str = "jwt"


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def explicit_tenant(request: Request) -> str | None:
    # Header wins over query string; neither present means "not named".
    raw = request.headers.get(TENANT_HEADER)
    if raw is None or not raw.strip():
        raw = request.query_params.get(TENANT_QUERY_PARAM)
    if raw is None or not raw.strip():
        return None
    return raw


def _auth_error(message: str) -> AuthRequiredError:
    return AuthRequiredError(message)


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


def get_current_principal(
    request: Request,
    container: ServiceContainer = Depends(get_container),
) -> Principal:
    token = _parse_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise _auth_error("Missing or invalid bearer token")

    requested = explicit_tenant(request)
    if matches_static_api_key(token, container.settings.static_api_key):
        # The shared secret carries no tenant of its own; it acts within the requested one.
        tenant_id = container.tenants.resolve(requested)
        principal = Principal(subject="static-api-key", tenant_id=tenant_id, role="admin", auth_method="api_key")
    else:
        claims = container.auth.verify_access_token(token)
        token_tenant = normalize_tenant_id(claims.get("tenantId"), container.settings.default_tenant_id)
        role = str(claims.get("role") or "viewer")
        tenant_id = token_tenant
        if requested is not None:
            named = normalize_tenant_id(requested, container.settings.default_tenant_id)
            if named != token_tenant:
                logger.info(
                    "auth_tenant_mismatch token_tenant=%s requested_tenant=%s path=%s",
                    token_tenant,
                    named,
                    request.url.path,
                )
                raise ForbiddenError(
                    "Token is not valid for the requested tenant",
                    code="TENANT_MISMATCH",
                    details={"path": TENANT_HEADER},
                )
        container.tenants.ensure_tenant(tenant_id)
        principal = Principal(
            subject=str(claims.get("sub") or ""),
            user_id=claims.get("uid"),
            tenant_id=tenant_id,
            role=role,
        )
    request.state.principal = principal
    request.state.tenant_id = principal.tenant_id
    return principal


def get_required_tenant_id(request: Request, principal: Principal = Depends(get_current_principal)) -> str:
    """Resolve the request tenant for endpoints that must not default.

    Credentials are checked first, so an unauthenticated call never reaches the
    tenant registry.
    """
    require_tenant(explicit_tenant(request))
    return principal.tenant_id


def require_role(*allowed_roles: str):
    """Dependency factory enforcing RBAC at the route level; admin passes every check."""
    allowed = frozenset(allowed_roles)

    def _dependency(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
        if not role_allows(role=principal.role, allowed=allowed):
            request_ctx = get_request_context(request)
            logger.info(
                "rbac_forbidden tenant_id=%s subject=%s role=%s path=%s request_id=%s",
                principal.tenant_id,
                principal.subject,
                principal.role,
                request.url.path,
                request_ctx["request_id"],
            )
            raise ForbiddenError("Insufficient role for this operation", details={"required_roles": sorted(allowed)})
        return principal

    return _dependency


def request_id_of(request: Request) -> str | None:
    return get_request_context(request)["request_id"]


def query_dict(request: Request) -> dict[str, Any]:
    # Listing filters arrive as free-form query parameters.
    return {key: value for key, value in request.query_params.items() if key != TENANT_QUERY_PARAM}
