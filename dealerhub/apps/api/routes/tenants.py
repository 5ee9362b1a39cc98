from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from dealerhub.apps.api.deps import Principal, get_container, get_current_principal, require_role
from dealerhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from dealerhub.apps.api.response import success_response
from dealerhub.core.errors import NotFoundError
from dealerhub.services.auth.roles import ADMIN_ONLY
from dealerhub.services.container import ServiceContainer


router = APIRouter(prefix="/tenants", tags=["tenants"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/current")
def current_tenant(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    tenant = container.tenants.get(principal.tenant_id)
    if tenant is None:
        raise NotFoundError(f"Tenant {principal.tenant_id} not found")
    return success_response(request=request, data=tenant)


@router.get("")
def list_tenants(
    request: Request,
    _principal: Principal = Depends(require_role(*ADMIN_ONLY)),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    return success_response(request=request, data={"items": container.tenants.list_tenants()})
