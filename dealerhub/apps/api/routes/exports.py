from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from dealerhub.apps.api.deps import Principal, get_container, get_required_tenant_id, require_role
from dealerhub.apps.api.openapi import TENANT_REQUIRED_RESPONSES
from dealerhub.apps.api.response import success_response
from dealerhub.services.auth.roles import ADMIN_ONLY
from dealerhub.services.container import ServiceContainer


router = APIRouter(prefix="/exports", tags=["exports"], responses=TENANT_REQUIRED_RESPONSES)


@router.get("/snapshot")
def get_snapshot(
    request: Request,
    tenant_id: str = Depends(get_required_tenant_id),
    _principal: Principal = Depends(require_role(*ADMIN_ONLY)),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    return success_response(request=request, data=container.exports.build_snapshot(tenant_id))


@router.post("/snapshot", status_code=201)
def write_snapshot(
    request: Request,
    tenant_id: str = Depends(get_required_tenant_id),
    principal: Principal = Depends(require_role(*ADMIN_ONLY)),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    result = container.exports.write_compressed_snapshot(tenant_id)
    container.audit.record(
        tenant_id=tenant_id,
        user=principal.subject,
        action="export",
        resource="snapshot",
        resource_id=result["fileName"],
        after=result["counts"],
        request_id=getattr(request.state, "request_id", None),
    )
    # The absolute path stays server-side.
    return success_response(request=request, data={k: v for k, v in result.items() if k != "path"})
