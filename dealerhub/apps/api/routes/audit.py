from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request

from dealerhub.apps.api.deps import Principal, get_container, get_required_tenant_id, require_role
from dealerhub.apps.api.openapi import TENANT_REQUIRED_RESPONSES
from dealerhub.apps.api.response import success_response
from dealerhub.services.auth.roles import ADMIN_ONLY
from dealerhub.services.container import ServiceContainer


router = APIRouter(prefix="/audit", tags=["audit"], responses=TENANT_REQUIRED_RESPONSES)


@router.get("/events")
def list_audit_events(
    request: Request,
    resource: str | None = None,
    action: str | None = None,
    since: datetime | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    tenant_id: str = Depends(get_required_tenant_id),
    _principal: Principal = Depends(require_role(*ADMIN_ONLY)),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    # Audit reads never fall back to the default tenant.
    items = container.audit.list_records(
        tenant_id=tenant_id,
        resource=resource,
        action=action,
        since=since,
        limit=limit,
    )
    return success_response(request=request, data={"items": items, "tenantId": tenant_id})
