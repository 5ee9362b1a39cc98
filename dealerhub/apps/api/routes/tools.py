from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request

from dealerhub.apps.api.deps import Principal, get_container, query_dict, require_role
from dealerhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from dealerhub.apps.api.response import success_response
from dealerhub.core.errors import ForbiddenError, ValidationFailedError
from dealerhub.services.auth.roles import ANY_STAFF, WRITERS, role_allows
from dealerhub.services.container import ServiceContainer


router = APIRouter(prefix="/ai", tags=["ai"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/tools")
def list_tools(
    request: Request,
    _principal: Principal = Depends(require_role(*ANY_STAFF)),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    return success_response(request=request, data={"items": container.tools.describe()})


@router.post("/tools/{name}")
async def execute_tool(
    name: str,
    request: Request,
    payload: Any = Body(default=None),
    principal: Principal = Depends(require_role(*ANY_STAFF)),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    if payload is not None and not isinstance(payload, dict):
        raise ValidationFailedError("Tool arguments must be a JSON object", details={"path": "body"})
    tool = container.tools.get(name)
    if tool is not None and tool.mutates and not role_allows(role=principal.role, allowed=WRITERS):
        raise ForbiddenError("Insufficient role for this tool")
    envelope = await container.tools.execute(name, payload or {}, principal.tenant_id, principal.subject)
    return success_response(request=request, data=envelope)


@router.get("/web-fetches")
def list_web_fetches(
    request: Request,
    principal: Principal = Depends(require_role(*ANY_STAFF)),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    return success_response(request=request, data=container.web_fetch.list_fetches(principal.tenant_id, query_dict(request)))
