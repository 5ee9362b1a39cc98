from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from dealerhub.apps.api.deps import Principal, get_container, require_role
from dealerhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from dealerhub.apps.api.response import success_response
from dealerhub.services.auth.roles import ADMIN_ONLY
from dealerhub.services.container import ServiceContainer


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)


@router.post("/retention/run")
async def run_retention(
    request: Request,
    principal: Principal = Depends(require_role(*ADMIN_ONLY)),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    # Share the scheduler's lock when it is running so manual and timed sweeps never overlap.
    scheduler = getattr(request.app.state, "retention_scheduler", None)
    if scheduler is not None:
        report = (await scheduler.run_once()).as_dict()
    else:
        report = await run_in_threadpool(container.run_retention)
    logger.info("retention_manual_run subject=%s archived=%s", principal.subject, report["totalArchived"])
    return success_response(request=request, data=report)
