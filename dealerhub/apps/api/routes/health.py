from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from dealerhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from dealerhub.apps.api.response import SuccessEnvelope, success_response

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    retention_scheduler: bool = False


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    scheduler = getattr(request.app.state, "retention_scheduler", None)
    payload = HealthResponse(status="ok", retention_scheduler=bool(scheduler and scheduler.running))
    return success_response(request=request, data=payload.model_dump())
