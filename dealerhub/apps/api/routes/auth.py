from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from dealerhub.apps.api.deps import Principal, explicit_tenant, get_container, get_current_principal
from dealerhub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from dealerhub.apps.api.response import success_response
from dealerhub.core.errors import AuthRequiredError
from dealerhub.domain.models import SessionGrant
from dealerhub.services.container import ServiceContainer


router = APIRouter(prefix="/auth", tags=["auth"], responses=DEFAULT_ERROR_RESPONSES)


class LoginRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    tenant_id: str | None = Field(default=None, alias="tenantId")


class RefreshRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str | None = Field(default=None, alias="refreshToken")


def _session_payload(grant: SessionGrant) -> dict[str, Any]:
    return {
        "accessToken": grant.tokens.access_token,
        "refreshToken": grant.tokens.refresh_token,
        "tokenType": grant.tokens.token_type,
        "expiresIn": grant.tokens.expires_in_seconds,
        "user": grant.user,
    }


def _set_refresh_cookie(response: Response, container: ServiceContainer, token: str) -> None:
    settings = container.settings
    secure = settings.cookie_secure or settings.enforce_https
    response.set_cookie(
        settings.refresh_cookie_name,
        token,
        max_age=settings.refresh_token_ttl_s,
        path=settings.refresh_cookie_path,
        httponly=True,
        secure=secure,
        samesite="none" if secure else "lax",
    )


def _presented_refresh_token(request: Request, body: RefreshRequest | None, container: ServiceContainer) -> str | None:
    # Body wins over cookie so API clients and browsers share one endpoint.
    if body is not None and body.refresh_token:
        return body.refresh_token
    return request.cookies.get(container.settings.refresh_cookie_name)


@router.post("/login")
def login(
    request: Request,
    response: Response,
    payload: LoginRequest,
    container: ServiceContainer = Depends(get_container),
) -> dict:
    tenant_id = payload.tenant_id or explicit_tenant(request)
    grant = container.auth.login(payload.username, payload.password, tenant_id)
    _set_refresh_cookie(response, container, grant.tokens.refresh_token)
    return success_response(request=request, data=_session_payload(grant))


@router.post("/refresh")
def refresh(
    request: Request,
    response: Response,
    payload: RefreshRequest | None = Body(default=None),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    token = _presented_refresh_token(request, payload, container)
    if not token:
        raise AuthRequiredError("Refresh token required")
    grant = container.auth.refresh(token)
    _set_refresh_cookie(response, container, grant.tokens.refresh_token)
    return success_response(request=request, data=_session_payload(grant))


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    payload: RefreshRequest | None = Body(default=None),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    token = _presented_refresh_token(request, payload, container)
    if token:
        container.auth.logout(token)
    response.delete_cookie(container.settings.refresh_cookie_name, path=container.settings.refresh_cookie_path)
    return success_response(request=request, data={"loggedOut": True})


@router.get("/csrf")
def csrf_token(request: Request) -> dict:
    # The CSRF middleware has already attached the token to the request.
    return success_response(request=request, data={"csrfToken": getattr(request.state, "csrf_token", None)})


@router.get("/me")
def me(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> dict:
    return success_response(request=request, data=principal.model_dump(by_alias=True))
