from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dealerhub.apps.api.csrf import CsrfPolicy
from dealerhub.apps.api.errors import (
    dealerhub_error_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from dealerhub.apps.api.rate_limit import BucketConfig, RateLimiter, client_key, route_class_for_request
from dealerhub.apps.api.response import API_VERSION, error_response
from dealerhub.apps.api.routes.admin import router as admin_router
from dealerhub.apps.api.routes.audit import router as audit_router
from dealerhub.apps.api.routes.auth import router as auth_router
from dealerhub.apps.api.routes.exports import router as exports_router
from dealerhub.apps.api.routes.health import router as health_router
from dealerhub.apps.api.routes.resources import build_resource_routers
from dealerhub.apps.api.routes.tenants import router as tenants_router
from dealerhub.apps.api.routes.tools import router as tools_router
from dealerhub.core.config import Settings, get_settings
from dealerhub.core.errors import DealerHubError
from dealerhub.core.logging import configure_logging
from dealerhub.persistence.guards import TenantPredicateError
from dealerhub.services.container import ServiceContainer


logger = logging.getLogger(__name__)


def _is_https(request: Request) -> bool:
    forwarded = request.headers.get("X-Forwarded-Proto")
    if forwarded:
        return forwarded.split(",")[0].strip().lower() == "https"
    return request.url.scheme == "https"


def create_app(settings: Settings | None = None, container: ServiceContainer | None = None) -> FastAPI:
    settings = settings or (container.settings if container is not None else get_settings())
    configure_logging(settings.log_level)
    if settings.uses_default_jwt_secret:
        logger.warning("jwt_secret_default_in_use app=%s set JWT_SECRET before serving real traffic", settings.app_name)
    container = container or ServiceContainer(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        scheduler = None
        if settings.retention_enabled:
            scheduler = container.build_scheduler()
            scheduler.start()
            app.state.retention_scheduler = scheduler
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()
                app.state.retention_scheduler = None

    app = FastAPI(title="DealerHub API", lifespan=lifespan)
    app.state.settings = settings
    app.state.container = container
    app.state.retention_scheduler = None
    csrf = CsrfPolicy(settings)
    limiter = RateLimiter(BucketConfig(rps=settings.rate_limit_rps, burst=settings.rate_limit_burst))

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()

        decision = csrf.evaluate(request.method, request.cookies, request.headers)
        request.state.csrf_token = decision.token
        response = None

        if settings.enforce_https and not _is_https(request):
            response = JSONResponse(
                error_response(request=request, code="HTTPS_REQUIRED", message="HTTPS is required"),
                status_code=403,
            )
        elif settings.rate_limit_enabled:
            route_class, cost = route_class_for_request(request)
            verdict = limiter.check(client=client_key(request), route_class=route_class, cost=cost)
            if not verdict.allowed:
                response = JSONResponse(
                    error_response(
                        request=request,
                        code="RATE_LIMITED",
                        message="Rate limit exceeded",
                        details={"route_class": route_class, "retry_after_ms": verdict.retry_after_ms},
                    ),
                    status_code=429,
                    headers={"Retry-After": str(max(1, verdict.retry_after_ms // 1000))},
                )

        if response is None and not decision.allowed:
            logger.info(
                "csrf_rejected code=%s method=%s path=%s request_id=%s",
                decision.error_code,
                request.method,
                request.url.path,
                request_id,
            )
            response = JSONResponse(
                error_response(request=request, code=decision.error_code or "CSRF_TOKEN_INVALID", message=decision.error_message or ""),
                status_code=403,
            )

        if response is None:
            response = await call_next(request)

        csrf.apply(response, decision)
        response.headers.setdefault("X-Request-Id", request_id)
        if _is_https(request):
            response.headers.setdefault("Strict-Transport-Security", f"max-age={settings.hsts_max_age_s}; includeSubDomains")
        logger.info(
            "request_completed method=%s path=%s status=%s duration_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            (time.monotonic() - start) * 1000.0,
            request_id,
        )
        return response

    @app.exception_handler(DealerHubError)
    async def _dealerhub_error_handler(request: Request, exc: DealerHubError):
        return await dealerhub_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    prefix = f"/{API_VERSION}"
    app.include_router(health_router, prefix=prefix)
    # Unversioned liveness probe for load balancers.
    app.include_router(health_router, include_in_schema=False)
    app.include_router(auth_router, prefix=prefix)
    app.include_router(tenants_router, prefix=prefix)
    for router in build_resource_routers():
        app.include_router(router, prefix=prefix)
    app.include_router(audit_router, prefix=prefix)
    app.include_router(exports_router, prefix=prefix)
    app.include_router(tools_router, prefix=prefix)
    app.include_router(admin_router, prefix=prefix)
    return app


app = create_app()
