from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from dealerhub.apps.api.response import error_response, get_request_id, is_versioned_request
from dealerhub.core.errors import (
    ConflictError,
    DealerHubError,
    NotFoundError,
    RateLimitedError,
    ValidationFailedError,
)
from dealerhub.domain.results import Conflict, MutationResult, NotFound, Success, ValidationFailed
from dealerhub.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "AUTH_REQUIRED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL",
}


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "INTERNAL" if status_code >= 500 else "BAD_REQUEST")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def raise_for_result(result: MutationResult) -> dict[str, Any]:
    """Return the record of a successful mutation or raise the matching coded error."""
    if isinstance(result, Success):
        return result.record
    if isinstance(result, NotFound):
        raise NotFoundError(f"{result.resource} {result.id} not found", details={"path": "id"})
    if isinstance(result, ValidationFailed):
        details: dict[str, Any] = {"fields": list(result.fields)}
        if result.fields:
            details["path"] = result.fields[0]
        raise ValidationFailedError(result.message, details=details)
    if isinstance(result, Conflict):
        raise ConflictError(result.message, details={"path": result.field})
    raise TypeError(f"Unexpected service result: {result!r}")


async def dealerhub_error_handler(request: Request, exc: DealerHubError) -> JSONResponse:
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitedError) and exc.details and "retry_after_ms" in exc.details:
        headers["Retry-After"] = str(max(1, int(exc.details["retry_after_ms"]) // 1000))
    if exc.status_code >= 500:
        logger.error(
            "request_failed code=%s path=%s request_id=%s",
            exc.code,
            request.url.path,
            get_request_id(request),
            exc_info=exc,
        )
        # Internal detail stays in the log.
        payload = error_response(request=request, code=exc.code, message="Internal server error")
    else:
        payload = error_response(request=request, code=exc.code, message=exc.message, details=exc.details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=headers or None)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Request-shape failures share the domain validation code; path points at the first bad field.
    errors = [
        {"path": ".".join(str(part) for part in error.get("loc", ()) if part != "body"), "message": error.get("msg")}
        for error in exc.errors()
    ]
    details: dict[str, Any] = {"errors": errors}
    if errors:
        details["path"] = errors[0]["path"]
    payload = error_response(
        request=request,
        code="VALIDATION_ERROR",
        message="; ".join(f"{item['path']}: {item['message']}" for item in errors) or "Validation error",
        details=details,
    )
    return JSONResponse(content=payload, status_code=400)


async def tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError) -> JSONResponse:
    logger.error("tenant_predicate_missing path=%s request_id=%s", request.url.path, get_request_id(request))
    payload = error_response(request=request, code="TENANT_REQUIRED", message="Tenant scope is required")
    return JSONResponse(content=payload, status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Never leak stack traces; the full context goes to the log.
    logger.error(
        "request_unhandled_exception path=%s request_id=%s",
        request.url.path,
        get_request_id(request),
        exc_info=exc,
    )
    payload = error_response(request=request, code="INTERNAL", message="Internal server error")
    return JSONResponse(content=payload, status_code=500)
