from __future__ import annotations

from typing import Any

from dealerhub.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _entry(description: str, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message, details=details)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _entry(
        "Validation error",
        "VALIDATION_ERROR",
        "stockNumber is required",
        details={"path": "stockNumber", "fields": ["stockNumber"]},
    ),
    401: _entry("Unauthorized", "AUTH_REQUIRED", "Missing or invalid bearer token"),
    403: _entry("Forbidden", "FORBIDDEN", "Insufficient role for this operation"),
    404: _entry("Not found", "NOT_FOUND", "inventory 3f2a not found", details={"path": "id"}),
    409: _entry(
        "Conflict",
        "CONFLICT",
        "Redirect with sourcePath '/old' already exists",
        details={"path": "sourcePath"},
    ),
    429: _entry("Rate limited", "RATE_LIMITED", "Rate limit exceeded", details={"retry_after_ms": 1200}),
    500: _entry("Internal server error", "INTERNAL", "Internal server error"),
}

TENANT_REQUIRED_RESPONSES: dict[int | str, dict[str, Any]] = {
    **DEFAULT_ERROR_RESPONSES,
    400: _entry("Tenant required", "TENANT_REQUIRED", "An explicit tenant identifier is required for this endpoint"),
}
