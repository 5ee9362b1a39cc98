from __future__ import annotations

from typing import Any


class DealerHubError(Exception):
    """Base error for DealerHub, carrying a stable machine-readable code."""

    code = "INTERNAL"
    status_code = 500

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.__class__.__doc__ or "Request failed"
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class ValidationFailedError(DealerHubError):
    """Missing or malformed fields."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(DealerHubError):
    """Resource not found for this tenant."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(DealerHubError):
    """Uniqueness constraint violated within a tenant."""

    code = "CONFLICT"
    status_code = 409


class TenantRequiredError(DealerHubError):
    """A tenant identifier is required for this endpoint."""

    code = "TENANT_REQUIRED"
    status_code = 400


class AuthRequiredError(DealerHubError):
    """Missing or invalid credentials."""

    code = "AUTH_REQUIRED"
    status_code = 401


class ForbiddenError(DealerHubError):
    """Authenticated principal lacks the required role."""

    code = "FORBIDDEN"
    status_code = 403


class InvalidCredentialsError(AuthRequiredError):
    """Invalid username or password."""

    code = "INVALID_CREDENTIALS"


class InvalidTokenError(AuthRequiredError):
    """Token is malformed, has a bad signature, or has been revoked."""

    code = "INVALID_TOKEN"


class TokenExpiredError(AuthRequiredError):
    """Token has expired."""

    code = "TOKEN_EXPIRED"


class RateLimitedError(DealerHubError):
    """Rate limit exceeded."""

    code = "RATE_LIMITED"
    status_code = 429


class CsrfError(DealerHubError):
    """CSRF token missing or invalid."""

    code = "CSRF_TOKEN_INVALID"
    status_code = 403


class PersistenceError(DealerHubError):
    """Durable storage failure."""

    code = "INTERNAL"
    status_code = 500


class WebFetchError(DealerHubError):
    """Remote fetch failed."""

    code = "WEB_FETCH_FAILED"
    status_code = 502


class WebFetchTimeoutError(WebFetchError):
    """Remote fetch exceeded its timeout."""

    code = "WEB_FETCH_TIMEOUT"
    status_code = 504


class WebFetchBlockedError(WebFetchError):
    """Remote fetch rejected by allowlist or budget."""

    code = "WEB_FETCH_BLOCKED"
    status_code = 403


class UnknownToolError(DealerHubError):
    """No tool registered under this name."""

    code = "NOT_FOUND"
    status_code = 404
