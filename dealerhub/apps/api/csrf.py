"""Double-submit CSRF protection.

A random token is issued as a readable cookie and mirrored in a response
header; state-changing requests must echo the cookie value in the header.
Requests carrying an ``Authorization: Bearer`` header are API clients, not
browsers riding ambient cookies, and are exempt.
"""

from __future__ import annotations

from dataclasses import dataclass
import hmac
import secrets
from typing import Mapping

from starlette.responses import Response

from dealerhub.core.config import Settings


CSRF_TOKEN_MISSING = "CSRF_TOKEN_MISSING"
CSRF_TOKEN_INVALID = "CSRF_TOKEN_INVALID"


@dataclass(frozen=True)
class CsrfDecision:
    token: str
    # True when the token was minted for this response and must be set as a cookie.
    issued: bool
    error_code: str | None = None
    error_message: str | None = None

    @property
    def allowed(self) -> bool:
        return self.error_code is None


class CsrfPolicy:
    def __init__(self, settings: Settings) -> None:
        self.enabled = settings.csrf_enabled
        self.cookie_name = settings.csrf_cookie_name
        self.header_name = settings.csrf_header_name
        self.cookie_ttl_s = settings.csrf_cookie_ttl_s
        self.protected_methods = settings.csrf_methods
        self.refresh_cookie_name = settings.refresh_cookie_name
        self.secure = settings.cookie_secure or settings.enforce_https

    @staticmethod
    def new_token() -> str:
        return secrets.token_hex(32)

    def evaluate(self, method: str, cookies: Mapping[str, str], headers: Mapping[str, str]) -> CsrfDecision:
        cookie_token = cookies.get(self.cookie_name)
        if not self.enabled:
            return CsrfDecision(token=cookie_token or "", issued=False)

        if method.upper() not in self.protected_methods or _is_bearer(headers.get("authorization")):
            if cookie_token:
                return CsrfDecision(token=cookie_token, issued=False)
            return CsrfDecision(token=self.new_token(), issued=True)

        has_refresh_cookie = bool(cookies.get(self.refresh_cookie_name))
        if not cookie_token:
            # First contact: hand out a token; only a session-bearing browser must already have one.
            token = self.new_token()
            if has_refresh_cookie:
                return CsrfDecision(
                    token=token,
                    issued=True,
                    error_code=CSRF_TOKEN_MISSING,
                    error_message="CSRF token missing for authenticated request",
                )
            return CsrfDecision(token=token, issued=True)

        header_token = headers.get(self.header_name.lower()) or ""
        if not header_token or not hmac.compare_digest(header_token, cookie_token):
            return CsrfDecision(
                token=cookie_token,
                issued=False,
                error_code=CSRF_TOKEN_INVALID,
                error_message="CSRF token missing or invalid",
            )
        return CsrfDecision(token=cookie_token, issued=False)

    def apply(self, response: Response, decision: CsrfDecision) -> None:
        if not self.enabled or not decision.token:
            return
        response.headers[self.header_name] = decision.token
        if decision.issued:
            response.set_cookie(
                self.cookie_name,
                decision.token,
                max_age=self.cookie_ttl_s,
                path="/",
                secure=self.secure,
                httponly=False,
                samesite="none" if self.secure else "lax",
            )


def _is_bearer(value: str | None) -> bool:
    return bool(value) and value.split(" ", 1)[0].lower() == "bearer"
