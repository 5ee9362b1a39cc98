from __future__ import annotations

import time
from typing import Any, Callable

import jwt

from dealerhub.core.errors import InvalidTokenError, TokenExpiredError


ALGORITHM = "HS256"

Clock = Callable[[], float]


def sign(
    payload: dict[str, Any],
    secret: str,
    *,
    expires_in_s: int | None = None,
    now: Clock = time.time,
) -> str:
    """Sign ``payload`` as a compact HS256 JWT (base64url, unpadded segments)."""
    claims = dict(payload)
    if expires_in_s:
        issued_at = int(now())
        claims["iat"] = issued_at
        claims["exp"] = issued_at + int(expires_in_s)
    return jwt.encode(claims, secret, algorithm=ALGORITHM, headers={"typ": "JWT"})


def verify(token: str, secret: str, *, now: Clock = time.time) -> dict[str, Any]:
    """Verify signature then expiry; the two failures raise distinct errors."""
    if not token or token.count(".") != 2:
        raise InvalidTokenError("Invalid token format")
    try:
        # Expiry is checked below against the injected clock rather than wall time.
        claims = jwt.decode(
            token,
            secret,
            algorithms=[ALGORITHM],
            options={"verify_exp": False, "verify_iat": False, "verify_nbf": False},
        )
    except jwt.InvalidSignatureError as exc:
        raise InvalidTokenError("Invalid token signature") from exc
    except jwt.PyJWTError as exc:
        raise InvalidTokenError("Invalid token") from exc
    expires_at = claims.get("exp")
    if expires_at is not None:
        try:
            expired = int(now()) > int(expires_at)
        except (TypeError, ValueError) as exc:
            raise InvalidTokenError("Invalid token expiry claim") from exc
        if expired:
            raise TokenExpiredError("Token expired")
    return claims
