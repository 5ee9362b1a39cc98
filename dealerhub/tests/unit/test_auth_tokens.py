from __future__ import annotations

import pytest

from dealerhub.core.errors import InvalidTokenError, TokenExpiredError
from dealerhub.services.auth import jwt_tokens
from dealerhub.services.auth.passwords import generate_salt, hash_password, verify_password
from dealerhub.services.auth.roles import matches_static_api_key, normalize_role, role_allows


SECRET = "unit-test-secret-with-enough-length"


def test_sign_and_verify_round_trip() -> None:
    token = jwt_tokens.sign({"sub": "alice", "role": "sales"}, SECRET, expires_in_s=60, now=lambda: 1_000)
    assert token.count(".") == 2
    claims = jwt_tokens.verify(token, SECRET, now=lambda: 1_030)
    assert claims["sub"] == "alice"
    assert claims["exp"] == 1_060


def test_verify_distinguishes_expiry_from_bad_signature() -> None:
    token = jwt_tokens.sign({"sub": "alice"}, SECRET, expires_in_s=60, now=lambda: 1_000)
    with pytest.raises(TokenExpiredError):
        jwt_tokens.verify(token, SECRET, now=lambda: 1_061)
    with pytest.raises(InvalidTokenError):
        jwt_tokens.verify(token, "another-secret-of-sufficient-size", now=lambda: 1_000)


def test_verify_rejects_malformed_and_tampered_tokens() -> None:
    with pytest.raises(InvalidTokenError):
        jwt_tokens.verify("not-a-token", SECRET)
    with pytest.raises(InvalidTokenError):
        jwt_tokens.verify("", SECRET)
    token = jwt_tokens.sign({"sub": "alice", "role": "viewer"}, SECRET)
    header, _payload, signature = token.split(".")
    forged = jwt_tokens.sign({"sub": "alice", "role": "admin"}, SECRET).split(".")[1]
    with pytest.raises(InvalidTokenError):
        jwt_tokens.verify(f"{header}.{forged}.{signature}", SECRET)


def test_tokens_without_expiry_never_expire() -> None:
    token = jwt_tokens.sign({"sub": "svc"}, SECRET)
    assert "exp" not in jwt_tokens.verify(token, SECRET, now=lambda: 10**12)


def test_password_hashing_is_salted() -> None:
    salt = generate_salt()
    digest = hash_password("s3cret", salt, iterations=1_000)
    assert verify_password("s3cret", salt, digest, iterations=1_000)
    assert not verify_password("wrong", salt, digest, iterations=1_000)
    assert hash_password("s3cret", generate_salt(), iterations=1_000) != digest


def test_roles() -> None:
    assert normalize_role(" Sales ") == "sales"
    with pytest.raises(ValueError):
        normalize_role("owner")
    assert role_allows(role="admin", allowed={"sales"})
    assert role_allows(role="sales", allowed={"sales"})
    assert not role_allows(role="viewer", allowed={"sales"})


def test_static_api_key_matching() -> None:
    assert matches_static_api_key("k-123", "k-123")
    assert not matches_static_api_key("k-124", "k-123")
    assert not matches_static_api_key("k-123", None)
    assert not matches_static_api_key(None, "k-123")
