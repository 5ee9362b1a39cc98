from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import threading

import pytest

from dealerhub.core.errors import InvalidCredentialsError, InvalidTokenError, TokenExpiredError
from dealerhub.persistence.context import DataContext
from dealerhub.persistence.store import JsonStore
from dealerhub.services.auth.sessions import AuthService


class _Clock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest.fixture
def auth(tmp_path, clock) -> AuthService:
    service = AuthService(
        DataContext(JsonStore(tmp_path)),
        secret="session-test-secret-value-long-enough",
        access_ttl_s=60,
        refresh_ttl_s=600,
        password_iterations=1_000,
        clock=clock,
    )
    service.create_user(username="alice", password="pw-alice", role="sales", tenant_id="main")
    return service


def test_create_user_hides_password_material(auth) -> None:
    user = auth.create_user(username="bob", password="pw", role="Viewer", tenant_id="Lexington")
    assert user["role"] == "viewer"
    assert user["tenantId"] == "lexington"
    assert "passwordHash" not in user
    assert "salt" not in user
    with pytest.raises(ValueError):
        auth.create_user(username="BOB", password="pw", role="viewer", tenant_id="lexington")


def test_login_is_tenant_scoped(auth) -> None:
    grant = auth.login("alice", "pw-alice", "main")
    claims = auth.verify_access_token(grant.tokens.access_token)
    assert claims["sub"] == "alice"
    assert claims["role"] == "sales"
    assert claims["tenantId"] == "main"
    assert grant.tokens.expires_in_seconds == 60

    with pytest.raises(InvalidCredentialsError):
        auth.login("alice", "pw-alice", "lexington")
    with pytest.raises(InvalidCredentialsError):
        auth.login("alice", "wrong", "main")


def test_refresh_token_cannot_be_used_as_access_token(auth) -> None:
    grant = auth.login("alice", "pw-alice", "main")
    with pytest.raises(InvalidTokenError):
        auth.verify_access_token(grant.tokens.refresh_token)
    with pytest.raises(InvalidTokenError):
        auth.refresh(grant.tokens.access_token)


def test_refresh_rotates_and_keeps_chain(auth) -> None:
    grant = auth.login("alice", "pw-alice", "main")
    user_id = grant.user["id"]
    rotated = auth.refresh(grant.tokens.refresh_token)
    assert rotated.tokens.refresh_token != grant.tokens.refresh_token

    active = auth.active_refresh_tokens(user_id)
    assert len(active) == 1
    assert active[0]["rotatedFrom"] is not None
    assert auth.refresh(rotated.tokens.refresh_token).tokens.access_token


def test_replayed_refresh_token_revokes_the_whole_chain(auth) -> None:
    grant = auth.login("alice", "pw-alice", "main")
    rotated = auth.refresh(grant.tokens.refresh_token)

    with pytest.raises(InvalidTokenError):
        auth.refresh(grant.tokens.refresh_token)
    # The legitimate successor is revoked too once theft is suspected.
    with pytest.raises(InvalidTokenError):
        auth.refresh(rotated.tokens.refresh_token)
    assert auth.active_refresh_tokens(grant.user["id"]) == []


def test_replay_leaves_other_sessions_alone(auth) -> None:
    first = auth.login("alice", "pw-alice", "main")
    second = auth.login("alice", "pw-alice", "main")
    auth.refresh(first.tokens.refresh_token)
    with pytest.raises(InvalidTokenError):
        auth.refresh(first.tokens.refresh_token)
    assert auth.refresh(second.tokens.refresh_token).tokens.refresh_token


def test_expired_refresh_token(auth, clock) -> None:
    grant = auth.login("alice", "pw-alice", "main")
    clock.now += 601
    with pytest.raises(TokenExpiredError):
        auth.refresh(grant.tokens.refresh_token)
    assert auth.logout(grant.tokens.refresh_token) is True


def test_logout_revokes_and_is_idempotent(auth) -> None:
    grant = auth.login("alice", "pw-alice", "main")
    assert auth.logout(grant.tokens.refresh_token) is True
    assert auth.logout(grant.tokens.refresh_token) is True
    with pytest.raises(InvalidTokenError):
        auth.refresh(grant.tokens.refresh_token)
    assert auth.active_refresh_tokens(grant.user["id"]) == []


def test_concurrent_refreshes_rotate_exactly_once(auth) -> None:
    grant = auth.login("alice", "pw-alice", "main")
    token = grant.tokens.refresh_token
    workers = 16
    barrier = threading.Barrier(workers)

    def attempt(_: int) -> str:
        barrier.wait()
        try:
            auth.refresh(token)
        except InvalidTokenError:
            return "invalid"
        return "ok"

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(attempt, range(workers)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("invalid") == workers - 1
