from __future__ import annotations

from datetime import datetime, timezone
import logging
import time
from typing import Any, Callable
from uuid import uuid4

from dealerhub.core.errors import (
    InvalidCredentialsError,
    InvalidTokenError,
    TokenExpiredError,
)
from dealerhub.domain.models import RefreshTokenRecord, SessionGrant, TokenPair, UserAccount
from dealerhub.persistence.context import DataContext
from dealerhub.services.auth import jwt_tokens
from dealerhub.services.auth.passwords import generate_salt, hash_password, verify_password
from dealerhub.services.auth.roles import normalize_role
from dealerhub.services.tenancy import matches_tenant, normalize_tenant_id


logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"
REFRESH_TOKENS_COLLECTION = "refresh_tokens"

ACCESS_TYPE = "access"
REFRESH_TYPE = "refresh"


def _iso(epoch_s: float) -> str:
    return datetime.fromtimestamp(epoch_s, tz=timezone.utc).isoformat()


def _epoch(value: str) -> float:
    return datetime.fromisoformat(value).timestamp()


class AuthService:
    """Login, refresh-token rotation, logout and access-token verification.

    Refresh tokens are signed JWTs whose ``jti`` keys a persisted record. A
    record is never deleted on rotation; it is marked revoked, which is what
    lets a replayed token be recognised and its whole rotation chain shut down.
    """

    def __init__(
        self,
        context: DataContext,
        *,
        secret: str,
        access_ttl_s: int = 900,
        refresh_ttl_s: int = 60 * 60 * 24 * 7,
        password_iterations: int = 120_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.context = context
        self.secret = secret
        self.access_ttl_s = access_ttl_s
        self.refresh_ttl_s = refresh_ttl_s
        self.password_iterations = password_iterations
        self.clock = clock

    # -- users -------------------------------------------------------------

    def create_user(
        self,
        *,
        username: str,
        password: str,
        role: str,
        tenant_id: str,
        display_name: str | None = None,
    ) -> dict[str, Any]:
        tenant = normalize_tenant_id(tenant_id, self.context.default_tenant_id)
        self.context.ensure_tenant(tenant)
        salt = generate_salt()
        user = UserAccount(
            id=uuid4().hex,
            tenant_id=tenant,
            username=username.strip(),
            role=normalize_role(role),
            password_hash=hash_password(password, salt, iterations=self.password_iterations),
            salt=salt,
            display_name=display_name,
            created_at=_iso(self.clock()),
        )
        with self.context.mutate_system(USERS_COLLECTION) as users:
            if self._find_user(users, user.username, tenant) is not None:
                raise ValueError(f"User {user.username} already exists in tenant {tenant}")
            users.append(user.to_document())
        logger.info("user_created tenant_id=%s username=%s role=%s", tenant, user.username, user.role)
        return user.public_view()

    @staticmethod
    def _find_user(users: list[dict[str, Any]], username: str, tenant_id: str) -> dict[str, Any] | None:
        lowered = username.strip().lower()
        for entry in users:
            if str(entry.get("username", "")).lower() == lowered and matches_tenant(entry.get("tenantId"), tenant_id):
                return entry
        return None

    def _user_by_id(self, user_id: str) -> UserAccount | None:
        for entry in self.context.system_snapshot(USERS_COLLECTION):
            if entry.get("id") == user_id:
                return UserAccount.model_validate(entry)
        return None

    # -- token issuance ----------------------------------------------------

    def _issue(self, user: UserAccount, *, chain_id: str | None, rotated_from: str | None) -> TokenPair:
        # Caller must hold the context lock so issuance and revocation stay one step.
        now = self.clock()
        access_token = jwt_tokens.sign(
            {
                "sub": user.username,
                "uid": user.id,
                "role": user.role,
                "tenantId": user.tenant_id,
                "type": ACCESS_TYPE,
            },
            self.secret,
            expires_in_s=self.access_ttl_s,
            now=lambda: now,
        )
        jti = uuid4().hex
        refresh_token = jwt_tokens.sign(
            {"sub": user.username, "uid": user.id, "tenantId": user.tenant_id, "type": REFRESH_TYPE, "jti": jti},
            self.secret,
            expires_in_s=self.refresh_ttl_s,
            now=lambda: now,
        )
        record = RefreshTokenRecord(
            jti=jti,
            user_id=user.id,
            tenant_id=user.tenant_id,
            chain_id=chain_id or jti,
            rotated_from=rotated_from,
            issued_at=_iso(now),
            expires_at=_iso(now + self.refresh_ttl_s),
        )
        with self.context.mutate_system(REFRESH_TOKENS_COLLECTION) as records:
            records.append(record.to_document())
        return TokenPair(access_token=access_token, refresh_token=refresh_token, expires_in_seconds=self.access_ttl_s)

    @staticmethod
    def _find_record(records: list[dict[str, Any]], jti: str) -> int:
        for index, entry in enumerate(records):
            if entry.get("jti") == jti:
                return index
        return -1

    def _revoke(self, records: list[dict[str, Any]], index: int, reason: str) -> None:
        records[index] = {
            **records[index],
            "revoked": True,
            "revokedAt": _iso(self.clock()),
            "revokedReason": reason,
        }

    def _revoke_chain(self, chain_id: str, reason: str) -> int:
        revoked = 0
        with self.context.mutate_system(REFRESH_TOKENS_COLLECTION) as records:
            for index, entry in enumerate(records):
                if entry.get("chainId") == chain_id and not entry.get("revoked"):
                    self._revoke(records, index, reason)
                    revoked += 1
        return revoked

    # -- session operations ------------------------------------------------

    def login(self, username: str, password: str, tenant_id: Any) -> SessionGrant:
        tenant = normalize_tenant_id(tenant_id, self.context.default_tenant_id)
        with self.context.lock:
            entry = self._find_user(self.context.system_snapshot(USERS_COLLECTION), username or "", tenant)
            if entry is None:
                logger.info("auth_login_failed tenant_id=%s reason=unknown_user", tenant)
                raise InvalidCredentialsError("Invalid username or password")
            user = UserAccount.model_validate(entry)
            valid = user.is_active and verify_password(
                password or "", user.salt, user.password_hash, iterations=self.password_iterations
            )
            if not valid:
                logger.info("auth_login_failed tenant_id=%s user_id=%s reason=bad_password", tenant, user.id)
                raise InvalidCredentialsError("Invalid username or password")
            tokens = self._issue(user, chain_id=None, rotated_from=None)
        logger.info("auth_login_succeeded tenant_id=%s user_id=%s", tenant, user.id)
        return SessionGrant(tokens=tokens, user=user.public_view())

    def _decode_refresh(self, refresh_token: str) -> dict[str, Any]:
        claims = jwt_tokens.verify(refresh_token, self.secret, now=self.clock)
        if claims.get("type") != REFRESH_TYPE or not claims.get("jti"):
            raise InvalidTokenError("Invalid refresh token type")
        return claims

    def refresh(self, refresh_token: str) -> SessionGrant:
        """Rotate a refresh token: check, revoke and issue as one locked step."""
        claims = self._decode_refresh(refresh_token)
        jti = str(claims["jti"])
        with self.context.lock:
            records = self.context.system_snapshot(REFRESH_TOKENS_COLLECTION)
            index = self._find_record(records, jti)
            if index == -1:
                logger.warning("auth_refresh_rejected jti=%s reason=unknown", jti)
                raise InvalidTokenError("Refresh token is not recognised")
            record = RefreshTokenRecord.model_validate(records[index])
            if record.revoked:
                if record.revoked_reason == "rotated":
                    # A rotated token came back: treat as theft and shut the chain down.
                    count = self._revoke_chain(record.chain_id, "replay_detected")
                    logger.warning(
                        "auth_refresh_replay_detected tenant_id=%s chain_id=%s revoked=%s",
                        record.tenant_id,
                        record.chain_id,
                        count,
                    )
                raise InvalidTokenError("Refresh token has been revoked")
            if self.clock() > _epoch(record.expires_at):
                raise TokenExpiredError("Refresh token expired")
            user = self._user_by_id(record.user_id)
            if user is None or not user.is_active:
                raise InvalidTokenError("User no longer exists")
            if not matches_tenant(claims.get("tenantId"), user.tenant_id):
                raise InvalidTokenError("Refresh token tenant mismatch")

            with self.context.mutate_system(REFRESH_TOKENS_COLLECTION) as live:
                self._revoke(live, self._find_record(live, jti), "rotated")
            tokens = self._issue(user, chain_id=record.chain_id, rotated_from=jti)
        logger.info("auth_refresh_rotated tenant_id=%s user_id=%s", user.tenant_id, user.id)
        return SessionGrant(tokens=tokens, user=user.public_view())

    def logout(self, refresh_token: str) -> bool:
        """Revoke a refresh token; revoking an already-revoked or expired token is not an error."""
        try:
            claims = self._decode_refresh(refresh_token)
        except TokenExpiredError:
            return True
        jti = str(claims["jti"])
        with self.context.lock:
            with self.context.mutate_system(REFRESH_TOKENS_COLLECTION) as records:
                index = self._find_record(records, jti)
                if index != -1 and not records[index].get("revoked"):
                    self._revoke(records, index, "logout")
                    logger.info("auth_logout tenant_id=%s", records[index].get("tenantId"))
        return True

    def verify_access_token(self, token: str) -> dict[str, Any]:
        claims = jwt_tokens.verify(token, self.secret, now=self.clock)
        if claims.get("type") != ACCESS_TYPE:
            raise InvalidTokenError("Invalid access token type")
        return claims

    def active_refresh_tokens(self, user_id: str) -> list[dict[str, Any]]:
        now = self.clock()
        return [
            entry
            for entry in self.context.system_snapshot(REFRESH_TOKENS_COLLECTION)
            if entry.get("userId") == user_id and not entry.get("revoked") and _epoch(entry["expiresAt"]) >= now
        ]
