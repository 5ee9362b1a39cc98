from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class StoredModel(BaseModel):
    # Persisted documents use camelCase keys; Python code uses snake_case attributes.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Tenant(StoredModel):
    id: str
    name: str = "Primary Dealership"
    location: str = ""
    created_at: str | None = None


class UserAccount(StoredModel):
    id: str
    tenant_id: str
    username: str
    role: str
    password_hash: str
    salt: str
    display_name: str | None = None
    is_active: bool = True
    created_at: str | None = None

    def public_view(self) -> dict[str, Any]:
        # Never expose password material outside the auth service.
        return self.model_dump(by_alias=True, exclude={"password_hash", "salt"}, exclude_none=True)


class RefreshTokenRecord(StoredModel):
    jti: str
    user_id: str
    tenant_id: str
    # Root jti of the rotation chain; equals jti for the first token of a login.
    chain_id: str
    rotated_from: str | None = None
    issued_at: str
    expires_at: str
    revoked: bool = False
    revoked_at: str | None = None
    revoked_reason: str | None = None


class AuditRecord(StoredModel):
    timestamp: str
    tenant_id: str
    user: str | None = None
    action: str
    resource: str
    resource_id: str | None = None
    request_id: str | None = None
    before: Any = None
    after: Any = None


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in_seconds: int


class SessionGrant(BaseModel):
    # Result of a successful login or refresh.
    tokens: TokenPair
    user: dict[str, Any] = Field(default_factory=dict)
