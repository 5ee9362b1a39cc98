from __future__ import annotations

from httpx import AsyncClient

from dealerhub.services.container import ServiceContainer


DEFAULT_PASSWORD = "correct-horse-battery"


def create_test_user(
    container: ServiceContainer,
    *,
    tenant_id: str,
    role: str,
    username: str | None = None,
    password: str = DEFAULT_PASSWORD,
) -> dict:
    # Provision a user directly through the auth service for API tests.
    return container.auth.create_user(
        username=username or f"{role}-{tenant_id}",
        password=password,
        role=role,
        tenant_id=tenant_id,
    )


async def login_headers(
    client: AsyncClient,
    *,
    username: str,
    tenant_id: str,
    password: str = DEFAULT_PASSWORD,
) -> dict[str, str]:
    response = await client.post(
        "/v1/auth/login",
        json={"username": username, "password": password, "tenantId": tenant_id},
    )
    assert response.status_code == 200, response.text
    token = response.json()["data"]["accessToken"]
    return {"Authorization": f"Bearer {token}", "X-Tenant-Id": tenant_id}


def bearer_for(container: ServiceContainer, *, tenant_id: str, role: str) -> dict[str, str]:
    # Skip the HTTP login round-trip when a test only needs a valid access token.
    user = create_test_user(container, tenant_id=tenant_id, role=role)
    grant = container.auth.login(user["username"], DEFAULT_PASSWORD, tenant_id)
    return {"Authorization": f"Bearer {grant.tokens.access_token}", "X-Tenant-Id": tenant_id}
