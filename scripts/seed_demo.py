from __future__ import annotations

import argparse
from dataclasses import dataclass
import secrets
import sys

from dealerhub.core.config import get_settings
from dealerhub.core.logging import configure_logging
from dealerhub.domain.results import Success
from dealerhub.services.container import ServiceContainer


@dataclass(frozen=True)
class DemoTenant:
    # Seed content is fixed so repeated runs produce the same demo data.
    tenant_id: str
    name: str
    location: str
    stock_prefix: str


DEMO_TENANTS: tuple[DemoTenant, ...] = (
    DemoTenant("main", "Primary Dealership", "Louisville, KY", "D"),
    DemoTenant("lexington", "Lexington RV Center", "Lexington, KY", "L"),
)


def build_demo_records(tenant: DemoTenant) -> dict[str, list[dict]]:
    prefix = tenant.stock_prefix
    return {
        "inventory": [
            {
                "stockNumber": f"{prefix}100",
                "name": "2024 Aspen Trail 26BH",
                "condition": "new",
                "category": "travel-trailer",
                "price": 38999,
                "msrp": 44500,
                "location": tenant.location,
                "featured": True,
            },
            {
                "stockNumber": f"{prefix}101",
                "name": "2019 Sunseeker 3050S",
                "condition": "used",
                "category": "motorhome",
                "price": 74900,
                "location": tenant.location,
            },
        ],
        "leads": [
            {
                "name": "Jordan Ellis",
                "email": "jordan.ellis@example.com",
                "phone": "502-555-0142",
                "message": "Is the Aspen Trail still available?",
                "utmCampaign": "spring-sale",
            },
        ],
        "customers": [
            {"firstName": "Jordan", "lastName": "Ellis", "email": "jordan.ellis@example.com", "marketingOptIn": True},
        ],
        "campaigns": [
            {"name": "Spring Sale", "slug": "spring-sale", "channel": "email"},
        ],
        "teams": [
            {"name": "Dana Price", "role": "Sales Manager"},
        ],
        "finance_offers": [
            {"lender": "Bluegrass Credit Union", "termMonths": 144, "apr": 7.49},
        ],
        "content_pages": [
            {"title": f"Why buy from {tenant.name}", "body": "Family owned since 1987.", "status": "published"},
        ],
    }


def seed(container: ServiceContainer, admin_password: str) -> dict[str, int]:
    counts: dict[str, int] = {}
    for tenant in DEMO_TENANTS:
        container.tenants.ensure_tenant(tenant.tenant_id, name=tenant.name)
        try:
            container.auth.create_user(
                username=container.settings.seed_admin_username,
                password=admin_password,
                role="admin",
                tenant_id=tenant.tenant_id,
                display_name=f"{tenant.name} Admin",
            )
        except ValueError:
            # Re-running the seed keeps existing users and their passwords.
            pass
        created = 0
        for collection, records in build_demo_records(tenant).items():
            service = container.resource(collection)
            for record in records:
                if isinstance(service.create(record, tenant.tenant_id, "seed_demo"), Success):
                    created += 1
        counts[tenant.tenant_id] = created
    return counts


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed demo dealerships, an admin user and sample records")
    parser.add_argument("--admin-password", default=None, help="Defaults to SEED_ADMIN_PASSWORD or a random value")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)
    password = args.admin_password or settings.seed_admin_password
    generated = password is None
    if generated:
        password = secrets.token_urlsafe(12)

    counts = seed(ServiceContainer(settings), password)
    for tenant_id, created in counts.items():
        print(f"seeded tenant={tenant_id} records={created}")
    print(f"admin_username={settings.seed_admin_username}")
    if generated:
        print(f"admin_password={password}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
