from __future__ import annotations

import argparse
import getpass
import sys

from dealerhub.core.config import get_settings
from dealerhub.services.auth.roles import ROLES
from dealerhub.services.container import ServiceContainer


def _build_parser() -> argparse.ArgumentParser:
    # Keep CLI arguments explicit so users never land in the wrong dealership.
    parser = argparse.ArgumentParser(description="Create a staff user for a tenant")
    parser.add_argument("--tenant", required=True, help="Tenant identifier")
    parser.add_argument("--username", required=True)
    parser.add_argument("--role", required=True, help="Role: " + "|".join(ROLES))
    parser.add_argument("--display-name", default=None)
    parser.add_argument("--password", default=None, help="Prompted for when omitted")
    return parser


def main() -> int:
    args = _build_parser().parse_args()
    password = args.password or getpass.getpass("Password: ")
    container = ServiceContainer(get_settings())
    try:
        user = container.auth.create_user(
            username=args.username,
            password=password,
            role=args.role,
            tenant_id=args.tenant,
            display_name=args.display_name,
        )
    except ValueError as exc:
        print(f"create_user failed: {exc}", file=sys.stderr)
        return 1
    print("User created:")
    print(f"  id: {user['id']}")
    print(f"  tenant: {user['tenantId']}")
    print(f"  role: {user['role']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
