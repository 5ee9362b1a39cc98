from __future__ import annotations

import argparse
import json

from dealerhub.core.config import get_settings
from dealerhub.services.container import ServiceContainer


def main() -> None:
    parser = argparse.ArgumentParser(description="Write a masked, gzip-compressed tenant snapshot")
    parser.add_argument("--tenant", required=True, help="Tenant identifier")
    args = parser.parse_args()

    container = ServiceContainer(get_settings())
    tenant_id = container.tenants.ensure_tenant(args.tenant)
    result = container.exports.write_compressed_snapshot(tenant_id)
    container.audit.record(
        tenant_id=tenant_id,
        user="export_tenant",
        action="export",
        resource="snapshot",
        resource_id=result["fileName"],
        after=result["counts"],
    )
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
