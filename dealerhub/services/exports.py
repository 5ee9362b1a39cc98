from __future__ import annotations

from datetime import datetime, timezone
import gzip
import json
import logging
from typing import Any, Callable, Iterable, Mapping

from dealerhub.persistence.context import DataContext
from dealerhub.services.security import mask_sensitive_fields
from dealerhub.services.tenancy import filter_by_tenant, normalize_tenant_id


logger = logging.getLogger(__name__)

# Collections included in a tenant snapshot, keyed by their export name.
EXPORT_COLLECTIONS: dict[str, str] = {
    "inventory": "inventory",
    "leads": "leads",
    "customers": "customers",
    "serviceTickets": "service_tickets",
    "financeOffers": "finance_offers",
    "contentPages": "content_pages",
    "reviews": "reviews",
    "teams": "teams",
    "campaigns": "campaigns",
    "redirects": "redirects",
    "tasks": "tasks",
}


class ExportService:
    """Tenant snapshots with PII masked, optionally gzip-compressed to disk."""

    def __init__(
        self,
        context: DataContext,
        *,
        mask_fields: Iterable[str],
        collections: Mapping[str, str] | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.context = context
        self.mask_fields = list(mask_fields)
        self.collections = dict(collections or EXPORT_COLLECTIONS)
        self.clock = clock

    def build_snapshot(self, tenant_id: Any) -> dict[str, Any]:
        tenant = normalize_tenant_id(tenant_id, self.context.default_tenant_id)
        snapshot: dict[str, Any] = {
            "generatedAt": self.clock().isoformat(),
            "tenantId": tenant,
            "counts": {},
            "datasets": {},
        }
        for key, collection in self.collections.items():
            records = filter_by_tenant(self.context.snapshot(collection, tenant), tenant)
            snapshot["datasets"][key] = mask_sensitive_fields(list(records), self.mask_fields)
            snapshot["counts"][key] = len(records)
        return snapshot

    def write_compressed_snapshot(self, tenant_id: Any) -> dict[str, Any]:
        snapshot = self.build_snapshot(tenant_id)
        payload = gzip.compress(json.dumps(snapshot, indent=2, ensure_ascii=False).encode("utf-8"))
        moment = self.clock()
        file_name = f"export-{snapshot['tenantId']}-{int(moment.timestamp() * 1000)}.json.gz"
        path = self.context.store.write_export(file_name, payload)
        logger.info(
            "tenant_export_written tenant_id=%s file=%s size_bytes=%s",
            snapshot["tenantId"],
            file_name,
            len(payload),
        )
        return {
            "fileName": file_name,
            "path": str(path),
            "sizeBytes": len(payload),
            "generatedAt": snapshot["generatedAt"],
            "counts": snapshot["counts"],
        }
