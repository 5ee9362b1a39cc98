from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import threading
from typing import Any, Iterable

from starlette.requests import Request

from dealerhub.domain.models import AuditRecord
from dealerhub.services.security import mask_sensitive_fields
from dealerhub.services.tenancy import normalize_tenant_id


logger = logging.getLogger(__name__)


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class AuditLogWriter:
    """Append-only JSON-lines audit log with PII masking applied before write."""

    def __init__(self, path: str | Path, mask_fields: Iterable[str]) -> None:
        self.path = Path(path)
        self.mask_fields = list(mask_fields)
        self.lock = threading.Lock()

    def record(
        self,
        *,
        tenant_id: str,
        user: str | None,
        action: str,
        resource: str,
        resource_id: str | None = None,
        before: Any = None,
        after: Any = None,
        request_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        # Best-effort: a failed audit write is logged and never aborts the business operation.
        try:
            entry = AuditRecord(
                timestamp=(timestamp or datetime.now(timezone.utc)).isoformat(),
                tenant_id=normalize_tenant_id(tenant_id),
                user=user,
                action=action,
                resource=resource,
                resource_id=resource_id,
                request_id=request_id,
                before=mask_sensitive_fields(before, self.mask_fields) if before is not None else None,
                after=mask_sensitive_fields(after, self.mask_fields) if after is not None else None,
            )
            line = json.dumps(entry.to_document(), ensure_ascii=False, default=str)
            with self.lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            return True
        except Exception as exc:  # noqa: BLE001 - audit logging must never break callers
            logger.warning(
                "audit_record_write_failed action=%s resource=%s request_id=%s",
                action,
                resource,
                request_id,
                exc_info=exc,
            )
            return False

    def list_records(
        self,
        *,
        tenant_id: str,
        resource: str | None = None,
        action: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Return the newest matching records first; malformed lines are skipped."""
        if not self.path.exists():
            return []
        tenant = normalize_tenant_id(tenant_id)
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        matches: list[dict[str, Any]] = []
        with self.lock, self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    item = json.loads(line)
                except ValueError:
                    continue
                if not isinstance(item, dict) or item.get("tenantId") != tenant:
                    continue
                if resource and item.get("resource") != resource:
                    continue
                if action and item.get("action") != action:
                    continue
                if since is not None:
                    occurred = parse_timestamp(item.get("timestamp"))
                    if occurred is None or occurred < since:
                        continue
                matches.append(item)
        matches.reverse()
        return matches[: max(0, limit)]
