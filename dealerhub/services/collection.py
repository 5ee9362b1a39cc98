from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Mapping
from uuid import uuid4

from dealerhub.domain.results import (
    Conflict,
    MutationResult,
    NotFound,
    Page,
    Success,
    ValidationFailed,
)
from dealerhub.persistence.context import DataContext
from dealerhub.services.audit import AuditLogWriter
from dealerhub.services.sanitize import (
    clamp_number,
    coerce_bool,
    escape_output,
    missing_fields,
    missing_fields_message,
    sanitize_input,
)
from dealerhub.services.tenancy import attach_tenant, matches_tenant, normalize_tenant_id


logger = logging.getLogger(__name__)

# Fields owned by the collection; payloads can never set or overwrite them.
PROTECTED_FIELDS = frozenset({"id", "tenantId", "createdAt", "updatedAt"})

Normalizer = Callable[[dict[str, Any], "dict[str, Any] | None"], dict[str, Any]]
Validator = Callable[[dict[str, Any], "dict[str, Any] | None"], "ValidationFailed | None"]


@dataclass(frozen=True)
class ResourceSpec:
    """Field policy for one tenant-scoped resource."""

    name: str
    label: str
    required_fields: tuple[str, ...] = ()
    unique_fields: tuple[str, ...] = ()
    filter_fields: tuple[str, ...] = ()
    search_fields: tuple[str, ...] = ()
    sort_fields: tuple[str, ...] = ("createdAt",)
    bool_fields: tuple[str, ...] = ()
    number_fields: tuple[str, ...] = ()
    defaults: Mapping[str, Any] = field(default_factory=dict)
    # Status graph: status -> statuses reachable from it. Empty means no status policy.
    transitions: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    initial_status: str | None = None
    normalize: Normalizer | None = None
    validate: Validator | None = None

    @property
    def statuses(self) -> tuple[str, ...]:
        return tuple(self.transitions)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _date_key(value: Any) -> float:
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return 0.0
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    return 0.0


def _sort_key(field_name: str) -> Callable[[dict[str, Any]], Any]:
    if field_name.endswith("At") or field_name.endswith("Date"):
        return lambda item: _date_key(item.get(field_name))

    def _key(item: dict[str, Any]) -> Any:
        value = item.get(field_name)
        number = clamp_number(value, None)
        if number is not None:
            return (0, number, "")
        return (1, 0, str(value or "").lower())

    return _key


class TenantScopedCollection:
    """CRUD over one named collection, always filtered and stamped by tenant.

    Every operation takes the tenant explicitly; a record is only ever visible
    to, or mutable by, the tenant that created it.
    """

    def __init__(
        self,
        context: DataContext,
        spec: ResourceSpec,
        *,
        audit: AuditLogWriter | None = None,
        default_limit: int = 50,
        max_limit: int = 200,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.context = context
        self.spec = spec
        self.audit = audit
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.clock = clock

    @property
    def name(self) -> str:
        return self.spec.name

    # -- helpers -----------------------------------------------------------

    def _tenant(self, tenant_id: Any) -> str:
        return normalize_tenant_id(tenant_id, self.context.default_tenant_id)

    def _scoped(self, tenant_id: str) -> list[dict[str, Any]]:
        return [
            item
            for item in self.context.snapshot(self.spec.name, tenant_id)
            if matches_tenant(item.get("tenantId"), tenant_id)
        ]

    @staticmethod
    def _index_of(items: list[dict[str, Any]], record_id: str, tenant_id: str) -> int:
        for index, item in enumerate(items):
            if item.get("id") == record_id and matches_tenant(item.get("tenantId"), tenant_id):
                return index
        return -1

    def _clean_payload(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        cleaned = sanitize_input({k: v for k, v in payload.items() if k not in PROTECTED_FIELDS})
        for name in self.spec.bool_fields:
            if name in cleaned:
                cleaned[name] = coerce_bool(cleaned[name], bool(self.spec.defaults.get(name, False)))
        for name in self.spec.number_fields:
            if name in cleaned and cleaned[name] is not None:
                cleaned[name] = clamp_number(cleaned[name], cleaned[name])
        return cleaned

    def _conflict(
        self, items: list[dict[str, Any]], candidate: dict[str, Any], tenant_id: str, ignore_id: str | None
    ) -> Conflict | None:
        for unique in self.spec.unique_fields:
            value = candidate.get(unique)
            if value in (None, ""):
                continue
            for item in items:
                if item.get("id") == ignore_id or not matches_tenant(item.get("tenantId"), tenant_id):
                    continue
                if item.get(unique) == value:
                    return Conflict(
                        message=f"{self.spec.label} with {unique} '{value}' already exists", field=unique
                    )
        return None

    def _check_status(self, current: str | None, requested: Any) -> ValidationFailed | None:
        if not self.spec.transitions or requested is None:
            return None
        if requested not in self.spec.transitions:
            allowed = ", ".join(self.spec.statuses)
            return ValidationFailed(message=f"status must be one of: {allowed}", fields=["status"])
        if current is None or current == requested:
            return None
        if requested not in self.spec.transitions.get(current, ()):
            return ValidationFailed(
                message=f"Invalid status transition from {current} to {requested}", fields=["status"]
            )
        return None

    def _audit(
        self,
        action: str,
        tenant_id: str,
        actor: str | None,
        record_id: str | None,
        before: Any,
        after: Any,
        request_id: str | None,
    ) -> None:
        if self.audit is None:
            return
        self.audit.record(
            tenant_id=tenant_id,
            user=actor,
            action=action,
            resource=self.spec.name,
            resource_id=record_id,
            before=before,
            after=after,
            request_id=request_id,
        )

    # -- reads -------------------------------------------------------------

    def list(self, query: Mapping[str, Any] | None, tenant_id: Any) -> Page:
        query = dict(query or {})
        tenant = self._tenant(tenant_id)
        items = self._scoped(tenant)

        for name in self.spec.filter_fields:
            wanted = query.get(name)
            if wanted is None or wanted == "":
                continue
            if name in self.spec.bool_fields:
                flag = coerce_bool(wanted)
                items = [item for item in items if bool(item.get(name)) == flag]
            else:
                items = [item for item in items if str(item.get(name)) == str(wanted)]

        term = query.get("search")
        if isinstance(term, str) and term.strip() and self.spec.search_fields:
            lowered = term.strip().lower()
            items = [
                item
                for item in items
                if any(lowered in str(item.get(name) or "").lower() for name in self.spec.search_fields)
            ]

        sort_by = query.get("sortBy") if query.get("sortBy") in self.spec.sort_fields else "createdAt"
        descending = str(query.get("sortDir") or "desc").lower() != "asc"
        items = sorted(items, key=_sort_key(sort_by), reverse=descending)

        offset = max(0, int(clamp_number(query.get("offset"), 0) or 0))
        limit = int(clamp_number(query.get("limit"), self.default_limit) or 0)
        limit = max(0, min(limit, self.max_limit))
        window = items[offset : offset + limit]
        return Page(items=[escape_output(item) for item in window], total=len(items), limit=limit, offset=offset)

    def find_raw(self, record_id: str, tenant_id: Any) -> dict[str, Any] | None:
        # Unescaped internal lookup for services layering their own logic on top.
        tenant = self._tenant(tenant_id)
        for item in self._scoped(tenant):
            if item.get("id") == record_id:
                return item
        return None

    def find_by_id(self, record_id: str, tenant_id: Any) -> dict[str, Any] | None:
        record = self.find_raw(record_id, tenant_id)
        return escape_output(record) if record is not None else None

    # -- writes ------------------------------------------------------------

    def create(
        self,
        payload: Mapping[str, Any],
        tenant_id: Any,
        actor: str | None = None,
        *,
        request_id: str | None = None,
    ) -> MutationResult:
        missing = missing_fields(payload, self.spec.required_fields)
        if missing:
            return ValidationFailed(message=missing_fields_message(missing), fields=missing)

        tenant = self._tenant(tenant_id)
        body = self._clean_payload(payload)
        if self.spec.normalize is not None:
            body = self.spec.normalize(body, None)
        if self.spec.validate is not None:
            failure = self.spec.validate(body, None)
            if failure is not None:
                return failure
        if self.spec.transitions:
            requested = body.get("status")
            if requested is not None and requested not in self.spec.transitions:
                return ValidationFailed(
                    message=f"status must be one of: {', '.join(self.spec.statuses)}", fields=["status"]
                )
            body["status"] = requested or self.spec.initial_status

        now = self.clock().isoformat()
        record = attach_tenant(
            {**dict(self.spec.defaults), **body, "id": str(uuid4()), "createdAt": now, "updatedAt": now},
            tenant,
        )

        with self.context.lock:
            conflict = self._conflict(self.context.snapshot(self.spec.name, tenant), record, tenant, None)
            if conflict is not None:
                return conflict
            with self.context.mutate(self.spec.name, tenant) as items:
                items.append(record)

        logger.debug("collection_create resource=%s tenant_id=%s id=%s", self.spec.name, tenant, record["id"])
        self._audit("create", tenant, actor, record["id"], None, record, request_id)
        return Success(record=escape_output(record))

    def update(
        self,
        record_id: str,
        payload: Mapping[str, Any],
        tenant_id: Any,
        actor: str | None = None,
        *,
        request_id: str | None = None,
    ) -> MutationResult:
        tenant = self._tenant(tenant_id)
        updates = self._clean_payload(payload)

        with self.context.lock:
            items = self.context.snapshot(self.spec.name, tenant)
            index = self._index_of(items, record_id, tenant)
            if index == -1:
                return NotFound(resource=self.spec.name, id=record_id)
            previous = items[index]

            if self.spec.normalize is not None:
                updates = self.spec.normalize(updates, previous)
            merged = {**previous, **updates}
            blank = [name for name in missing_fields(merged, self.spec.required_fields)]
            if blank:
                return ValidationFailed(message=missing_fields_message(blank), fields=blank)
            if self.spec.validate is not None:
                failure = self.spec.validate(merged, previous)
                if failure is not None:
                    return failure
            status_failure = self._check_status(previous.get("status"), updates.get("status"))
            if status_failure is not None:
                return status_failure
            conflict = self._conflict(items, merged, tenant, record_id)
            if conflict is not None:
                return conflict

            merged["updatedAt"] = self.clock().isoformat()
            with self.context.mutate(self.spec.name, tenant) as live:
                live_index = self._index_of(live, record_id, tenant)
                live[live_index] = merged

        self._audit("update", tenant, actor, record_id, previous, merged, request_id)
        return Success(record=escape_output(merged), previous=escape_output(previous))

    def transition(
        self,
        record_id: str,
        status: Any,
        tenant_id: Any,
        actor: str | None = None,
        *,
        extra: Mapping[str, Any] | None = None,
        request_id: str | None = None,
    ) -> MutationResult:
        """Move a record along the resource's status graph."""
        if not self.spec.transitions:
            return ValidationFailed(message=f"{self.spec.label} has no status workflow", fields=["status"])
        if self.find_raw(record_id, tenant_id) is None:
            return NotFound(resource=self.spec.name, id=record_id)
        if status is None or status == "":
            return ValidationFailed(message="status is required", fields=["status"])
        return self.update(record_id, {**dict(extra or {}), "status": status}, tenant_id, actor, request_id=request_id)

    def remove(
        self,
        record_id: str,
        tenant_id: Any,
        actor: str | None = None,
        *,
        request_id: str | None = None,
    ) -> MutationResult:
        tenant = self._tenant(tenant_id)
        with self.context.lock:
            if self._index_of(self.context.snapshot(self.spec.name, tenant), record_id, tenant) == -1:
                return NotFound(resource=self.spec.name, id=record_id)
            with self.context.mutate(self.spec.name, tenant) as items:
                removed = items.pop(self._index_of(items, record_id, tenant))

        self._audit("delete", tenant, actor, record_id, removed, None, request_id)
        return Success(record=escape_output(removed), previous=escape_output(removed))
