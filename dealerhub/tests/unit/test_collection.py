from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json

from dealerhub.domain.results import Conflict, NotFound, Success, ValidationFailed
from dealerhub.persistence.context import DataContext
from dealerhub.persistence.store import JsonStore
from dealerhub.services.audit import AuditLogWriter
from dealerhub.services.collection import ResourceSpec, TenantScopedCollection


WIDGETS = ResourceSpec(
    name="widgets",
    label="Widget",
    required_fields=("code", "name"),
    unique_fields=("code",),
    filter_fields=("color", "active"),
    search_fields=("name",),
    sort_fields=("createdAt", "price", "name"),
    bool_fields=("active",),
    number_fields=("price",),
    defaults={"active": True},
    transitions={"draft": ("live",), "live": ("retired",), "retired": ()},
    initial_status="draft",
)


class _StepClock:
    def __init__(self) -> None:
        self.current = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def _collection(tmp_path, audit: AuditLogWriter | None = None) -> TenantScopedCollection:
    context = DataContext(JsonStore(tmp_path))
    return TenantScopedCollection(context, WIDGETS, audit=audit, default_limit=2, max_limit=3, clock=_StepClock())


def test_create_stamps_tenant_and_owned_fields(tmp_path) -> None:
    widgets = _collection(tmp_path)
    result = widgets.create({"code": "W1", "name": "<b>First</b>", "id": "spoofed", "tenantId": "other"}, "Main")
    assert isinstance(result, Success)
    record = result.record
    assert record["id"] != "spoofed"
    assert record["tenantId"] == "main"
    assert record["name"] == "bFirst/b"
    assert record["status"] == "draft"
    assert record["active"] is True
    assert record["createdAt"] == record["updatedAt"]


def test_create_reports_every_missing_field(tmp_path) -> None:
    widgets = _collection(tmp_path)
    result = widgets.create({"name": " "}, "main")
    assert isinstance(result, ValidationFailed)
    assert result.fields == ["code", "name"]
    assert result.message == "code, name are required"


def test_unique_fields_are_scoped_per_tenant(tmp_path) -> None:
    widgets = _collection(tmp_path)
    assert isinstance(widgets.create({"code": "W1", "name": "A"}, "main"), Success)
    duplicate = widgets.create({"code": "W1", "name": "B"}, "main")
    assert isinstance(duplicate, Conflict)
    assert duplicate.field == "code"
    assert isinstance(widgets.create({"code": "W1", "name": "B"}, "lexington"), Success)


def test_records_are_invisible_across_tenants(tmp_path) -> None:
    widgets = _collection(tmp_path)
    created = widgets.create({"code": "W1", "name": "A"}, "main").record

    assert widgets.find_by_id(created["id"], "lexington") is None
    assert isinstance(widgets.update(created["id"], {"name": "B"}, "lexington"), NotFound)
    assert isinstance(widgets.remove(created["id"], "lexington"), NotFound)
    assert widgets.list({}, "lexington").total == 0
    assert widgets.find_by_id(created["id"], "main")["name"] == "A"


def test_list_filters_searches_sorts_and_pages(tmp_path) -> None:
    widgets = _collection(tmp_path)
    widgets.create({"code": "A", "name": "Alpha", "price": "30", "color": "red"}, "main")
    widgets.create({"code": "B", "name": "Bravo", "price": 10, "color": "blue", "active": "false"}, "main")
    widgets.create({"code": "C", "name": "Charlie", "price": 20, "color": "red"}, "main")

    newest_first = widgets.list({}, "main")
    assert [item["code"] for item in newest_first.items] == ["C", "B"]
    assert newest_first.total == 3
    assert newest_first.limit == 2

    by_price = widgets.list({"sortBy": "price", "sortDir": "asc", "limit": "10"}, "main")
    assert [item["code"] for item in by_price.items] == ["B", "C", "A"]
    assert by_price.limit == 3

    red = widgets.list({"color": "red", "limit": 5}, "main")
    assert sorted(item["code"] for item in red.items) == ["A", "C"]

    inactive = widgets.list({"active": "false"}, "main")
    assert [item["code"] for item in inactive.items] == ["B"]

    searched = widgets.list({"search": "char"}, "main")
    assert [item["code"] for item in searched.items] == ["C"]

    second_page = widgets.list({"offset": 2}, "main")
    assert [item["code"] for item in second_page.items] == ["A"]


def test_update_merges_and_enforces_status_graph(tmp_path) -> None:
    widgets = _collection(tmp_path)
    created = widgets.create({"code": "W1", "name": "A"}, "main").record

    updated = widgets.update(created["id"], {"name": "B", "createdAt": "1999"}, "main")
    assert isinstance(updated, Success)
    assert updated.record["name"] == "B"
    assert updated.record["createdAt"] == created["createdAt"]
    assert updated.record["updatedAt"] > created["updatedAt"]
    assert updated.previous["name"] == "A"

    skipped = widgets.transition(created["id"], "retired", "main")
    assert isinstance(skipped, ValidationFailed)
    assert "draft to retired" in skipped.message

    assert isinstance(widgets.transition(created["id"], "live", "main"), Success)
    unknown = widgets.transition(created["id"], "exploded", "main")
    assert isinstance(unknown, ValidationFailed)
    assert unknown.fields == ["status"]

    cleared = widgets.update(created["id"], {"name": ""}, "main")
    assert isinstance(cleared, ValidationFailed)
    assert cleared.fields == ["name"]


def test_remove_returns_removed_record(tmp_path) -> None:
    widgets = _collection(tmp_path)
    created = widgets.create({"code": "W1", "name": "A"}, "main").record
    removed = widgets.remove(created["id"], "main")
    assert isinstance(removed, Success)
    assert removed.record["id"] == created["id"]
    assert widgets.find_by_id(created["id"], "main") is None


def test_output_is_escaped_but_storage_is_not(tmp_path) -> None:
    widgets = _collection(tmp_path)
    created = widgets.create({"code": "W&1", "name": "Tom's"}, "main").record
    assert created["name"] == "Tom&#x27;s"
    assert widgets.find_raw(created["id"], "main")["name"] == "Tom's"


def test_mutations_are_audited_with_masking(tmp_path) -> None:
    audit = AuditLogWriter(tmp_path / "audit.log", ["email"])
    widgets = _collection(tmp_path, audit=audit)
    created = widgets.create({"code": "W1", "name": "A", "email": "a@example.com"}, "main", "alice").record
    widgets.update(created["id"], {"name": "B"}, "main", "alice", request_id="req-1")
    widgets.remove(created["id"], "main", "bob")

    lines = [json.loads(line) for line in (tmp_path / "audit.log").read_text().splitlines()]
    assert [line["action"] for line in lines] == ["create", "update", "delete"]
    assert lines[0]["after"]["email"] == "[MASKED]"
    assert lines[0]["user"] == "alice"
    assert lines[1]["requestId"] == "req-1"
    assert lines[1]["before"]["name"] == "A"
    assert lines[2]["resourceId"] == created["id"]
    assert "after" not in lines[2]
