from __future__ import annotations

import json

import pytest

from dealerhub.persistence.context import DataContext
from dealerhub.persistence.guards import TenantPredicateError
from dealerhub.persistence.store import JsonStore, write_atomic


def test_write_atomic_replaces_content_without_temp_leftovers(tmp_path) -> None:
    target = tmp_path / "nested" / "doc.json"
    write_atomic(target, "[1]")
    write_atomic(target, b"[2]")
    assert target.read_text(encoding="utf-8") == "[2]"
    assert [path.name for path in target.parent.iterdir()] == ["doc.json"]


def test_store_lays_out_tenant_documents(tmp_path) -> None:
    store = JsonStore(tmp_path)
    store.save_collection("leads", "main", [{"id": "1"}])
    assert json.loads((tmp_path / "tenants" / "main" / "leads.json").read_text()) == [{"id": "1"}]
    assert store.load_collection("leads", "main") == [{"id": "1"}]
    assert store.load_collection("leads", "other") == []
    assert store.tenant_ids() == ["main"]


def test_store_tolerates_corrupt_documents(tmp_path) -> None:
    store = JsonStore(tmp_path)
    path = store.collection_path("leads", "main")
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")
    assert store.load_collection("leads", "main") == []


def test_store_requires_tenant(tmp_path) -> None:
    store = JsonStore(tmp_path)
    with pytest.raises(TenantPredicateError):
        store.collection_path("leads", "")


def test_context_persists_mutations_and_isolates_snapshots(tmp_path) -> None:
    context = DataContext(JsonStore(tmp_path))
    with context.mutate("leads", "main") as items:
        items.append({"id": "1", "tenantId": "main"})

    snapshot = context.snapshot("leads", "main")
    snapshot[0]["id"] = "changed"
    assert context.snapshot("leads", "main")[0]["id"] == "1"

    reloaded = DataContext(JsonStore(tmp_path))
    assert reloaded.snapshot("leads", "main") == [{"id": "1", "tenantId": "main"}]
    assert "main" in reloaded.tenant_ids()


def test_context_registers_tenant_on_first_use(tmp_path) -> None:
    context = DataContext(JsonStore(tmp_path), default_tenant_id="main")
    assert context.ensure_tenant("main") is True
    assert context.ensure_tenant("main") is False
    tenants = context.system_snapshot("tenants")
    assert tenants[0]["id"] == "main"
    assert tenants[0]["name"] == "Primary Dealership"

    context.replace("inventory", "lexington", [{"id": "u1", "tenantId": "lexington"}])
    assert context.tenant_ids() == ["lexington", "main"]


def test_context_rejects_missing_tenant(tmp_path) -> None:
    context = DataContext(JsonStore(tmp_path))
    with pytest.raises(TenantPredicateError):
        context.snapshot("leads", None)  # type: ignore[arg-type]
