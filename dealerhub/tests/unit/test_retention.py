from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import json
import logging

import pytest

from dealerhub.persistence.context import DataContext
from dealerhub.persistence.store import JsonStore
from dealerhub.services.audit import AuditLogWriter
from dealerhub.services.retention import (
    RetentionScheduler,
    RetentionService,
    apply_retention_policies,
    parse_retention_policies,
    partition_by_retention,
    prune_audit_log,
)


NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _days_ago(days: int) -> str:
    return (NOW - timedelta(days=days)).isoformat()


def test_partition_keeps_undated_and_boundary_items() -> None:
    cutoff = NOW - timedelta(days=30)
    items = [
        {"id": "old", "createdAt": _days_ago(31)},
        {"id": "edge", "createdAt": cutoff.isoformat()},
        {"id": "new", "createdAt": _days_ago(1)},
        {"id": "form", "submittedAt": _days_ago(40)},
        {"id": "undated"},
        {"id": "garbage", "createdAt": "last tuesday"},
    ]
    partition = partition_by_retention(items, cutoff)
    assert [item["id"] for item in partition.archived] == ["old", "form"]
    assert [item["id"] for item in partition.kept] == ["edge", "new", "undated", "garbage"]


def test_partition_accepts_custom_selector_and_naive_cutoff() -> None:
    items = [{"id": "a", "closedAt": "2024-01-01T00:00:00Z"}, {"id": "b", "closedAt": "2024-05-31T00:00:00Z"}]
    partition = partition_by_retention(items, datetime(2024, 3, 1), lambda item: item.get("closedAt"))
    assert [item["id"] for item in partition.archived] == ["a"]


def test_parse_retention_policies_ignores_bad_entries() -> None:
    assert parse_retention_policies("leads:365, tool_calls:30,bad,zero:0,neg:-3,text:abc") == {
        "leads": 365,
        "tool_calls": 30,
    }
    assert parse_retention_policies({"leads": "7"}) == {"leads": 7}
    assert parse_retention_policies(None) == {}


def test_apply_retention_policies_archives_before_persisting() -> None:
    datasets = {
        "leads": [{"id": "1", "createdAt": _days_ago(400)}, {"id": "2", "createdAt": _days_ago(5)}],
        "tasks": [{"id": "t", "createdAt": _days_ago(400)}],
    }
    calls: list[tuple[str, object]] = []

    def archive(collection, records):
        calls.append(("archive", collection, [record["id"] for record in records]))

    def persist(kept):
        calls.append(("persist", [record["id"] for record in kept]))

    counts = apply_retention_policies({"leads": 365}, datasets, {"leads": persist}, archive, now=NOW)
    assert counts == {"leads": 1}
    assert calls == [("archive", "leads", ["1"]), ("persist", ["2"])]
    assert [record["id"] for record in datasets["leads"]] == ["2"]
    assert len(datasets["tasks"]) == 1


def test_failed_archive_leaves_collection_untouched() -> None:
    datasets = {"leads": [{"id": "1", "createdAt": _days_ago(400)}]}

    def archive(collection, records):
        raise OSError("disk full")

    with pytest.raises(OSError):
        apply_retention_policies({"leads": 30}, datasets, {}, archive, now=NOW)
    assert len(datasets["leads"]) == 1


def test_prune_audit_log_moves_old_lines_and_keeps_malformed(tmp_path) -> None:
    audit_path = tmp_path / "audit.log"
    audit_path.write_text(
        "\n".join(
            [
                json.dumps({"timestamp": _days_ago(100), "action": "create"}),
                "{broken",
                json.dumps({"timestamp": _days_ago(1), "action": "update"}),
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    count, archive_path = prune_audit_log(audit_path, tmp_path / "archive", 90, now=NOW)
    assert count == 1
    assert archive_path.name == f"audit-{int(NOW.timestamp() * 1000)}.log"
    assert json.loads(archive_path.read_text().strip())["action"] == "create"
    kept = audit_path.read_text().splitlines()
    assert kept[0] == "{broken"
    assert json.loads(kept[1])["action"] == "update"

    assert prune_audit_log(audit_path, tmp_path / "archive", 90, now=NOW) == (0, None)
    assert prune_audit_log(audit_path, tmp_path / "archive", 0, now=NOW) == (0, None)
    assert prune_audit_log(tmp_path / "missing.log", tmp_path / "archive", 90, now=NOW) == (0, None)


def _service(tmp_path) -> tuple[RetentionService, DataContext, AuditLogWriter]:
    context = DataContext(JsonStore(tmp_path))
    audit = AuditLogWriter(context.store.audit_log_path, [])
    service = RetentionService(context, policies={"leads": 30}, audit_retention_days=90, audit=audit)
    return service, context, audit


def test_run_sweep_archives_per_tenant(tmp_path) -> None:
    service, context, audit = _service(tmp_path)
    context.replace(
        "leads",
        "main",
        [{"id": "old", "tenantId": "main", "createdAt": _days_ago(60)}, {"id": "new", "tenantId": "main", "createdAt": _days_ago(2)}],
    )
    context.replace("leads", "lexington", [{"id": "fresh", "tenantId": "lexington", "createdAt": _days_ago(2)}])
    audit.record(tenant_id="main", user=None, action="create", resource="leads", timestamp=NOW - timedelta(days=120))

    report = service.run_sweep(NOW)
    assert report.archived == {"main": {"leads": 1}}
    assert report.audit_archived == 1
    assert report.total_archived == 2
    assert [item["id"] for item in context.snapshot("leads", "main")] == ["new"]
    assert len(context.snapshot("leads", "lexington")) == 1

    stamp = int(NOW.timestamp() * 1000)
    archive_file = tmp_path / "archive" / f"leads-main-{stamp}.json"
    assert json.loads(archive_file.read_text())[0]["id"] == "old"
    assert report.as_dict()["archiveFiles"] == [str(archive_file), str(tmp_path / "archive" / f"audit-{stamp}.log")]

    persisted = JsonStore(tmp_path).load_collection("leads", "main")
    assert [item["id"] for item in persisted] == ["new"]
    assert service.run_sweep(NOW).total_archived == 0


def test_run_sweep_logs_one_summary_from_a_single_tenant_scan(tmp_path, caplog) -> None:
    service, context, audit = _service(tmp_path)
    context.replace("leads", "main", [{"id": "old", "tenantId": "main", "createdAt": _days_ago(60)}])
    context.replace("leads", "lexington", [{"id": "stale", "tenantId": "lexington", "createdAt": _days_ago(45)}])
    audit.record(tenant_id="main", user=None, action="create", resource="leads", timestamp=NOW - timedelta(days=120))
    tenants = context.tenant_ids()

    scans: list[int] = []
    original = context.tenant_ids

    def counting_tenant_ids():
        scans.append(1)
        return original()

    context.tenant_ids = counting_tenant_ids  # type: ignore[method-assign]
    with caplog.at_level(logging.INFO, logger="dealerhub.services.retention"):
        report = service.run_sweep(NOW)

    assert len(scans) == 1
    assert report.records_archived == 2
    assert report.total_archived == 3
    summary = [record.getMessage() for record in caplog.records if "retention_sweep_completed" in record.getMessage()]
    assert summary == [f"retention_sweep_completed tenants={len(tenants)} archived=2 audit_archived=1"]


@pytest.mark.asyncio
async def test_scheduler_runs_immediately_then_on_interval(tmp_path) -> None:
    service, _context, _audit = _service(tmp_path)
    sleeps: list[float] = []
    release = asyncio.Event()

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        if len(sleeps) >= 2:
            release.set()
            await asyncio.Event().wait()

    scheduler = RetentionScheduler(service, interval_s=3600, sleep=fake_sleep, clock=lambda: NOW)
    scheduler.start()
    assert scheduler.running
    await asyncio.wait_for(release.wait(), timeout=5)
    assert scheduler.runs == 2
    assert sleeps == [3600, 3600]
    assert scheduler.last_report is not None

    await scheduler.stop()
    assert not scheduler.running
    await scheduler.stop()


@pytest.mark.asyncio
async def test_scheduler_survives_failed_sweeps(tmp_path) -> None:
    service, _context, _audit = _service(tmp_path)
    attempts: list[int] = []

    def broken_sweep(now=None):
        attempts.append(1)
        raise RuntimeError("boom")

    service.run_sweep = broken_sweep  # type: ignore[method-assign]
    release = asyncio.Event()

    async def fake_sleep(seconds: float) -> None:
        if len(attempts) >= 2:
            release.set()
            await asyncio.Event().wait()

    scheduler = RetentionScheduler(service, interval_s=1, sleep=fake_sleep, clock=lambda: NOW)
    scheduler.start()
    await asyncio.wait_for(release.wait(), timeout=5)
    assert len(attempts) == 2
    assert scheduler.runs == 0
    await scheduler.stop()
