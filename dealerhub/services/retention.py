from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import json
import logging
from pathlib import Path
import threading
from typing import Any, Awaitable, Callable, Iterable, Mapping, MutableMapping

from dealerhub.core.config import parse_csv
from dealerhub.persistence.context import DataContext
from dealerhub.persistence.store import write_atomic
from dealerhub.services.audit import AuditLogWriter, parse_timestamp


logger = logging.getLogger(__name__)

DateSelector = Callable[[Mapping[str, Any]], Any]
ArchiveWriter = Callable[[str, list[dict[str, Any]]], "Path | None"]


def default_date_selector(item: Mapping[str, Any]) -> Any:
    # Form submissions predate the createdAt convention and only carry submittedAt.
    return item.get("createdAt") or item.get("submittedAt")


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


@dataclass
class RetentionPartition:
    archived: list[Any] = field(default_factory=list)
    kept: list[Any] = field(default_factory=list)


def partition_by_retention(
    items: Iterable[Any],
    cutoff: datetime,
    date_selector: DateSelector = default_date_selector,
) -> RetentionPartition:
    """Split items into archived (dated strictly before cutoff) and kept.

    Items whose date is missing or unparseable are always kept.
    """
    if cutoff.tzinfo is None:
        cutoff = cutoff.replace(tzinfo=timezone.utc)
    partition = RetentionPartition()
    for item in items:
        stamp = parse_timestamp(date_selector(item)) if isinstance(item, Mapping) else None
        if stamp is not None and stamp < cutoff:
            partition.archived.append(item)
        else:
            partition.kept.append(item)
    return partition


def parse_retention_policies(raw: str | Mapping[str, Any] | None) -> dict[str, int]:
    """Parse ``collection:days`` pairs; malformed or non-positive entries are ignored."""
    if not raw:
        return {}
    pairs: Iterable[tuple[str, Any]]
    if isinstance(raw, Mapping):
        pairs = raw.items()
    else:
        pairs = (tuple(item.split(":", 1)) if ":" in item else (item, None) for item in parse_csv(raw))
    policies: dict[str, int] = {}
    for name, days in pairs:
        try:
            value = int(str(days).strip())
        except (TypeError, ValueError):
            logger.warning("retention_policy_ignored entry=%s", name)
            continue
        if value <= 0 or not str(name).strip():
            logger.warning("retention_policy_ignored entry=%s", name)
            continue
        policies[str(name).strip()] = value
    return policies


def apply_retention_policies(
    policies: Mapping[str, int],
    datasets: MutableMapping[str, list[dict[str, Any]]],
    persist: Mapping[str, Callable[[list[dict[str, Any]]], None]],
    archive: ArchiveWriter,
    *,
    now: datetime,
    date_selector: DateSelector = default_date_selector,
) -> dict[str, int]:
    """Archive aged records of each configured collection and persist the rest.

    The archive file is written before the live collection shrinks, so a failed
    archive write leaves the collection untouched.
    """
    archived_counts: dict[str, int] = {}
    for collection, days in policies.items():
        items = datasets.get(collection)
        if not items:
            continue
        partition = partition_by_retention(items, now - timedelta(days=days), date_selector)
        if not partition.archived:
            continue
        archive(collection, partition.archived)
        datasets[collection] = partition.kept
        writer = persist.get(collection)
        if writer is not None:
            writer(partition.kept)
        archived_counts[collection] = len(partition.archived)
    return archived_counts


def prune_audit_log(
    audit_path: Path,
    archive_dir: Path,
    retention_days: int | None,
    *,
    now: datetime,
    lock: threading.Lock | None = None,
) -> tuple[int, Path | None]:
    """Move audit lines older than the window into ``archive/audit-<ms>.log``.

    Malformed lines are kept verbatim in the live log. Returns the number of
    archived entries and the archive path, if one was written.
    """
    if not retention_days or retention_days <= 0:
        return 0, None
    guard = lock or threading.Lock()
    with guard:
        if not audit_path.exists():
            return 0, None
        cutoff = now - timedelta(days=retention_days)
        to_archive: list[str] = []
        to_keep: list[str] = []
        with audit_path.open("r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.rstrip("\n")
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except ValueError:
                    to_keep.append(line)
                    continue
                stamp = parse_timestamp(record.get("timestamp")) if isinstance(record, dict) else None
                if stamp is not None and stamp < cutoff:
                    to_archive.append(json.dumps(record, ensure_ascii=False))
                else:
                    to_keep.append(line)

        archive_path: Path | None = None
        if to_archive:
            archive_path = archive_dir / f"audit-{_epoch_ms(now)}.log"
            write_atomic(archive_path, "\n".join(to_archive) + "\n")
            write_atomic(audit_path, "\n".join(to_keep) + "\n" if to_keep else "")
    return len(to_archive), archive_path


@dataclass
class RetentionReport:
    ran_at: str
    # tenant -> collection -> archived record count
    archived: dict[str, dict[str, int]] = field(default_factory=dict)
    audit_archived: int = 0
    archive_files: list[str] = field(default_factory=list)

    @property
    def records_archived(self) -> int:
        return sum(sum(counts.values()) for counts in self.archived.values())

    @property
    def total_archived(self) -> int:
        return self.records_archived + self.audit_archived

    def as_dict(self) -> dict[str, Any]:
        return {
            "ranAt": self.ran_at,
            "archived": self.archived,
            "auditArchived": self.audit_archived,
            "totalArchived": self.total_archived,
            "archiveFiles": self.archive_files,
        }


class RetentionService:
    """Runs the retention sweep over every known tenant and the audit log."""

    def __init__(
        self,
        context: DataContext,
        *,
        policies: Mapping[str, int],
        audit_retention_days: int | None,
        audit: AuditLogWriter | None = None,
    ) -> None:
        self.context = context
        self.policies = dict(policies)
        self.audit_retention_days = audit_retention_days
        self.audit = audit

    def _sweep_tenant(self, tenant_id: str, now: datetime, report: RetentionReport) -> None:
        store = self.context.store
        stamp = _epoch_ms(now)

        def archive(collection: str, records: list[dict[str, Any]]) -> Path:
            path = store.write_archive(
                f"{collection}-{tenant_id}-{stamp}.json", json.dumps(records, indent=2, ensure_ascii=False)
            )
            report.archive_files.append(str(path))
            return path

        def persister(collection: str) -> Callable[[list[dict[str, Any]]], None]:
            return lambda kept: self.context.replace(collection, tenant_id, kept)

        with self.context.lock:
            datasets = {name: self.context.snapshot(name, tenant_id) for name in self.policies}
            counts = apply_retention_policies(
                self.policies,
                datasets,
                {name: persister(name) for name in self.policies},
                archive,
                now=now,
            )
        if counts:
            report.archived[tenant_id] = counts

    def run_sweep(self, now: datetime | None = None) -> RetentionReport:
        moment = now or datetime.now(timezone.utc)
        report = RetentionReport(ran_at=moment.isoformat())
        tenant_ids = self.context.tenant_ids()
        for tenant_id in tenant_ids:
            self._sweep_tenant(tenant_id, moment, report)
        audit_path = self.audit.path if self.audit is not None else self.context.store.audit_log_path
        count, archive_path = prune_audit_log(
            audit_path,
            self.context.store.archive_dir,
            self.audit_retention_days,
            now=moment,
            lock=self.audit.lock if self.audit is not None else None,
        )
        report.audit_archived = count
        if archive_path is not None:
            report.archive_files.append(str(archive_path))
        logger.info(
            "retention_sweep_completed tenants=%s archived=%s audit_archived=%s",
            len(tenant_ids),
            report.records_archived,
            report.audit_archived,
        )
        return report


class RetentionScheduler:
    """Cancellable periodic sweep: runs once on start, then every interval.

    Runs are serialized by an asyncio lock so a manual trigger and the timer
    never archive the same window twice.
    """

    def __init__(
        self,
        service: RetentionService,
        *,
        interval_s: float,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.service = service
        self.interval_s = interval_s
        self._sleep = sleep
        self._clock = clock
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self.runs = 0
        self.last_report: RetentionReport | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> RetentionReport:
        async with self._lock:
            # File I/O runs off the event loop; the data context lock guards it.
            report = await asyncio.to_thread(self.service.run_sweep, self._clock())
            self.runs += 1
            self.last_report = report
            return report

    async def _loop(self) -> None:
        while not self._stopping:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001 - a failed sweep must not kill the schedule
                logger.exception("retention_sweep_failed")
            if self._stopping:
                break
            await self._sleep(self.interval_s)

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._loop(), name="retention-scheduler")
        logger.info("retention_scheduler_started interval_s=%s", self.interval_s)

    async def stop(self) -> None:
        self._stopping = True
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("retention_scheduler_stopped runs=%s", self.runs)
