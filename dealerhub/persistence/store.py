from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any

from dealerhub.core.errors import PersistenceError
from dealerhub.persistence.guards import require_tenant_id


logger = logging.getLogger(__name__)

SYSTEM_DIR = "system"
TENANTS_DIR = "tenants"
ARCHIVE_DIR = "archive"
EXPORTS_DIR = "exports"
AUDIT_LOG_FILE = "audit.log"


def write_atomic(path: Path, content: str | bytes) -> None:
    # Write to a sibling temp file and swap it in so readers never see a partial document.
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        data = content.encode("utf-8") if isinstance(content, str) else content
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except OSError as exc:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise PersistenceError("Failed to write data file") from exc


class JsonStore:
    """One JSON document per collection per tenant under a single data directory."""

    def __init__(self, base_dir: str | Path) -> None:
        self.base_dir = Path(base_dir)

    @property
    def audit_log_path(self) -> Path:
        return self.base_dir / AUDIT_LOG_FILE

    @property
    def archive_dir(self) -> Path:
        return self.base_dir / ARCHIVE_DIR

    @property
    def exports_dir(self) -> Path:
        return self.base_dir / EXPORTS_DIR

    def tenant_dir(self, tenant_id: str) -> Path:
        return self.base_dir / TENANTS_DIR / require_tenant_id(tenant_id)

    def collection_path(self, collection: str, tenant_id: str) -> Path:
        return self.tenant_dir(tenant_id) / f"{collection}.json"

    def system_path(self, name: str) -> Path:
        return self.base_dir / SYSTEM_DIR / f"{name}.json"

    def ensure_tenant_dir(self, tenant_id: str) -> Path:
        path = self.tenant_dir(tenant_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def tenant_ids(self) -> list[str]:
        root = self.base_dir / TENANTS_DIR
        if not root.is_dir():
            return []
        return sorted(entry.name for entry in root.iterdir() if entry.is_dir())

    def _read(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError) as exc:
            # Keep serving with the default rather than refusing to start on one bad file.
            logger.warning("store_read_failed path=%s", path, exc_info=exc)
            return default

    def _write(self, path: Path, data: Any) -> None:
        write_atomic(path, json.dumps(data, indent=2, ensure_ascii=False))

    def load_collection(self, collection: str, tenant_id: str) -> list[dict[str, Any]]:
        data = self._read(self.collection_path(collection, tenant_id), [])
        return data if isinstance(data, list) else []

    def save_collection(self, collection: str, tenant_id: str, items: list[dict[str, Any]]) -> None:
        self._write(self.collection_path(collection, tenant_id), items)

    def load_system(self, name: str) -> list[dict[str, Any]]:
        data = self._read(self.system_path(name), [])
        return data if isinstance(data, list) else []

    def save_system(self, name: str, items: list[dict[str, Any]]) -> None:
        self._write(self.system_path(name), items)

    def write_archive(self, name: str, content: str) -> Path:
        path = self.archive_dir / name
        write_atomic(path, content)
        return path

    def write_export(self, name: str, content: bytes) -> Path:
        path = self.exports_dir / name
        write_atomic(path, content)
        return path
