from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
import logging
import threading
from typing import Any, Iterator

from dealerhub.persistence.guards import require_tenant_id
from dealerhub.persistence.store import JsonStore


logger = logging.getLogger(__name__)

TENANTS_COLLECTION = "tenants"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class DataContext:
    """Process-owned in-memory dataset backed by a JsonStore.

    The in-memory lists are the source of truth for the process lifetime; every
    mutation goes through ``mutate``/``mutate_system`` which persist the whole
    collection before releasing the lock, so a later read in the same process
    always observes the change.
    """

    def __init__(self, store: JsonStore, *, default_tenant_id: str = "main") -> None:
        self.store = store
        self.default_tenant_id = default_tenant_id
        self.lock = threading.RLock()
        self._collections: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self._system: dict[str, list[dict[str, Any]]] = {}
        self._initialized_tenants: set[str] = set()

    def ensure_tenant(self, tenant_id: str, *, name: str | None = None) -> bool:
        """Create the tenant namespace on first use; returns True when it was new."""
        require_tenant_id(tenant_id)
        with self.lock:
            if tenant_id in self._initialized_tenants:
                return False
            self.store.ensure_tenant_dir(tenant_id)
            tenants = self._load_system(TENANTS_COLLECTION)
            created = False
            if not any(entry.get("id") == tenant_id for entry in tenants):
                tenants.append(
                    {
                        "id": tenant_id,
                        "name": name or ("Primary Dealership" if tenant_id == self.default_tenant_id else tenant_id),
                        "location": "",
                        "createdAt": utc_now_iso(),
                    }
                )
                self.store.save_system(TENANTS_COLLECTION, tenants)
                created = True
                logger.info("tenant_initialized tenant_id=%s", tenant_id)
            self._initialized_tenants.add(tenant_id)
            return created

    def _load_collection(self, collection: str, tenant_id: str) -> list[dict[str, Any]]:
        key = (tenant_id, collection)
        items = self._collections.get(key)
        if items is None:
            self.ensure_tenant(tenant_id)
            items = self.store.load_collection(collection, tenant_id)
            self._collections[key] = items
        return items

    def _load_system(self, name: str) -> list[dict[str, Any]]:
        items = self._system.get(name)
        if items is None:
            items = self.store.load_system(name)
            self._system[name] = items
        return items

    def snapshot(self, collection: str, tenant_id: str) -> list[dict[str, Any]]:
        # Return a detached copy so readers never observe a half-applied mutation.
        require_tenant_id(tenant_id)
        with self.lock:
            return [dict(item) for item in self._load_collection(collection, tenant_id)]

    @contextmanager
    def mutate(self, collection: str, tenant_id: str) -> Iterator[list[dict[str, Any]]]:
        require_tenant_id(tenant_id)
        with self.lock:
            items = self._load_collection(collection, tenant_id)
            yield items
            self.store.save_collection(collection, tenant_id, items)

    def replace(self, collection: str, tenant_id: str, items: list[dict[str, Any]]) -> None:
        require_tenant_id(tenant_id)
        with self.lock:
            self._load_collection(collection, tenant_id)
            self._collections[(tenant_id, collection)] = list(items)
            self.store.save_collection(collection, tenant_id, self._collections[(tenant_id, collection)])

    def system_snapshot(self, name: str) -> list[dict[str, Any]]:
        with self.lock:
            return [dict(item) for item in self._load_system(name)]

    @contextmanager
    def mutate_system(self, name: str) -> Iterator[list[dict[str, Any]]]:
        with self.lock:
            items = self._load_system(name)
            yield items
            self.store.save_system(name, items)

    def tenant_ids(self) -> list[str]:
        with self.lock:
            known = {entry.get("id") for entry in self._load_system(TENANTS_COLLECTION) if entry.get("id")}
            known.update(self.store.tenant_ids())
            known.update(tenant for tenant, _ in self._collections)
            return sorted(known)
