from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

import httpx

from dealerhub.core.config import Settings, parse_csv
from dealerhub.persistence.context import DataContext
from dealerhub.persistence.store import JsonStore
from dealerhub.services.audit import AuditLogWriter
from dealerhub.services.auth.sessions import AuthService
from dealerhub.services.collection import ResourceSpec, TenantScopedCollection
from dealerhub.services.exports import ExportService
from dealerhub.services.resources import (
    ALL_SPECS,
    CAMPAIGNS,
    INVENTORY,
    LEADS,
    CampaignService,
    InventoryService,
    LeadService,
)
from dealerhub.services.retention import RetentionScheduler, RetentionService, parse_retention_policies
from dealerhub.services.tenancy import TenantService
from dealerhub.services.tools import TOOL_CALLS, ToolRegistry, build_default_tools
from dealerhub.services.web_fetch import WEB_FETCHES, WebFetchService


class ServiceContainer:
    """Every service built once from one ``DataContext`` and one ``Settings``.

    One container per app (or per test) keeps state isolated without module
    level singletons.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        context: DataContext | None = None,
        web_transport: httpx.AsyncBaseTransport | None = None,
        token_clock: Callable[[], float] | None = None,
    ) -> None:
        self.settings = settings
        self.context = context or DataContext(
            JsonStore(settings.data_path), default_tenant_id=settings.default_tenant_id
        )
        self.audit = AuditLogWriter(self.context.store.audit_log_path, settings.mask_fields)
        self.tenants = TenantService(self.context)

        auth_kwargs: dict[str, Any] = {}
        if token_clock is not None:
            auth_kwargs["clock"] = token_clock
        self.auth = AuthService(
            self.context,
            secret=settings.jwt_secret,
            access_ttl_s=settings.access_token_ttl_s,
            refresh_ttl_s=settings.refresh_token_ttl_s,
            password_iterations=settings.password_hash_iterations,
            **auth_kwargs,
        )

        self.resources: dict[str, TenantScopedCollection] = {}
        leads = LeadService(self.context, LEADS, mask_fields=settings.mask_fields, **self._collection_kwargs())
        for spec in ALL_SPECS:
            if spec is LEADS:
                self.resources[spec.name] = leads
            elif spec is INVENTORY:
                self.resources[spec.name] = InventoryService(self.context, spec, **self._collection_kwargs())
            elif spec is CAMPAIGNS:
                self.resources[spec.name] = CampaignService(
                    self.context, spec, leads=leads, **self._collection_kwargs()
                )
            else:
                self.resources[spec.name] = TenantScopedCollection(self.context, spec, **self._collection_kwargs())

        self.exports = ExportService(self.context, mask_fields=settings.mask_fields)
        self.web_fetch = WebFetchService(
            self._internal_collection(WEB_FETCHES),
            enabled=settings.web_fetch_enabled,
            timeout_ms=settings.web_fetch_timeout_ms,
            allowlist=parse_csv(settings.web_fetch_allowlist),
            per_tenant_per_minute=settings.web_fetch_per_tenant_per_minute,
            preview_chars=settings.web_fetch_preview_chars,
            user_agent=settings.web_fetch_user_agent,
            transport=web_transport,
        )
        self.tools = ToolRegistry(self._internal_collection(TOOL_CALLS), mask_fields=settings.mask_fields)
        for tool in build_default_tools(self):
            self.tools.register(tool)

        self.retention = RetentionService(
            self.context,
            policies=parse_retention_policies(settings.retention_policies),
            audit_retention_days=settings.audit_retention_days,
            audit=self.audit,
        )

    def _collection_kwargs(self) -> dict[str, Any]:
        return {
            "audit": self.audit,
            "default_limit": self.settings.list_default_limit,
            "max_limit": self.settings.list_max_limit,
        }

    def _internal_collection(self, spec: ResourceSpec) -> TenantScopedCollection:
        # Bookkeeping collections are not audited; they are the log themselves.
        return TenantScopedCollection(
            self.context,
            spec,
            default_limit=self.settings.list_default_limit,
            max_limit=self.settings.list_max_limit,
        )

    def resource(self, name: str) -> TenantScopedCollection:
        return self.resources[name]

    def build_scheduler(self, **kwargs: Any) -> RetentionScheduler:
        return RetentionScheduler(
            self.retention,
            interval_s=float(self.settings.retention_interval_hours) * 3600.0,
            **kwargs,
        )

    def run_retention(self, now: datetime | None = None) -> dict[str, Any]:
        return self.retention.run_sweep(now).as_dict()
