from __future__ import annotations

import asyncio
from dataclasses import dataclass
import inspect
import logging
import time
from typing import Any, Callable, Iterable, Mapping

from dealerhub.core.errors import (
    ConflictError,
    DealerHubError,
    NotFoundError,
    UnknownToolError,
    ValidationFailedError,
)
from dealerhub.domain.results import Conflict, NotFound, Page, Success, ValidationFailed
from dealerhub.services.collection import ResourceSpec, TenantScopedCollection
from dealerhub.services.security import mask_sensitive_fields


logger = logging.getLogger(__name__)

TOOL_CALLS = ResourceSpec(
    name="tool_calls",
    label="Tool call",
    required_fields=("tool",),
    filter_fields=("tool", "ok", "user"),
    sort_fields=("createdAt",),
    bool_fields=("ok",),
)

ToolHandler = Callable[[dict[str, Any], str, "str | None"], Any]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    handler: ToolHandler
    # Tools that change data are flagged so clients can ask for confirmation.
    mutates: bool = False


def _unwrap(result: Any) -> Any:
    # Service result objects become plain (already escaped) data or a raised, coded error.
    if isinstance(result, Success):
        return result.record
    if isinstance(result, Page):
        return result.as_dict()
    if isinstance(result, NotFound):
        raise NotFoundError(f"{result.resource} {result.id} not found")
    if isinstance(result, ValidationFailed):
        raise ValidationFailedError(result.message, details={"fields": result.fields})
    if isinstance(result, Conflict):
        raise ConflictError(result.message, details={"path": result.field})
    return result


class ToolRegistry:
    """Named operations over the domain services with a uniform result envelope.

    ``execute`` never raises: every call returns
    ``{"tool", "ok", "result"}`` or ``{"tool", "ok": False, "error"}`` and is
    logged and recorded in the tenant's ``tool_calls`` collection.
    """

    def __init__(
        self,
        calls: TenantScopedCollection,
        *,
        mask_fields: Iterable[str],
        tools: Iterable[Tool] = (),
    ) -> None:
        self.calls = calls
        self.mask_fields = list(mask_fields)
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def describe(self) -> list[dict[str, Any]]:
        return [
            {"name": tool.name, "description": tool.description, "mutates": tool.mutates}
            for tool in sorted(self._tools.values(), key=lambda item: item.name)
        ]

    def _record(self, name: str, args: Mapping[str, Any], tenant_id: str, user: str | None, envelope: dict[str, Any]) -> None:
        entry = {
            "tool": name,
            "args": mask_sensitive_fields(dict(args), self.mask_fields),
            "ok": envelope["ok"],
            "user": user,
        }
        if not envelope["ok"]:
            entry["errorCode"] = envelope["error"]["code"]
        try:
            self.calls.create(entry, tenant_id, user)
        except DealerHubError as exc:
            # The call already happened; losing its log entry must not change the outcome.
            logger.warning("tool_call_record_failed tool=%s tenant_id=%s", name, tenant_id, exc_info=exc)

    async def execute(
        self,
        name: str,
        args: Mapping[str, Any] | None,
        tenant_id: str,
        user: str | None = None,
    ) -> dict[str, Any]:
        arguments = dict(args or {})
        started = time.monotonic()
        tool = self._tools.get(name)
        try:
            if tool is None:
                raise UnknownToolError(f"Unknown tool: {name}")
            if inspect.iscoroutinefunction(tool.handler):
                outcome = await tool.handler(arguments, tenant_id, user)
            else:
                # Sync handlers write through the data context (file IO under a thread lock).
                outcome = await asyncio.to_thread(tool.handler, arguments, tenant_id, user)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            envelope: dict[str, Any] = {"tool": name, "ok": True, "result": _unwrap(outcome)}
        except DealerHubError as exc:
            envelope = {"tool": name, "ok": False, "error": {"code": exc.code, "message": exc.message}}
        except (KeyError, TypeError, ValueError) as exc:
            # Malformed arguments from the assistant surface.
            envelope = {
                "tool": name,
                "ok": False,
                "error": {"code": "VALIDATION_ERROR", "message": f"Invalid arguments: {exc}"},
            }

        logger.info(
            "tool_call tool=%s tenant_id=%s ok=%s latency_ms=%.1f",
            name,
            tenant_id,
            envelope["ok"],
            (time.monotonic() - started) * 1000.0,
        )
        if tool is not None:
            await asyncio.to_thread(self._record, name, arguments, tenant_id, user, envelope)
        return envelope


def _require(args: Mapping[str, Any], key: str) -> Any:
    value = args.get(key)
    if value in (None, ""):
        raise ValidationFailedError(f"{key} is required", details={"path": key})
    return value


def _found(record: Any, resource: str, record_id: Any) -> Any:
    if record is None:
        raise NotFoundError(f"{resource} {record_id} not found")
    return record


def build_default_tools(services: Any) -> list[Tool]:
    """Tool set over a ``ServiceContainer``."""
    r = services.resources

    def lookup(resource: str) -> ToolHandler:
        return lambda args, tenant, _user: _found(
            r[resource].find_by_id(_require(args, "id"), tenant), resource, args.get("id")
        )

    def listing(resource: str) -> ToolHandler:
        return lambda args, tenant, _user: r[resource].list(args, tenant)

    async def web_fetch(args: dict[str, Any], tenant: str, _user: str | None) -> dict[str, Any]:
        return await services.web_fetch.fetch(_require(args, "url"), tenant, args.get("note"))

    return [
        Tool("get_inventory_unit", "Fetch one inventory unit by id", lookup("inventory")),
        Tool("search_inventory", "List inventory with filters and search", listing("inventory")),
        Tool(
            "update_inventory_specs",
            "Patch fields on an inventory unit",
            lambda a, t, u: r["inventory"].update(_require(a, "id"), a.get("patch") or {}, t, u),
            mutates=True,
        ),
        Tool("get_inventory_stats", "Inventory counts and average price", lambda a, t, u: r["inventory"].stats(t)),
        Tool("list_leads", "List leads", listing("leads")),
        Tool("get_lead_detail", "Fetch one lead by id", lookup("leads")),
        Tool(
            "update_lead_status",
            "Move a lead along its status workflow",
            lambda a, t, u: r["leads"].set_status(_require(a, "id"), _require(a, "status"), t, u),
            mutates=True,
        ),
        Tool("list_tasks", "List tasks", listing("tasks")),
        Tool("create_task", "Create a task", lambda a, t, u: r["tasks"].create(a, t, u), mutates=True),
        Tool(
            "update_task",
            "Patch a task",
            lambda a, t, u: r["tasks"].update(_require(a, "id"), {k: v for k, v in a.items() if k != "id"}, t, u),
            mutates=True,
        ),
        Tool("list_customers", "List customers", listing("customers")),
        Tool("get_customer_detail", "Fetch one customer by id", lookup("customers")),
        Tool("list_service_tickets", "List service tickets", listing("service_tickets")),
        Tool("get_service_ticket", "Fetch one service ticket by id", lookup("service_tickets")),
        Tool("list_finance_offers", "List finance offers", listing("finance_offers")),
        Tool("list_content_pages", "List content pages", listing("content_pages")),
        Tool("get_content_page", "Fetch one content page by id", lookup("content_pages")),
        Tool(
            "update_content_page",
            "Patch a content page",
            lambda a, t, u: r["content_pages"].update(_require(a, "id"), a.get("patch") or {}, t, u),
            mutates=True,
        ),
        Tool("list_redirects", "List redirects", listing("redirects")),
        Tool("create_redirect", "Create a redirect", lambda a, t, u: r["redirects"].create(a, t, u), mutates=True),
        Tool(
            "delete_redirect",
            "Delete a redirect",
            lambda a, t, u: r["redirects"].remove(_require(a, "id"), t, u),
            mutates=True,
        ),
        Tool("list_campaigns", "List campaigns", listing("campaigns")),
        Tool("get_campaign_performance", "Lead and win counts per campaign", lambda a, t, u: r["campaigns"].performance(t)),
        Tool("ai_web_fetch", "Fetch a remote page for the assistant", web_fetch, mutates=True),
        Tool("list_web_fetches", "List recorded web fetches", lambda a, t, u: services.web_fetch.list_fetches(t, a)),
        Tool(
            "create_tenant_snapshot",
            "Build a masked snapshot of the tenant's data",
            lambda a, t, u: services.exports.build_snapshot(t),
        ),
        Tool("get_health", "Service health", lambda a, t, u: {"health": "ok"}),
    ]
