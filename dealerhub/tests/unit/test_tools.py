from __future__ import annotations

import threading

import pytest

from dealerhub.core.errors import NotFoundError
from dealerhub.services.tools import Tool


def _unit(container, tenant_id: str = "main") -> dict:
    return container.resource("inventory").create(
        {"stockNumber": "D100", "name": "Aspen Trail", "condition": "new", "price": 100}, tenant_id
    ).record


def test_default_tools_are_registered(container) -> None:
    names = container.tools.names()
    for expected in ("get_inventory_unit", "update_lead_status", "ai_web_fetch", "create_tenant_snapshot"):
        assert expected in names
    described = {item["name"]: item for item in container.tools.describe()}
    assert described["update_inventory_specs"]["mutates"] is True
    assert described["search_inventory"]["mutates"] is False


def test_registering_a_duplicate_tool_fails(container) -> None:
    with pytest.raises(ValueError):
        container.tools.register(Tool("get_health", "again", lambda a, t, u: {}))


@pytest.mark.asyncio
async def test_execute_returns_result_envelope(container) -> None:
    unit = _unit(container)
    envelope = await container.tools.execute("get_inventory_unit", {"id": unit["id"]}, "main", "alice")
    assert envelope == {"tool": "get_inventory_unit", "ok": True, "result": unit}

    listing = await container.tools.execute("search_inventory", {"search": "aspen"}, "main")
    assert listing["result"]["total"] == 1


@pytest.mark.asyncio
async def test_execute_is_tenant_scoped(container) -> None:
    unit = _unit(container)
    envelope = await container.tools.execute("get_inventory_unit", {"id": unit["id"]}, "lexington")
    assert envelope["ok"] is False
    assert envelope["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_execute_maps_service_failures_to_error_codes(container) -> None:
    unit = _unit(container)
    missing_arg = await container.tools.execute("get_inventory_unit", {}, "main")
    assert missing_arg["error"]["code"] == "VALIDATION_ERROR"

    invalid = await container.tools.execute(
        "update_inventory_specs", {"id": unit["id"], "patch": {"price": "free"}}, "main"
    )
    assert invalid["ok"] is False
    assert invalid["error"]["code"] == "VALIDATION_ERROR"

    container.resource("inventory").create(
        {"stockNumber": "D200", "name": "Other", "condition": "new", "price": 1}, "main"
    )
    conflict = await container.tools.execute(
        "update_inventory_specs", {"id": unit["id"], "patch": {"stockNumber": "D200"}}, "main"
    )
    assert conflict["error"]["code"] == "CONFLICT"

    unknown = await container.tools.execute("drop_database", {}, "main")
    assert unknown == {"tool": "drop_database", "ok": False, "error": {"code": "NOT_FOUND", "message": "Unknown tool: drop_database"}}


@pytest.mark.asyncio
async def test_tool_calls_are_recorded_with_masked_arguments(container) -> None:
    await container.tools.execute(
        "create_task", {"title": "Call back", "email": "ann@example.com"}, "main", "alice"
    )
    await container.tools.execute("get_inventory_unit", {"id": "nope"}, "main", "alice")
    await container.tools.execute("drop_database", {}, "main", "alice")

    calls = container.context.snapshot("tool_calls", "main")
    assert [call["tool"] for call in calls] == ["create_task", "get_inventory_unit"]
    assert calls[0]["args"]["email"] == "[MASKED]"
    assert calls[0]["ok"] is True
    assert calls[1]["errorCode"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_handler_exceptions_become_error_envelopes(container) -> None:
    def explode(args, tenant_id, user):
        raise NotFoundError("gone")

    container.tools.register(Tool("explode", "raises", explode))
    envelope = await container.tools.execute("explode", None, "main")
    assert envelope["error"] == {"code": "NOT_FOUND", "message": "gone"}


@pytest.mark.asyncio
async def test_web_fetch_tool_respects_disabled_setting(container) -> None:
    envelope = await container.tools.execute("ai_web_fetch", {"url": "https://example.com"}, "main")
    assert envelope["ok"] is True
    assert envelope["result"]["status"] == "disabled"
    listed = await container.tools.execute("list_web_fetches", {}, "main")
    assert listed["result"]["total"] == 1


@pytest.mark.asyncio
async def test_sync_handlers_run_off_the_event_loop_thread(container) -> None:
    loop_thread = threading.get_ident()
    threads: dict[str, int] = {}

    def blocking(args, tenant, user):
        threads["sync"] = threading.get_ident()
        return {"tenant": tenant}

    async def native(args, tenant, user):
        threads["async"] = threading.get_ident()
        return {"tenant": tenant}

    container.tools.register(Tool("blocking_echo", "Echo from a worker thread", blocking))
    container.tools.register(Tool("native_echo", "Echo on the loop", native))

    assert (await container.tools.execute("blocking_echo", {}, "main"))["result"] == {"tenant": "main"}
    assert (await container.tools.execute("native_echo", {}, "main"))["result"] == {"tenant": "main"}
    assert threads["sync"] != loop_thread
    assert threads["async"] == loop_thread
