from __future__ import annotations

import asyncio

import httpx
import pytest

from dealerhub.persistence.context import DataContext
from dealerhub.persistence.store import JsonStore
from dealerhub.services.collection import TenantScopedCollection
from dealerhub.services.web_fetch import MAX_REDIRECTS, WEB_FETCHES, WebFetchService, host_allowed


def _service(tmp_path, handler=None, **overrides) -> WebFetchService:
    entries = TenantScopedCollection(DataContext(JsonStore(tmp_path)), WEB_FETCHES)
    transport = httpx.MockTransport(handler or (lambda request: httpx.Response(200, text="<html>ok</html>")))
    options = {
        "enabled": True,
        "timeout_ms": 500,
        "allowlist": ["example.com"],
        "per_tenant_per_minute": 5,
        "preview_chars": 8,
        "transport": transport,
    }
    options.update(overrides)
    return WebFetchService(entries, **options)


def test_host_allowlist_matching() -> None:
    assert host_allowed("example.com", ["example.com"])
    assert host_allowed("www.Example.com", ["example.com"])
    assert not host_allowed("badexample.com", ["example.com"])
    assert host_allowed("anything.net", ["*"])
    assert not host_allowed("example.com", [])


@pytest.mark.asyncio
async def test_completed_fetch_is_recorded_with_preview(tmp_path) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="hello world from example")

    service = _service(tmp_path, handler)
    entry = await service.fetch("https://www.example.com/specs", "main", note="specs")
    assert entry["status"] == "completed"
    assert entry["httpStatus"] == 200
    assert entry["preview"] == "hello wo"
    assert entry["contentLength"] == 24
    assert seen[0].headers["User-Agent"] == "DealerHub-Assistant/1.0"

    listed = service.list_fetches("main")
    assert listed["total"] == 1
    assert listed["items"][0]["status"] == "completed"
    assert service.list_fetches("lexington")["total"] == 0


@pytest.mark.asyncio
async def test_disabled_fetch_never_calls_out(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("network must not be used")

    service = _service(tmp_path, handler, enabled=False)
    entry = await service.fetch("https://example.com", "main")
    assert entry["status"] == "disabled"
    assert entry["reason"]


@pytest.mark.asyncio
async def test_blocked_by_scheme_allowlist_and_budget(tmp_path) -> None:
    service = _service(tmp_path, per_tenant_per_minute=1)
    assert (await service.fetch("ftp://example.com/file", "main"))["status"] == "blocked"
    assert (await service.fetch("https://evil.test/", "main"))["errorCode"] == "WEB_FETCH_BLOCKED"
    assert (await service.fetch("https://example.com/", "main"))["status"] == "completed"
    budget = await service.fetch("https://example.com/", "main")
    assert budget["status"] == "blocked"
    assert budget["error"] == "Fetch budget exhausted"
    # Budgets are per tenant.
    assert (await service.fetch("https://example.com/", "lexington"))["status"] == "completed"


@pytest.mark.asyncio
async def test_budget_window_slides(tmp_path) -> None:
    moments = iter([0.0, 30.0, 61.0])
    service = _service(tmp_path, per_tenant_per_minute=1, clock=lambda: next(moments))
    assert (await service.fetch("https://example.com/", "main"))["status"] == "completed"
    assert (await service.fetch("https://example.com/", "main"))["status"] == "blocked"
    assert (await service.fetch("https://example.com/", "main"))["status"] == "completed"


@pytest.mark.asyncio
async def test_timeout_and_transport_errors_are_recorded(tmp_path) -> None:
    def timing_out(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    timeout = await _service(tmp_path / "a", timing_out).fetch("https://example.com", "main")
    assert timeout["status"] == "failed"
    assert timeout["errorCode"] == "WEB_FETCH_TIMEOUT"

    def refusing(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    failed = await _service(tmp_path / "b", refusing).fetch("https://example.com", "main")
    assert failed["status"] == "failed"
    assert failed["errorCode"] == "WEB_FETCH_FAILED"


@pytest.mark.asyncio
async def test_hard_timeout_applies_to_slow_responses(tmp_path) -> None:
    async def stalled(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200)

    service = _service(tmp_path, stalled, timeout_ms=50)
    entry = await service.fetch("https://example.com", "main")
    assert entry["status"] == "failed"
    assert entry["errorCode"] == "WEB_FETCH_TIMEOUT"


@pytest.mark.asyncio
async def test_missing_url_is_a_validation_failure(tmp_path) -> None:
    entry = await _service(tmp_path).fetch("", "main")
    assert entry["status"] == "failed"
    assert entry["errorCode"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_redirect_to_unlisted_host_is_blocked(tmp_path) -> None:
    hosts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        if request.url.host == "allowed.example.com":
            return httpx.Response(302, headers={"Location": "http://169.254.169.254/latest/meta-data/"})
        return httpx.Response(200, text="SECRET-METADATA")

    service = _service(tmp_path, handler, allowlist=["allowed.example.com"], preview_chars=100)
    entry = await service.fetch("https://allowed.example.com/start", "main")
    assert entry["status"] == "blocked"
    assert entry["errorCode"] == "WEB_FETCH_BLOCKED"
    assert "preview" not in entry
    assert hosts == ["allowed.example.com"]


@pytest.mark.asyncio
async def test_redirect_to_non_http_scheme_is_blocked(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(301, headers={"Location": "file:///etc/passwd"})

    entry = await _service(tmp_path, handler).fetch("https://example.com/", "main")
    assert entry["status"] == "blocked"
    assert entry["errorCode"] == "WEB_FETCH_BLOCKED"


@pytest.mark.asyncio
async def test_redirects_within_allowlist_are_followed(tmp_path) -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "/new"})
        return httpx.Response(200, text="moved here")

    service = _service(tmp_path, handler, preview_chars=100)
    entry = await service.fetch("https://www.example.com/old", "main")
    assert entry["status"] == "completed"
    assert entry["preview"] == "moved here"
    assert paths == ["/old", "/new"]


@pytest.mark.asyncio
async def test_redirect_loops_are_capped(tmp_path) -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(302, headers={"Location": "https://example.com/loop"})

    entry = await _service(tmp_path, handler).fetch("https://example.com/loop", "main")
    assert entry["status"] == "blocked"
    assert entry["errorCode"] == "WEB_FETCH_BLOCKED"
    assert len(calls) == MAX_REDIRECTS + 1
