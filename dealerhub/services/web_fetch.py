from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timezone
import logging
import time
from typing import Any, Callable, Iterable
from urllib.parse import urlsplit

import httpx

from dealerhub.core.errors import WebFetchBlockedError, WebFetchError, WebFetchTimeoutError
from dealerhub.domain.results import Success
from dealerhub.services.collection import ResourceSpec, TenantScopedCollection


logger = logging.getLogger(__name__)

MAX_REDIRECTS = 5

WEB_FETCHES = ResourceSpec(
    name="web_fetches",
    label="Web fetch",
    required_fields=("url",),
    filter_fields=("status",),
    search_fields=("url", "note"),
    sort_fields=("createdAt",),
)


def host_allowed(host: str, allowlist: Iterable[str]) -> bool:
    # "*" allows any host; otherwise exact host or any subdomain of a listed host.
    host = host.lower().rstrip(".")
    for entry in allowlist:
        allowed = entry.strip().lower()
        if allowed == "*":
            return True
        if allowed and (host == allowed or host.endswith("." + allowed)):
            return True
    return False


class WebFetchService:
    """Remote fetches on behalf of a tenant, recorded as ``web_fetches`` entries.

    ``fetch`` never raises for remote or policy failures; the outcome is the
    stored entry's ``status`` (``disabled``, ``blocked``, ``completed`` or
    ``failed``) with an ``errorCode`` when it did not complete.
    """

    def __init__(
        self,
        entries: TenantScopedCollection,
        *,
        enabled: bool,
        timeout_ms: int,
        allowlist: Iterable[str],
        per_tenant_per_minute: int,
        preview_chars: int = 2000,
        user_agent: str = "DealerHub-Assistant/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.entries = entries
        self.enabled = enabled
        self.timeout_s = max(timeout_ms, 1) / 1000.0
        self.allowlist = list(allowlist) or ["*"]
        self.per_tenant_per_minute = per_tenant_per_minute
        self.preview_chars = preview_chars
        self.user_agent = user_agent
        self._transport = transport
        self._clock = clock
        self._recent: dict[str, deque[float]] = {}

    def _within_budget(self, tenant_id: str) -> bool:
        if self.per_tenant_per_minute <= 0:
            return True
        now = self._clock()
        window = self._recent.setdefault(tenant_id, deque())
        while window and now - window[0] >= 60.0:
            window.popleft()
        if len(window) >= self.per_tenant_per_minute:
            return False
        window.append(now)
        return True

    async def _finish(self, entry_id: str, tenant_id: str, status: str, **fields: Any) -> dict[str, Any]:
        changes = {
            "status": status,
            "completedAt": datetime.now(timezone.utc).isoformat(),
            **{key: value for key, value in fields.items() if value is not None},
        }
        # Collection writes block on file IO and the context lock; keep them off the event loop.
        result = await asyncio.to_thread(self.entries.update, entry_id, changes, tenant_id)
        if isinstance(result, Success):
            return result.record
        # The entry vanished mid-flight (e.g. pruned); report the outcome anyway.
        return {"id": entry_id, "tenantId": tenant_id, **changes}

    def _policy_violation(self, url: str) -> str | None:
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            return "Only http(s) URLs can be fetched"
        if not host_allowed(parts.hostname, self.allowlist):
            return "Host is not allowlisted"
        return None

    async def _get(self, url: str) -> httpx.Response:
        # Redirects are followed by hand so every hop passes the same scheme and allowlist checks.
        async with httpx.AsyncClient(
            timeout=self.timeout_s,
            transport=self._transport,
            follow_redirects=False,
            headers={"User-Agent": self.user_agent},
        ) as client:
            target = url
            for _ in range(MAX_REDIRECTS + 1):
                response = await client.get(target)
                if not response.is_redirect:
                    return response
                target = str(response.url.join(response.headers["location"]))
                violation = self._policy_violation(target)
                if violation is not None:
                    raise WebFetchBlockedError(
                        f"Redirect blocked: {violation}", details={"host": urlsplit(target).hostname}
                    )
            raise WebFetchBlockedError(f"Too many redirects (limit {MAX_REDIRECTS})")

    async def fetch(self, url: Any, tenant_id: str, note: Any = None) -> dict[str, Any]:
        created = await asyncio.to_thread(
            self.entries.create, {"url": url, "note": note, "status": "queued"}, tenant_id
        )
        if not isinstance(created, Success):
            return {"status": "failed", "errorCode": "VALIDATION_ERROR", "error": getattr(created, "message", "")}
        entry = created.record
        entry_id = entry["id"]
        target = str(url)

        if not self.enabled:
            return await self._finish(
                entry_id, tenant_id, "disabled", reason="Remote fetching is disabled by configuration"
            )

        parts = urlsplit(target)
        violation = self._policy_violation(target)
        if violation is not None:
            logger.info("web_fetch_blocked tenant_id=%s host=%s reason=policy", tenant_id, parts.hostname)
            return await self._finish(
                entry_id, tenant_id, "blocked", errorCode=WebFetchBlockedError.code, error=violation
            )
        if not self._within_budget(tenant_id):
            logger.info("web_fetch_blocked tenant_id=%s host=%s reason=budget", tenant_id, parts.hostname)
            return await self._finish(
                entry_id, tenant_id, "blocked", errorCode=WebFetchBlockedError.code, error="Fetch budget exhausted"
            )

        started = time.monotonic()
        try:
            # Hard ceiling on top of httpx's per-phase timeouts.
            response = await asyncio.wait_for(self._get(target), timeout=self.timeout_s)
        except WebFetchBlockedError as exc:
            logger.info("web_fetch_blocked tenant_id=%s host=%s reason=redirect", tenant_id, parts.hostname)
            return await self._finish(entry_id, tenant_id, "blocked", errorCode=exc.code, error=exc.message)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("web_fetch_timeout tenant_id=%s host=%s timeout_s=%s", tenant_id, parts.hostname, self.timeout_s)
            return await self._finish(
                entry_id,
                tenant_id,
                "failed",
                errorCode=WebFetchTimeoutError.code,
                error=f"Fetch timed out after {int(self.timeout_s * 1000)}ms",
            )
        except httpx.HTTPError as exc:
            logger.warning("web_fetch_failed tenant_id=%s host=%s", tenant_id, parts.hostname, exc_info=exc)
            return await self._finish(entry_id, tenant_id, "failed", errorCode=WebFetchError.code, error=str(exc))

        text = response.text
        logger.info(
            "web_fetch_completed tenant_id=%s host=%s status=%s latency_ms=%.1f",
            tenant_id,
            parts.hostname,
            response.status_code,
            (time.monotonic() - started) * 1000.0,
        )
        return await self._finish(
            entry_id,
            tenant_id,
            "completed",
            httpStatus=response.status_code,
            preview=text[: self.preview_chars],
            contentLength=len(text),
        )

    def list_fetches(self, tenant_id: str, query: dict[str, Any] | None = None) -> dict[str, Any]:
        return self.entries.list(query or {}, tenant_id).as_dict()
