from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import time
from typing import Callable

from fastapi import Request


logger = logging.getLogger(__name__)

ROUTE_CLASS_AUTH = "auth"
ROUTE_CLASS_MUTATION = "mutation"
ROUTE_CLASS_READ = "read"
ROUTE_CLASS_OPS = "ops"

# Credential endpoints drain the bucket faster to slow down password guessing.
_AUTH_WEIGHT = 5
_TOOL_WEIGHT = 2

# Idle buckets are dropped once this many are tracked.
_MAX_BUCKETS = 10_000


@dataclass(frozen=True)
class BucketConfig:
    rps: float
    burst: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    route_class: str
    retry_after_ms: int
    remaining: float


def route_class_for_path(path: str, method: str) -> tuple[str, int]:
    # Map path/method into a route class and a token cost.
    normalized_method = method.upper()
    if path.startswith("/v1/auth/login") or path.startswith("/v1/auth/refresh"):
        return ROUTE_CLASS_AUTH, _AUTH_WEIGHT
    if path.startswith("/v1/admin") or path.startswith("/v1/audit") or path.startswith("/v1/exports"):
        return ROUTE_CLASS_OPS, 1
    if path.startswith("/v1/ai/tools") and normalized_method == "POST":
        return ROUTE_CLASS_MUTATION, _TOOL_WEIGHT
    if normalized_method in {"POST", "PUT", "PATCH", "DELETE"}:
        return ROUTE_CLASS_MUTATION, 1
    return ROUTE_CLASS_READ, 1


def route_class_for_request(request: Request) -> tuple[str, int]:
    return route_class_for_path(request.url.path, request.method)


def client_key(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _calculate_tokens(
    *,
    tokens: float | None,
    last_ms: int | None,
    now_ms: int,
    rate: float,
    burst: int,
) -> float:
    # Refill based on elapsed time, capped at burst capacity.
    if tokens is None:
        tokens = float(burst)
    if last_ms is None:
        last_ms = now_ms
    if now_ms < last_ms:
        last_ms = now_ms
    delta_s = (now_ms - last_ms) / 1000.0
    return min(float(burst), tokens + (delta_s * rate))


def _retry_after_ms(tokens: float, *, rate: float, cost: int) -> int:
    if tokens >= cost:
        return 0
    if rate <= 0:
        return 1000
    needed = cost - tokens
    return int(math.ceil((needed / rate) * 1000))


class RateLimiter:
    """In-process token buckets keyed by client address and route class."""

    def __init__(self, config: BucketConfig, *, time_provider: Callable[[], float] | None = None) -> None:
        self.config = config
        self._time_provider = time_provider or time.time
        self._buckets: dict[str, tuple[float, int]] = {}

    def _evict_idle(self, now_ms: int) -> None:
        full_after_ms = (self.config.burst / self.config.rps) * 1000 if self.config.rps > 0 else math.inf
        idle = [key for key, (_, last_ms) in self._buckets.items() if now_ms - last_ms > full_after_ms]
        for key in idle:
            del self._buckets[key]

    def check(self, *, client: str, route_class: str, cost: int) -> RateLimitDecision:
        now_ms = int(self._time_provider() * 1000)
        key = f"{client}:{route_class}"
        stored = self._buckets.get(key)
        tokens = _calculate_tokens(
            tokens=stored[0] if stored else None,
            last_ms=stored[1] if stored else None,
            now_ms=now_ms,
            rate=self.config.rps,
            burst=self.config.burst,
        )
        allowed = tokens >= cost
        retry_after = _retry_after_ms(tokens, rate=self.config.rps, cost=cost)
        if allowed:
            tokens -= cost
        if len(self._buckets) >= _MAX_BUCKETS and key not in self._buckets:
            self._evict_idle(now_ms)
        self._buckets[key] = (tokens, now_ms)
        if not allowed:
            logger.info("rate_limited client=%s route_class=%s retry_after_ms=%s", client, route_class, retry_after)
        return RateLimitDecision(allowed=allowed, route_class=route_class, retry_after_ms=retry_after, remaining=tokens)
