"""In-process token-bucket rate limiting keyed by client IP."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Mapping

PRUNE_THRESHOLD = 1500
IDLE_CUTOFF_S = 30 * 60
UNKNOWN_CLIENT = "unknown"

_IP_HEADERS = ("cf-connecting-ip", "x-real-ip", "x-vercel-forwarded-for", "x-forwarded-for")
# Only these may carry "client, proxy1, proxy2" lists.
_LIST_HEADERS = ("x-vercel-forwarded-for", "x-forwarded-for")


@dataclass(frozen=True)
class RateLimitPolicy:
    capacity: int
    refill_per_second: float


DEFAULT_POLICIES: dict[str, RateLimitPolicy] = {
    "analyze": RateLimitPolicy(capacity=10, refill_per_second=0.2),
    "flagged": RateLimitPolicy(capacity=30, refill_per_second=1.0),
}


@dataclass(frozen=True)
class RateLimitResult:
    ok: bool
    limit: int
    remaining: int
    retry_after_seconds: int | None = None


@dataclass
class _Bucket:
    tokens: float
    last_refill: float
    last_seen: float


def _first_ip(value: str) -> str | None:
    first = value.split(",")[0].strip()
    if not first:
        return None
    # IPv4 with port; bare IPv6 has no dots.
    if ":" in first and "." in first:
        first = first.split(":")[0]
    return first or None


def client_ip(headers: Mapping[str, str], peer: str | None = None) -> str | None:
    for name in _IP_HEADERS:
        value = (headers.get(name) or "").strip()
        if not value:
            continue
        if name in _LIST_HEADERS:
            return _first_ip(value) or value
        return value
    return peer or None


class RateLimiter:
    def __init__(
        self,
        policies: Mapping[str, RateLimitPolicy] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policies = dict(policies or DEFAULT_POLICIES)
        self.clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._buckets)

    def _prune(self, now: float) -> None:
        if len(self._buckets) < PRUNE_THRESHOLD:
            return
        cutoff = now - IDLE_CUTOFF_S
        self._buckets = {k: b for k, b in self._buckets.items() if b.last_seen >= cutoff}

    def check(self, scope: str, client_id: str | None) -> RateLimitResult:
        policy = self.policies[scope]
        capacity = max(1, int(policy.capacity))
        refill = max(0.001, policy.refill_per_second)
        key = f"{scope}:{client_id or UNKNOWN_CLIENT}"

        with self._lock:
            now = self.clock()
            self._prune(now)

            bucket = self._buckets.get(key)
            if bucket is None:
                self._buckets[key] = _Bucket(tokens=capacity - 1, last_refill=now, last_seen=now)
                return RateLimitResult(ok=True, limit=capacity, remaining=capacity - 1)

            elapsed = max(0.0, now - bucket.last_refill)
            tokens = min(float(capacity), bucket.tokens + elapsed * refill)
            bucket.last_refill = now
            bucket.last_seen = now

            if tokens < 1:
                bucket.tokens = tokens
                retry_after = max(1, math.ceil((1 - tokens) / refill))
                return RateLimitResult(ok=False, limit=capacity, remaining=0, retry_after_seconds=retry_after)

            bucket.tokens = tokens - 1
            return RateLimitResult(ok=True, limit=capacity, remaining=max(0, math.floor(bucket.tokens)))


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    headers = {
        "x-ratelimit-limit": str(result.limit),
        "x-ratelimit-remaining": str(result.remaining),
        "cache-control": "no-store",
    }
    if not result.ok and result.retry_after_seconds is not None:
        headers["retry-after"] = str(result.retry_after_seconds)
    return headers
