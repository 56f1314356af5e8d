# astro_edge/utils/ratelimit.py
from __future__ import annotations

"""
Token-bucket rate limiting for the proxy.

The proxy holds the NASA key, so it is the one place that can keep a noisy
client from burning the shared upstream quota.

- One bucket per (client, operation); client = first X-Forwarded-For hop or remote addr
- Per-operation limits come from settings.ratelimit.<operation>_per_min
- Thread-safe per process (RLock); idle full buckets are dropped every 30s
- Env toggles:
    EDGE_RL_DISABLE    -> disable limiter entirely
    EDGE_RL_ALLOWLIST  -> comma-separated client ids/IPs to skip
"""

import math
import os
import time
from dataclasses import dataclass
from functools import wraps
from threading import RLock
from typing import Callable, Dict, Iterable, Optional, Tuple

from flask import current_app, jsonify, make_response, request

__all__ = ["RateLimiter", "rate_limited", "client_ident"]


def _truthy(v: Optional[str]) -> bool:
    return (v or "0").lower() in ("1", "true", "yes", "on")


def client_ident(req) -> str:
    xff = req.headers.get("X-Forwarded-For", "")
    return (xff.split(",")[0].strip() if xff else "") or (req.remote_addr or "anon")


@dataclass
class Bucket:
    tokens: float
    capacity: float
    rate: float         # tokens per second
    ts: float           # last refill (monotonic)
    limit: int          # advertised per-minute limit

    def refill(self, now: float) -> None:
        if now > self.ts:
            self.tokens = min(self.capacity, self.tokens + (now - self.ts) * self.rate)
            self.ts = now


class RateLimiter:
    def __init__(
        self,
        limits: Dict[str, int],
        *,
        disabled: Optional[bool] = None,
        allowlist: Optional[Iterable[str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limits = {k: int(v) for k, v in limits.items()}
        self.disabled = _truthy(os.getenv("EDGE_RL_DISABLE")) if disabled is None else disabled
        if allowlist is None:
            allowlist = (s.strip() for s in os.getenv("EDGE_RL_ALLOWLIST", "").split(","))
        self.allowlist = {s for s in allowlist if s}
        self._clock = clock
        self._buckets: Dict[str, Bucket] = {}
        self._lock = RLock()
        self._last_cleanup = 0.0

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < 30.0:
            return
        self._last_cleanup = now
        idle = [k for k, b in self._buckets.items() if b.tokens >= b.capacity and now - b.ts > 180.0]
        for k in idle:
            self._buckets.pop(k, None)

    def consume(self, operation: str, ident: str) -> Tuple[bool, int, int]:
        """Take one token. Returns (allowed, remaining, retry_after_seconds)."""
        limit = self.limits.get(operation, 0)
        if self.disabled or limit <= 0 or ident in self.allowlist:
            return True, limit, 0
        now = self._clock()
        key = f"{ident}:{operation}"
        with self._lock:
            self._cleanup(now)
            b = self._buckets.get(key)
            if b is None:
                b = Bucket(tokens=float(limit), capacity=float(limit), rate=limit / 60.0, ts=now, limit=limit)
                self._buckets[key] = b
            else:
                b.refill(now)
            if b.tokens + 1e-12 < 1.0:
                return False, 0, max(1, math.ceil((1.0 - b.tokens) / b.rate))
            b.tokens -= 1.0
            return True, max(0, int(b.tokens)), 0


def rate_limited(operation: str):
    """Apply the app's RateLimiter to a view under `operation`'s limit."""
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            if request.method in ("HEAD", "OPTIONS"):
                return f(*args, **kwargs)
            limiter: RateLimiter = current_app.extensions["astro_edge"].limiter
            allowed, remaining, retry_after = limiter.consume(operation, client_ident(request))
            limit = limiter.limits.get(operation, 0)
            if not allowed:
                resp = make_response(jsonify(error="rate_limited", retry_after_seconds=retry_after), 429)
                resp.headers["Retry-After"] = str(retry_after)
                resp.headers["X-RateLimit-Limit"] = str(limit)
                resp.headers["X-RateLimit-Remaining"] = "0"
                return resp
            resp = make_response(f(*args, **kwargs))
            if limit > 0 and not limiter.disabled:
                resp.headers.setdefault("X-RateLimit-Limit", str(limit))
                resp.headers["X-RateLimit-Remaining"] = str(remaining)
            return resp
        return wrapper
    return decorator
