import math
import time
from typing import Optional, Tuple

from fastapi import HTTPException, Request
from limits import RateLimitItem, parse
from limits.storage import MemoryStorage, Storage
from limits.strategies import FixedWindowRateLimiter

from .logs import json_log


class RateLimiter:
    """
    Fixed-window limiter for one scope ("pos_login", "demo_signup", ...).

    Counters live in `limits` in-memory storage, so limits are per process.
    """

    def __init__(self, scope: str, storage: Optional[Storage] = None):
        self.scope = scope
        self.storage = storage or MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self.storage)

    def check(self, identifier: str, rate: str) -> Tuple[bool, int, int]:
        """Count one hit; returns (allowed, remaining, seconds until the window resets)."""
        item: RateLimitItem = parse(rate)
        allowed = self._strategy.hit(item, self.scope, identifier)
        reset_at, remaining = self._strategy.get_window_stats(item, self.scope, identifier)
        retry_after = max(1, int(math.ceil(reset_at - time.time())))
        return allowed, int(remaining), retry_after

    def reset(self) -> None:
        self.storage.reset()


def client_ip(request: Request) -> str:
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",", 1)[0].strip()
    if forwarded:
        return forwarded
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "anonymous"


def enforce_rate_limit(limiter: RateLimiter, request: Request, rate: str, detail: str = "too many requests") -> str:
    ip = client_ip(request)
    ok, remaining, retry_after = limiter.check(ip, rate)
    if not ok:
        json_log("warning", "rate_limit.blocked", scope=limiter.scope, client_ip=ip, path=request.url.path)
        raise HTTPException(
            status_code=429,
            detail=detail,
            headers={"Retry-After": str(retry_after), "X-RateLimit-Remaining": str(remaining)},
        )
    return ip


login_limiter = RateLimiter("pos_login")
signup_limiter = RateLimiter("demo_signup")
slug_lookup_limiter = RateLimiter("tenant_slug")
