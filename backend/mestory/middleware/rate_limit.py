from __future__ import annotations

import time
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..observability.logging import get_logger
from ..problem_details import problem_response
from ..settings import settings


@dataclass
class _Bucket:
    window_start: float
    count: int
    window_s: float = 60.0

    def expired(self, now: float) -> bool:
        return (now - self.window_start) >= self.window_s


@dataclass(frozen=True)
class _Tier:
    name: str
    limit: int
    window_s: float
    message: str


_AUTH_PATHS = ("/api/auth/login", "/api/auth/register")


def _tier_for(path: str) -> _Tier | None:
    if not path.startswith("/api/"):
        return None
    if path in _AUTH_PATHS:
        return _Tier(
            "auth",
            settings.auth_rate_limit_max_requests,
            float(settings.auth_rate_limit_window_seconds),
            "Too many authentication attempts, please try again later",
        )
    if path.startswith(("/api/ai/", "/api/analysis/")):
        return _Tier(
            "ai",
            settings.ai_rate_limit_max_requests,
            60.0,
            "AI request limit exceeded, please wait before trying again",
        )
    return _Tier(
        "api",
        settings.rate_limit_max_requests,
        float(settings.rate_limit_window_seconds),
        "Too many requests from this IP, please try again later",
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window, per-client rate limit with separate auth / AI / API tiers.
    In-memory per process.
    """

    _buckets: dict[str, _Bucket] = {}
    _PRUNE_INTERVAL_S = 60.0
    _last_prune: float = 0.0

    def _client_ip(self, request: Request) -> str:
        # Prefer X-Forwarded-For (load balancer), fallback to client.host.
        xff = (request.headers.get("x-forwarded-for") or "").strip()
        ip = xff.split(",")[0].strip() if xff else ""
        if not ip and request.client:
            ip = request.client.host or ""
        return ip or "unknown"

    @classmethod
    def reset(cls) -> None:
        cls._buckets.clear()
        cls._last_prune = 0.0

    @classmethod
    def prune(cls, now: float) -> int:
        """Drop buckets whose window has ended; returns how many were removed."""
        expired = [k for k, b in cls._buckets.items() if b.expired(now)]
        for k in expired:
            del cls._buckets[k]
        cls._last_prune = now
        return len(expired)

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method.upper() == "OPTIONS":
            return await call_next(request)

        tier = _tier_for(request.url.path)
        if tier is None:
            return await call_next(request)

        limit = max(1, int(tier.limit))
        key = f"{tier.name}:{self._client_ip(request)}"
        now = time.time()
        if now - self._last_prune >= self._PRUNE_INTERVAL_S:
            self.prune(now)

        b = self._buckets.get(key)
        if not b or b.expired(now):
            b = _Bucket(window_start=now, count=0, window_s=tier.window_s)
            self._buckets[key] = b

        b.count += 1
        if b.count > limit:
            retry_after = int(max(1.0, tier.window_s - (now - b.window_start)))
            get_logger("rate_limit").info("rate_limited", tier=tier.name, path=request.url.path)
            return problem_response(
                request=request,
                status_code=429,
                detail=tier.message,
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)
        if tier.name == "auth" and response.status_code < 400:
            # Successful logins/registrations do not count toward the auth limit.
            b.count = max(0, b.count - 1)
        return response
