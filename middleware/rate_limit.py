"""Rate limiting middleware for FastAPI.

Every merge downloads and re-uploads a whole workbook, so merge endpoints get
their own, stricter budget on top of the general one.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


logger = logging.getLogger(__name__)

MERGE_PATH_PREFIX = "/merges/"
SWEEP_INTERVAL_SECONDS = 60


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""
    requests_per_minute: int = 60
    requests_per_hour: int = 1000
    merge_requests_per_minute: int = 10  # Each one is a full download + upload
    merge_requests_per_hour: int = 200
    burst_limit: int = 10  # Max requests in 1 second


@dataclass
class ClientWindow:
    """Request timestamps for one client and one budget (general or merge)."""
    timestamps: List[float] = field(default_factory=list)

    def prune(self, now: float) -> None:
        hour_ago = now - 3600
        self.timestamps = [t for t in self.timestamps if t > hour_ago]

    def count_since(self, since: float) -> int:
        return sum(1 for t in self.timestamps if t > since)

    def oldest_since(self, since: float) -> Optional[float]:
        return next((t for t in self.timestamps if t > since), None)


def _too_many(message: str, retry_after: int) -> JSONResponse:
    retry_after = max(1, retry_after)
    return JSONResponse(
        status_code=429,
        content={
            "ok": False,
            "kind": "rate_limited",
            "error": message,
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limits per client address."""

    def __init__(self, app, config: RateLimitConfig = None, clock: Callable[[], float] = time.time):
        super().__init__(app)
        self.config = config or RateLimitConfig()
        self._clock = clock
        self.windows: Dict[str, ClientWindow] = {}
        self._last_sweep: Optional[float] = None

    def _get_client_id(self, request: Request) -> str:
        # Use X-Forwarded-For if behind a proxy, otherwise use client host
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def _sweep(self, now: float) -> None:
        """Forget clients with no request in the last hour."""
        if self._last_sweep is not None and now - self._last_sweep < SWEEP_INTERVAL_SECONDS:
            return
        self._last_sweep = now
        hour_ago = now - 3600
        idle = [
            key for key, window in self.windows.items()
            if not window.timestamps or window.timestamps[-1] <= hour_ago
        ]
        for key in idle:
            del self.windows[key]
        if idle:
            logger.debug(f"[RATE] Dropped {len(idle)} idle client windows")

    @staticmethod
    def _is_merge_endpoint(request: Request) -> bool:
        return request.method == "POST" and request.url.path.startswith(MERGE_PATH_PREFIX)

    def _limits(self, is_merge: bool):
        if is_merge:
            return self.config.merge_requests_per_minute, self.config.merge_requests_per_hour
        return self.config.requests_per_minute, self.config.requests_per_hour

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        client_id = self._get_client_id(request)
        is_merge = self._is_merge_endpoint(request)
        now = self._clock()

        self._sweep(now)
        key = f"{client_id}:{'merge' if is_merge else 'general'}"
        window = self.windows.get(key)
        if window is None:
            window = ClientWindow()
        window.prune(now)
        minute_limit, hour_limit = self._limits(is_merge)

        if window.count_since(now - 1) >= self.config.burst_limit:
            logger.warning(f"[RATE] Burst limit hit by {client_id}")
            return _too_many("Rate limit exceeded: too many requests per second", 1)

        if window.count_since(now - 60) >= minute_limit:
            oldest = window.oldest_since(now - 60)
            logger.warning(f"[RATE] {minute_limit}/min limit hit by {client_id} on {request.url.path}")
            return _too_many(
                f"Rate limit exceeded: {minute_limit} requests per minute",
                int(60 - (now - (oldest or now))),
            )

        if len(window.timestamps) >= hour_limit:
            oldest = window.timestamps[0]
            logger.warning(f"[RATE] {hour_limit}/hour limit hit by {client_id} on {request.url.path}")
            return _too_many(
                f"Rate limit exceeded: {hour_limit} requests per hour",
                int(3600 - (now - oldest)),
            )

        window.timestamps.append(now)
        self.windows[key] = window

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(minute_limit)
        response.headers["X-RateLimit-Remaining"] = str(
            max(0, minute_limit - window.count_since(now - 60))
        )
        response.headers["X-RateLimit-Reset"] = str(int(now + 60))
        return response
