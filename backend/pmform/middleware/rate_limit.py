# backend/pmform/middleware/rate_limit.py
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..config import settings
from ..domain.messages import MSG_RATE_LIMITED
from ..services.rate_limit import RateLimiter, get_client_ip, rate_limit_headers
from ..services.runtime_metrics import METRICS

log = logging.getLogger("pmform.ratelimit")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window limit per client IP on every /api/* request.

    Allowed responses carry X-RateLimit-* headers; blocked ones are a 429 with
    Retry-After and never reach the route.

    Uncounted paths (the terminals' health poll) still get the headers for the
    caller's current window but neither spend it nor get blocked.
    """

    path_prefix = "/api/"

    def __init__(self, app, limiter: RateLimiter, uncounted_paths: Iterable[str] | None = None) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.uncounted_paths = frozenset(uncounted_paths if uncounted_paths is not None else (settings.health_path,))

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if not path.startswith(self.path_prefix):
            return await call_next(request)

        ip = get_client_ip(request.headers)

        if path in self.uncounted_paths:
            headers = rate_limit_headers(replace(self.limiter.peek(ip), allowed=True))
            response = await call_next(request)
            response.headers.update(headers)
            return response

        result = self.limiter.check(ip)
        headers = rate_limit_headers(result)

        if not result.allowed:
            METRICS.inc("rate_limit_blocked_total")
            log.warning(
                "rate_limited path=%s retry_after=%s",
                path,
                result.reset_in,
                extra={"client_ip": ip},
            )
            return JSONResponse(
                {
                    "success": False,
                    "message": MSG_RATE_LIMITED,
                    "error": "Too Many Requests",
                    "retryAfter": result.reset_in,
                },
                status_code=429,
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
