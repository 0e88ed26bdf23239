# backend/pmform/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .clients.google_sheets import GoogleSheetsClient
from .config import settings
from .logging_config import configure_logging
from .middleware.rate_limit import RateLimitMiddleware
from .middleware.request_id import RequestIDMiddleware
from .middleware.structured_logging import StructuredLoggingMiddleware
from .routers.health import router as health_router
from .routers.metrics import router as metrics_router
from .routers.submit import router as submit_router
from .services.idempotency import RecentSubmissions
from .services.rate_limit import (
    RateLimiter,
    build_rate_limiter,
    start_rate_limit_sweeper,
    stop_rate_limit_sweeper,
)

API_PREFIX = "/api"


def _cors_origins() -> list[str]:
    val = getattr(settings, "cors_allow_origins", ["*"])
    if isinstance(val, str):
        v = val.strip()
        return ["*"] if v == "*" else [x.strip() for x in v.split(",") if x.strip()]
    if isinstance(val, list) and val:
        return val
    return ["*"]


def create_app(
    *,
    limiter: RateLimiter | None = None,
    sheets: Any = None,
    recent_submissions: RecentSubmissions | None = None,
) -> FastAPI:
    if limiter is None:
        limiter = build_rate_limiter()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        start_rate_limit_sweeper(limiter)
        try:
            yield
        finally:
            await stop_rate_limit_sweeper()

    app = FastAPI(
        title="PM Form Submission API",
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.state.rate_limiter = limiter
    app.state.sheets = sheets if sheets is not None else GoogleSheetsClient()
    if recent_submissions is None:
        recent_submissions = RecentSubmissions(
            ttl_seconds=settings.idempotency_ttl_seconds,
            max_entries=settings.idempotency_max_entries,
        )
    app.state.recent_submissions = recent_submissions

    # Last added runs first: request id -> request log -> rate limit -> CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    )
    app.add_middleware(RateLimitMiddleware, limiter=limiter)
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(metrics_router, prefix=API_PREFIX)
    app.include_router(submit_router, prefix=API_PREFIX)

    return app


app = create_app()
