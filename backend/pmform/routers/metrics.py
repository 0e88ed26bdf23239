# backend/pmform/routers/metrics.py
from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from ..services.runtime_metrics import METRICS

router = APIRouter(prefix="/metrics", tags=["ops"])


def _gauges(request: Request) -> dict[str, float]:
    state = request.app.state
    out: dict[str, float] = {}

    limiter = getattr(state, "rate_limiter", None)
    if limiter is not None:
        try:
            out["rate_limit_tracked_clients"] = len(limiter.store)
        except TypeError:
            pass  # custom store without __len__

    recent = getattr(state, "recent_submissions", None)
    if recent is not None:
        out["idempotency_keys"] = len(recent)
    return out


@router.get("", response_class=PlainTextResponse)
def metrics(request: Request):
    return METRICS.render(_gauges(request))
