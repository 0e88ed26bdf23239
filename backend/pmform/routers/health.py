from __future__ import annotations

from fastapi import APIRouter, Request, Response

from ..config import settings
from ..schemas import HealthOut

router = APIRouter(tags=["ops"])


@router.get("/health", response_model=HealthOut)
def health(request: Request) -> HealthOut:
    sheets = getattr(request.app.state, "sheets", None)
    enabled = getattr(sheets, "enabled", None)
    return HealthOut(
        ok=True,
        version=settings.app_version,
        extra={"sheets_configured": bool(enabled()) if callable(enabled) else False},
    )


@router.head("/health")
def health_head() -> Response:
    # Connectivity probe used by field terminals
    return Response(status_code=200)
