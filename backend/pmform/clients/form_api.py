from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ..config import settings


class SubmitError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(SubmitError):
    def __init__(self, message: str, *, retry_after: float) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class ValidationRejected(SubmitError):
    def __init__(self, message: str, *, errors: list[dict[str, Any]]) -> None:
        super().__init__(message, status_code=400)
        self.errors = errors


@dataclass(frozen=True)
class SubmitReceipt:
    submission_id: str
    message: str
    raw: dict[str, Any]


def _json_or_empty(r: httpx.Response) -> dict[str, Any]:
    try:
        data = r.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _retry_after_seconds(r: httpx.Response, body: dict[str, Any]) -> float:
    for raw in (r.headers.get("Retry-After"), body.get("retryAfter")):
        try:
            if raw is not None:
                return max(0.0, float(raw))
        except (TypeError, ValueError):
            continue
    return 60.0


class FormApiClient:
    """
    POST /api/submit-form, shared by the direct submit path and queue sync.

    Non-2xx responses raise: RateLimitedError (429), ValidationRejected (400),
    SubmitError (anything else). Transport problems surface as httpx errors.
    """

    submit_path = "/api/submit-form"

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def submit_form(self, data: Any, *, idempotency_key: Optional[str] = None) -> SubmitReceipt:
        headers = {"Content-Type": "application/json"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        async with self._client() as client:
            r = await client.post(self.submit_path, json=data, headers=headers)

        body = _json_or_empty(r)
        if r.status_code == 429:
            raise RateLimitedError(
                str(body.get("message") or "Too Many Requests"),
                retry_after=_retry_after_seconds(r, body),
            )
        if r.status_code == 400:
            errors = body.get("errors") if isinstance(body.get("errors"), list) else []
            raise ValidationRejected(str(body.get("message") or "API returned 400"), errors=errors)
        if not r.is_success:
            raise SubmitError(
                str(body.get("message") or f"API returned {r.status_code}"),
                status_code=r.status_code,
            )

        return SubmitReceipt(
            submission_id=str(body.get("submissionId") or ""),
            message=str(body.get("message") or ""),
            raw=body,
        )
