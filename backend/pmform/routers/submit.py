# backend/pmform/routers/submit.py
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from ..clients.google_sheets import SheetsError
from ..domain.form_validation import validate_form
from ..domain.messages import MSG_INVALID_JSON, MSG_SAVE_FAILED, MSG_SUBMIT_OK, MSG_VALIDATION_FAILED
from ..services.rate_limit import get_client_ip
from ..services.runtime_metrics import METRICS
from ..services.sanitize import sanitize_form_data

router = APIRouter(tags=["submit"])

log = logging.getLogger("pmform.submit")

IDEMPOTENCY_HEADER = "Idempotency-Key"


def _failed(status_code: int, message: str, errors: list | None = None) -> JSONResponse:
    body: dict = {"success": False, "message": message}
    if errors is not None:
        body["errors"] = errors
    return JSONResponse(body, status_code=status_code)


def _ok(submission_id: str) -> JSONResponse:
    return JSONResponse({"success": True, "submissionId": submission_id, "message": MSG_SUBMIT_OK})


@router.post("/submit-form")
async def submit_form(request: Request):
    """
    sanitize -> validate -> append to the spreadsheet.

    Queued retries and live submissions hit this same handler; a repeated
    Idempotency-Key replays the first success instead of appending again.
    """
    METRICS.inc("submit_requests_total")
    client_ip = get_client_ip(request.headers)

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        METRICS.inc("submit_rejected_total")
        return _failed(400, MSG_INVALID_JSON, errors=[])

    cleaned = sanitize_form_data(body)
    if cleaned.warnings:
        METRICS.inc("sanitize_warnings_total", len(cleaned.warnings))
        log.warning(
            "suspicious_input fields=%s",
            ",".join(cleaned.flagged_paths),
            extra={"client_ip": client_ip, "warnings": cleaned.warnings},
        )

    result = validate_form(cleaned.sanitized)
    if not result.ok:
        METRICS.inc("submit_rejected_total")
        return _failed(400, MSG_VALIDATION_FAILED, errors=[e.model_dump() for e in result.errors])

    recent = request.app.state.recent_submissions
    idem_key = (request.headers.get(IDEMPOTENCY_HEADER) or "").strip() or None
    if idem_key:
        prior = recent.get(idem_key)
        if prior:
            METRICS.inc("submit_replayed_total")
            log.info("submission_replayed key=%s", idem_key, extra={"submission_id": prior})
            return _ok(prior)

    sheets = request.app.state.sheets
    try:
        appended = await run_in_threadpool(sheets.append_submission, result.form)
    except SheetsError as e:
        METRICS.inc("submit_failed_total")
        log.error("submission_persist_failed error=%s", e, extra={"client_ip": client_ip})
        return _failed(500, MSG_SAVE_FAILED)
    except Exception:
        METRICS.inc("submit_failed_total")
        log.exception("submission_persist_crashed", extra={"client_ip": client_ip})
        return _failed(500, MSG_SAVE_FAILED)

    if idem_key:
        recent.remember(idem_key, appended.submission_id)

    METRICS.inc("submit_ok_total")
    log.info("submission_saved", extra={"submission_id": appended.submission_id, "client_ip": client_ip})
    return _ok(appended.submission_id)
