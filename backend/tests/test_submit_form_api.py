# backend/tests/test_submit_form_api.py
from __future__ import annotations

from fastapi.testclient import TestClient

from pmform.domain.messages import MSG_INVALID_JSON, MSG_RATE_LIMITED, MSG_SAVE_FAILED, MSG_SUBMIT_OK
from pmform.main import create_app
from pmform.services.rate_limit import RateLimiter
from pmform.services.runtime_metrics import METRICS


def _client(sheets, *, max_requests=10) -> TestClient:
    app = create_app(limiter=RateLimiter(max_requests=max_requests), sheets=sheets)
    return TestClient(app)


def test_valid_submission_is_saved(fake_sheets, form_payload):
    r = _client(fake_sheets).post("/api/submit-form", json=form_payload)

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["message"] == MSG_SUBMIT_OK
    assert body["submissionId"].startswith("ATM-")
    assert len(fake_sheets.appended) == 1

    assert r.headers["X-RateLimit-Limit"] == "10"
    assert r.headers["X-RateLimit-Remaining"] == "9"
    assert "X-RateLimit-Reset" in r.headers
    assert "Retry-After" not in r.headers
    assert r.headers.get("X-Request-ID")


def test_invalid_submission_returns_field_errors(fake_sheets, form_payload):
    payload = dict(form_payload, location="", ac_brand="other")
    r = _client(fake_sheets).post("/api/submit-form", json=payload)

    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    paths = [e["path"] for e in body["errors"]]
    assert ["location"] in paths
    assert all(e["message"] for e in body["errors"])
    assert fake_sheets.appended == []


def test_conditional_rule_error(fake_sheets, form_payload):
    payload = dict(form_payload, bank_approval="not_approved")
    r = _client(fake_sheets).post("/api/submit-form", json=payload)

    assert r.status_code == 400
    assert r.json()["errors"][0]["path"] == ["not_approved_reason"]


def test_invalid_json_body(fake_sheets):
    r = _client(fake_sheets).post(
        "/api/submit-form",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json() == {"success": False, "message": MSG_INVALID_JSON, "errors": []}


def test_storage_failure_is_500(fake_sheets, form_payload):
    fake_sheets.fail = True
    r = _client(fake_sheets).post("/api/submit-form", json=form_payload)
    assert r.status_code == 500
    assert r.json() == {"success": False, "message": MSG_SAVE_FAILED}
    assert METRICS.get("submit_failed_total") == 1


def test_markup_is_sanitized_before_storage(fake_sheets, form_payload):
    payload = dict(
        form_payload,
        location="<script>alert(1)</script>สาขา A",
        suggestions='<img src=x onerror="x()">',
    )
    r = _client(fake_sheets).post("/api/submit-form", json=payload)

    assert r.status_code == 200
    form = fake_sheets.appended[0]
    assert "<script" not in form.location
    assert "onerror" not in (form.suggestions or "")
    assert METRICS.get("sanitize_warnings_total") == 2


def test_rate_limit_blocks_after_max_requests(fake_sheets, form_payload):
    client = _client(fake_sheets, max_requests=2)
    for _ in range(2):
        assert client.post("/api/submit-form", json=form_payload).status_code == 200

    r = client.post("/api/submit-form", json=form_payload)
    assert r.status_code == 429
    body = r.json()
    assert body["success"] is False
    assert body["message"] == MSG_RATE_LIMITED
    assert body["error"] == "Too Many Requests"
    assert body["retryAfter"] == 60
    assert r.headers["Retry-After"] == "60"
    assert r.headers["X-RateLimit-Remaining"] == "0"
    assert METRICS.get("rate_limit_blocked_total") == 1
    assert len(fake_sheets.appended) == 2


def test_rate_limit_is_per_client_ip(fake_sheets, form_payload):
    client = _client(fake_sheets, max_requests=1)

    def post(ip):
        return client.post("/api/submit-form", json=form_payload, headers={"X-Forwarded-For": ip})

    assert post("10.0.0.1").status_code == 200
    assert post("10.0.0.1").status_code == 429
    assert post("10.0.0.2").status_code == 200


def test_rate_limit_headers_on_every_api_route(fake_sheets):
    client = _client(fake_sheets)
    r = client.get("/api/metrics")
    assert r.status_code == 200
    assert r.headers["X-RateLimit-Remaining"] == "9"

    docs = client.get("/openapi.json")
    assert "X-RateLimit-Limit" not in docs.headers


def test_health_polls_do_not_spend_the_submission_window(fake_sheets, form_payload):
    client = _client(fake_sheets, max_requests=2)

    for _ in range(5):
        r = client.head("/api/health")
        assert r.status_code == 200
        assert r.headers["X-RateLimit-Remaining"] == "2"
        assert "Retry-After" not in r.headers

    assert client.post("/api/submit-form", json=form_payload).status_code == 200
    assert client.post("/api/submit-form", json=form_payload).status_code == 200
    assert client.post("/api/submit-form", json=form_payload).status_code == 429

    # still reachable and reporting the exhausted window
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.headers["X-RateLimit-Remaining"] == "0"
    assert "Retry-After" not in r.headers
    assert METRICS.get("rate_limit_blocked_total") == 1


def test_idempotency_key_replays_first_success(fake_sheets, form_payload):
    client = _client(fake_sheets)
    headers = {"Idempotency-Key": "submission_1_abc"}

    first = client.post("/api/submit-form", json=form_payload, headers=headers)
    second = client.post("/api/submit-form", json=form_payload, headers=headers)

    assert first.status_code == second.status_code == 200
    assert first.json()["submissionId"] == second.json()["submissionId"]
    assert len(fake_sheets.appended) == 1
    assert METRICS.get("submit_replayed_total") == 1


def test_health_and_metrics(fake_sheets, form_payload):
    client = _client(fake_sheets)
    body = client.get("/api/health").json()
    assert body["ok"] is True
    assert body["extra"]["sheets_configured"] is True

    assert client.head("/api/health").status_code == 200

    client.post("/api/submit-form", json=form_payload)
    m = client.get("/api/metrics")
    assert m.status_code == 200
    assert "pmform_submit_ok_total 1" in m.text.splitlines()
    assert "pmform_submit_requests_total 1" in m.text.splitlines()


def test_metrics_expose_gauges(fake_sheets):
    client = _client(fake_sheets)
    client.get("/api/health")
    lines = client.get("/api/metrics").text.splitlines()

    assert "# TYPE pmform_rate_limit_tracked_clients gauge" in lines
    assert "pmform_rate_limit_tracked_clients 1" in lines
    assert "pmform_idempotency_keys 0" in lines


def test_request_id_is_echoed_only_when_well_formed(fake_sheets):
    client = _client(fake_sheets)
    ok = client.get("/api/health", headers={"X-Request-ID": "terminal-42.retry_1"})
    assert ok.headers["X-Request-ID"] == "terminal-42.retry_1"

    bad = client.get("/api/health", headers={"X-Request-ID": "x\" onload=alert(1)"})
    assert bad.headers["X-Request-ID"] != "x\" onload=alert(1)"
    assert len(bad.headers["X-Request-ID"]) == 32


def test_lifespan_runs_the_rate_limit_sweeper(monkeypatch, fake_sheets):
    from pmform.services import rate_limit

    monkeypatch.setattr("pmform.main.configure_logging", lambda **kwargs: None)

    with _client(fake_sheets) as client:
        assert client.get("/api/health").status_code == 200
        assert rate_limit._sweeper_task is not None
        assert not rate_limit._sweeper_task.done()
    assert rate_limit._sweeper_task is None
