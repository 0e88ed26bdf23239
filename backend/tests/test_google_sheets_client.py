# backend/tests/test_google_sheets_client.py
from __future__ import annotations

import json
from urllib.parse import parse_qs

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from pmform.clients.google_sheets import GoogleSheetsClient, SheetsError
from pmform.config import settings
from pmform.domain.form_validation import validate_form


@pytest.fixture(scope="module")
def rsa_keys():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


class FakeGoogle:
    def __init__(self, public_pem: str, *, append_status: int = 200):
        self.public_pem = public_pem
        self.append_status = append_status
        self.token_requests = 0
        self.appends: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == settings.google_token_uri:
            self.token_requests += 1
            form = parse_qs(request.content.decode())
            claims = jwt.decode(
                form["assertion"][0],
                self.public_pem,
                algorithms=["RS256"],
                audience=settings.google_token_uri,
            )
            assert claims["iss"] == "svc@pmform.iam.gserviceaccount.com"
            assert "spreadsheets" in claims["scope"]
            return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})

        if request.url.path.endswith(":append"):
            self.appends.append(request)
            if self.append_status != 200:
                return httpx.Response(self.append_status, json={"error": {"message": "boom"}})
            return httpx.Response(200, json={"updates": {"updatedRange": "Sheet1!A2:AB2"}})

        return httpx.Response(404)


def _client(private_pem, google, **kwargs):
    return GoogleSheetsClient(
        client_email="svc@pmform.iam.gserviceaccount.com",
        private_key=private_pem,
        spreadsheet_id="sheet-123",
        sheet_name="Sheet1",
        transport=httpx.MockTransport(google),
        **kwargs,
    )


def test_append_submission(rsa_keys, form_payload):
    private_pem, public_pem = rsa_keys
    google = FakeGoogle(public_pem)
    client = _client(private_pem, google)
    form = validate_form(form_payload).form

    result = client.append_submission(form)

    assert result.submission_id.startswith("ATM-")
    assert result.updated_range == "Sheet1!A2:AB2"

    [req] = google.appends
    assert req.headers["Authorization"] == "Bearer tok-1"
    assert req.url.params["valueInputOption"] == "USER_ENTERED"
    assert "/spreadsheets/sheet-123/values/" in req.url.path
    [row] = json.loads(req.content)["values"]
    assert row[0] == result.submission_id
    assert row[4] == form_payload["location"]


def test_token_is_reused_until_expiry(rsa_keys, form_payload):
    private_pem, public_pem = rsa_keys
    google = FakeGoogle(public_pem)
    client = _client(private_pem, google)
    form = validate_form(form_payload).form

    client.append_submission(form)
    client.append_submission(form)

    assert google.token_requests == 1
    assert len(google.appends) == 2


def test_api_error_is_wrapped(rsa_keys, form_payload):
    private_pem, public_pem = rsa_keys
    client = _client(private_pem, FakeGoogle(public_pem, append_status=500))

    with pytest.raises(SheetsError, match="Failed to save data to Google Sheets"):
        client.append_submission(validate_form(form_payload).form)


def test_unconfigured_client_is_disabled(form_payload):
    client = GoogleSheetsClient(client_email="", private_key="", spreadsheet_id="")
    assert client.enabled() is False
    with pytest.raises(SheetsError):
        client.append_row(["x"])


def test_escaped_newlines_in_configured_key(monkeypatch):
    from pmform.config import Settings

    monkeypatch.setenv("GOOGLE_SHEETS_PRIVATE_KEY", "-----BEGIN-----\\nabc\\n-----END-----")
    s = Settings()
    assert s.google_sheets_private_key == "-----BEGIN-----\nabc\n-----END-----"
