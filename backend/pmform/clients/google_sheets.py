from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

import httpx
import jwt

from ..config import settings
from ..domain.sheet_row import SHEET_RANGE_COLUMNS, build_sheet_row
from ..schemas import MaintenanceForm

log = logging.getLogger("pmform.sheets")

SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"


class SheetsError(RuntimeError):
    pass


@dataclass(frozen=True)
class SheetAppendResult:
    submission_id: str
    updated_range: Optional[str]
    raw: dict[str, Any]


class GoogleSheetsClient:
    """
    Appends one row per submission via the Sheets v4 REST API.

    Auth is the service-account flow: a self-signed RS256 JWT is exchanged for
    a bearer token, cached until shortly before it expires.
    """

    def __init__(
        self,
        *,
        client_email: str | None = None,
        private_key: str | None = None,
        spreadsheet_id: str | None = None,
        sheet_name: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.client_email = client_email if client_email is not None else settings.google_sheets_client_email
        self.private_key = private_key if private_key is not None else settings.google_sheets_private_key
        self.spreadsheet_id = spreadsheet_id if spreadsheet_id is not None else settings.google_spreadsheet_id
        self.sheet_name = sheet_name or settings.google_sheet_name
        self.token_uri = settings.google_token_uri
        self.base = settings.google_sheets_base_url.rstrip("/")
        self._transport = transport

        self._token: str | None = None
        self._token_expires_at: float = 0.0

    def enabled(self) -> bool:
        return bool(self.client_email and self.private_key and self.spreadsheet_id)

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=20.0, transport=self._transport)

    def _access_token(self, client: httpx.Client) -> str:
        now = time.time()
        if self._token and now < self._token_expires_at - 60:
            return self._token

        claims = {
            "iss": self.client_email,
            "scope": SHEETS_SCOPE,
            "aud": self.token_uri,
            "iat": int(now),
            "exp": int(now) + 3600,
        }
        assertion = jwt.encode(claims, self.private_key, algorithm="RS256")

        r = client.post(self.token_uri, data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion})
        r.raise_for_status()
        data = r.json()

        self._token = str(data["access_token"])
        self._token_expires_at = now + float(data.get("expires_in") or 3600)
        return self._token

    def append_row(self, values: list[str]) -> dict[str, Any]:
        if not self.enabled():
            raise SheetsError("Google Sheets credentials are not configured")

        rng = quote(f"{self.sheet_name}!{SHEET_RANGE_COLUMNS}", safe="")
        url = f"{self.base}/spreadsheets/{self.spreadsheet_id}/values/{rng}:append"

        try:
            with self._client() as client:
                token = self._access_token(client)
                r = client.post(
                    url,
                    params={"valueInputOption": "USER_ENTERED"},
                    headers={"Authorization": f"Bearer {token}"},
                    json={"values": [values]},
                )
                r.raise_for_status()
                return r.json()
        except (httpx.HTTPError, jwt.PyJWTError, KeyError, ValueError) as e:
            log.error("sheets_append_failed error=%s", e)
            raise SheetsError("Failed to save data to Google Sheets") from e

    def append_submission(self, form: MaintenanceForm) -> SheetAppendResult:
        submission_id = f"ATM-{int(time.time() * 1000)}"
        timestamp = datetime.now(timezone.utc).isoformat()

        data = self.append_row(build_sheet_row(form, submission_id=submission_id, timestamp=timestamp))
        updates = data.get("updates") if isinstance(data, dict) else None
        updated_range = updates.get("updatedRange") if isinstance(updates, dict) else None

        log.info("sheets_appended range=%s", updated_range, extra={"submission_id": submission_id})
        return SheetAppendResult(submission_id=submission_id, updated_range=updated_range, raw=data)
