# backend/tests/conftest.py
from __future__ import annotations

import time
from typing import Any

import pytest

from pmform.clients.google_sheets import SheetAppendResult, SheetsError
from pmform.db import create_local_engine
from pmform.offline.storage import LocalStore
from pmform.services.runtime_metrics import METRICS


class FakeSheets:
    """Stands in for GoogleSheetsClient: records forms instead of calling Google."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.appended: list[Any] = []

    def enabled(self) -> bool:
        return True

    def append_submission(self, form) -> SheetAppendResult:
        if self.fail:
            raise SheetsError("Failed to save data to Google Sheets")
        self.appended.append(form)
        sid = f"ATM-{int(time.time() * 1000)}-{len(self.appended)}"
        return SheetAppendResult(submission_id=sid, updated_range="Sheet1!A2:AB2", raw={})


@pytest.fixture(autouse=True)
def _reset_metrics():
    METRICS.reset()
    yield
    METRICS.reset()


@pytest.fixture
def store(tmp_path) -> LocalStore:
    return LocalStore(create_local_engine(f"sqlite:///{tmp_path / 'local.db'}"))


@pytest.fixture
def broken_store(tmp_path) -> LocalStore:
    # parent directory does not exist: every connect fails
    return LocalStore(create_local_engine(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'local.db'}"))


@pytest.fixture
def fake_sheets() -> FakeSheets:
    return FakeSheets()


@pytest.fixture
def form_payload() -> dict[str, Any]:
    return {
        "date": "2026-10-19",
        "time": "09:30",
        "location": "สาขาสยามพารากอน",
        "machine_number": "1234",
        "ac_brand": "daikin",
        "btu": "12000",
        "ac_status": "normal",
        "timer_status": "normal",
        "electric_status": "normal",
        "ln_voltage": "220",
        "lg_voltage": "220",
        "gn_voltage": "0.4",
        "g_ohm": "5",
        "meter": "location",
        "bank_approval": "approved",
        "work_procedures": {
            "step1": True,
            "step2": True,
            "step3": True,
            "step4": True,
            "step5": True,
            "step6": True,
        },
        "refrigerant_pressure": "65 psi",
        "refrigerant_added": "0",
        "next_month": "04",
        "next_year": "2027",
    }
