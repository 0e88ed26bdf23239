# backend/pmform/domain/sheet_row.py
from __future__ import annotations

from ..schemas import MaintenanceForm

SHEET_RANGE_COLUMNS = "A:AB"

BRAND_LABELS = {"daikin": "DAIKIN", "carrier": "CARRIER"}
BTU_LABELS = {"9000": "9,000 BTU", "12000": "12,000 BTU"}
OTHER_LABEL = "อื่นๆ"


def _status(value: str, normal_label: str = "ทำงานปกติ") -> str:
    return normal_label if value == "normal" else "ไม่ปกติ"


def _meter_text(form: MaintenanceForm) -> str:
    if form.meter == "has":
        return f"มี ({form.meter_number})" if form.meter_number else "มี"
    if form.meter == "none":
        return "ไม่มี"
    if form.meter == "location":
        return "ใช้ไฟฟ้าของสถานที่"
    if form.meter == "not_requested":
        return "ไม่ได้ขอมิเตอร์ใหม่"
    return ""


def build_sheet_row(form: MaintenanceForm, *, submission_id: str, timestamp: str) -> list[str]:
    """One spreadsheet row (columns A..AB) for a validated form."""
    brand = BRAND_LABELS.get(form.ac_brand) or (form.brand_other_text or OTHER_LABEL)
    btu = BTU_LABELS.get(form.btu) or (form.btu_other_text or OTHER_LABEL)
    bank = "อนุมัติให้ดำเนินการ" if form.bank_approval == "approved" else "ไม่อนุมัติ"

    return [
        submission_id,
        timestamp,
        form.date,
        form.time,
        form.location,
        form.machine_number,
        brand,
        btu,
        _status(form.ac_status),
        form.ac_status_detail or "",
        _status(form.timer_status),
        form.timer_status_detail or "",
        _status(form.electric_status, normal_label="ปกติ"),
        form.ln_voltage,
        form.lg_voltage,
        form.gn_voltage,
        form.g_ohm,
        _meter_text(form),
        form.repair_details or "",
        form.cannot_proceed or "",
        bank,
        form.not_approved_reason or "",
        form.refrigerant_pressure,
        form.refrigerant_added,
        form.repair_work_detail or "",
        form.suggestions or "",
        form.next_month,
        form.next_year,
    ]
