# backend/pmform/domain/form_validation.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError

from ..schemas import FieldError, MaintenanceForm

# Thai message per field, used for every base-schema failure on that field
FIELD_MESSAGES: dict[str, str] = {
    "date": "กรุณาเลือกวันที่",
    "time": "กรุณาเลือกเวลา",
    "location": "กรุณากรอกชื่อสถานที่",
    "machine_number": "กรุณากรอกตัวเลข 4 หลัก",
    "ac_brand": "กรุณาเลือกยี่ห้อเครื่องปรับอากาศ",
    "btu": "กรุณาเลือกขนาด BTU",
    "ac_status": "กรุณาเลือกสถานะการทำงานของแอร์",
    "timer_status": "กรุณาเลือกสถานะการทำงานของ TIMER",
    "electric_status": "กรุณาเลือกสถานะระบบไฟฟ้า",
    "ln_voltage": "กรุณากรอกค่า L+N",
    "lg_voltage": "กรุณากรอกค่า L+G",
    "gn_voltage": "กรุณากรอกค่า G+N",
    "g_ohm": "กรุณากรอกค่า G",
    "meter": "กรุณาเลือกประเภทมิเตอร์ไฟฟ้า",
    "bank_approval": "กรุณาเลือกความเห็นของธนาคาร",
    "refrigerant_pressure": "กรุณากรอกแรงดันน้ำยาแอร์",
    "refrigerant_added": "กรุณากรอกปริมาณน้ำยาที่เติม",
    "next_month": "กรุณากรอกเดือนที่เข้าล้างครั้งต่อไป",
    "next_year": "กรุณากรอกปีที่เข้าล้างครั้งต่อไป",
}

MACHINE_NUMBER_LENGTH_MESSAGE = "หมายเลขเครื่องต้องเป็น 4 หลัก"

# (trigger field, trigger value, required field, message)
CONDITIONAL_RULES: tuple[tuple[str, str, str, str], ...] = (
    ("ac_brand", "other", "brand_other_text", "กรุณาระบุยี่ห้อเครื่องปรับอากาศ"),
    ("btu", "other", "btu_other_text", "กรุณาระบุขนาด BTU"),
    ("ac_status", "abnormal", "ac_status_detail", "กรุณาระบุรายละเอียดความผิดปกติ"),
    ("timer_status", "abnormal", "timer_status_detail", "กรุณาระบุรายละเอียดความผิดปกติ"),
    ("meter", "has", "meter_number", "กรุณาระบุหมายเลขมิเตอร์"),
    ("bank_approval", "not_approved", "not_approved_reason", "กรุณาระบุเหตุผลที่ไม่อนุมัติ"),
)


@dataclass
class FormValidationResult:
    form: Optional[MaintenanceForm] = None
    errors: list[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.form is not None and not self.errors


def _message_for(err: dict[str, Any]) -> str:
    loc = err.get("loc") or ()
    head = str(loc[0]) if loc else ""
    if head == "machine_number" and err.get("type") in ("string_too_short", "string_too_long"):
        return MACHINE_NUMBER_LENGTH_MESSAGE
    return FIELD_MESSAGES.get(head, str(err.get("msg") or "invalid"))


def _conditional_errors(form: MaintenanceForm) -> list[FieldError]:
    errors: list[FieldError] = []
    for trigger, value, required, message in CONDITIONAL_RULES:
        if getattr(form, trigger) == value and not getattr(form, required):
            errors.append(FieldError(path=[required], message=message, code="custom"))
    return errors


def validate_form(payload: Any) -> FormValidationResult:
    """
    Base schema first; conditional rules only run on a structurally valid form.
    Errors carry the field path so a client can pin them to inputs.
    """
    try:
        form = MaintenanceForm.model_validate(payload)
    except ValidationError as e:
        errors = [
            FieldError(path=list(err.get("loc") or ()), message=_message_for(err), code=str(err.get("type")))
            for err in e.errors()
        ]
        return FormValidationResult(form=None, errors=errors)

    errors = _conditional_errors(form)
    if errors:
        return FormValidationResult(form=None, errors=errors)
    return FormValidationResult(form=form, errors=[])
