# backend/pmform/domain/messages.py
"""User-facing strings (Thai). Log lines stay English."""
from __future__ import annotations

# ---- API responses ----
MSG_SUBMIT_OK = "บันทึกข้อมูลสำเร็จ"
MSG_VALIDATION_FAILED = "ข้อมูลไม่ถูกต้อง"
MSG_SAVE_FAILED = "เกิดข้อผิดพลาดในการบันทึกข้อมูล"
MSG_RATE_LIMITED = "มีการส่งคำขอมากเกินไป กรุณารอสักครู่แล้วลองใหม่อีกครั้ง"
MSG_INVALID_JSON = "รูปแบบข้อมูลไม่ถูกต้อง"

# ---- Field terminal ----
MSG_QUEUED_OFFLINE = "คุณกำลังออฟไลน์ ข้อมูลจะถูกบันทึกในเครื่องและส่งอัตโนมัติเมื่อกลับมาออนไลน์"
MSG_QUEUE_WRITE_FAILED = "ไม่สามารถบันทึกข้อมูลในเครื่องได้"
MSG_DRAFT_SAVE_FAILED = "Failed to save draft"


def sync_result_message(successful: int, failed: int) -> str | None:
    if successful > 0:
        msg = f"ส่งข้อมูลสำเร็จ {successful} รายการ"
        if failed > 0:
            msg += f", ล้มเหลว {failed} รายการ"
        return msg
    if failed > 0:
        return f"ไม่สามารถส่งข้อมูลได้ {failed} รายการ"
    return None


def relative_age_label(age_ms: int | None) -> str:
    """'Saved N minutes ago' style label for a draft or auto-save timestamp."""
    if age_ms is None:
        return ""
    minutes = int(age_ms // 60_000)
    if minutes < 1:
        return "เมื่อสักครู่"
    if minutes < 60:
        return f"{minutes} นาทีที่แล้ว"
    hours = minutes // 60
    return f"{hours} ชั่วโมงที่แล้ว"
