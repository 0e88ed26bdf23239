# backend/pmform/schemas.py
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# -------------------- Maintenance form --------------------

class WorkProcedures(BaseModel):
    step1: bool
    step2: bool
    step3: bool
    step4: bool
    step5: bool
    step6: bool


class MaintenanceForm(BaseModel):
    """A/C maintenance checklist: pre-operation, post-operation, next visit."""

    model_config = ConfigDict(extra="ignore")

    # Basic information
    date: str = Field(min_length=1)
    time: str = Field(min_length=1)
    location: str = Field(min_length=1)
    machine_number: str = Field(min_length=4, max_length=4, pattern=r"^\d{4}$")

    # A/C information
    ac_brand: Literal["daikin", "carrier", "other"]
    brand_other_text: Optional[str] = None
    btu: Literal["9000", "12000", "other"]
    btu_other_text: Optional[str] = None

    # Status checks
    ac_status: Literal["normal", "abnormal"]
    ac_status_detail: Optional[str] = None
    timer_status: Literal["normal", "abnormal"]
    timer_status_detail: Optional[str] = None

    # Electrical measurements
    electric_status: Literal["normal", "abnormal"]
    ln_voltage: str = Field(min_length=1)
    lg_voltage: str = Field(min_length=1)
    gn_voltage: str = Field(min_length=1)
    g_ohm: str = Field(min_length=1)

    # Meter
    meter: Literal["has", "none", "location", "not_requested"]
    meter_number: Optional[str] = None

    # Repair
    repair_details: Optional[str] = None
    cannot_proceed: Optional[str] = None

    # Bank approval
    bank_approval: Literal["approved", "not_approved"]
    not_approved_reason: Optional[str] = None

    # Post-operation
    work_procedures: Optional[WorkProcedures] = None
    refrigerant_pressure: str = Field(min_length=1)
    refrigerant_added: str = Field(min_length=1)
    repair_work_detail: Optional[str] = None
    suggestions: Optional[str] = None

    # Next maintenance
    next_month: str = Field(min_length=1)
    next_year: str = Field(min_length=1)


class FieldError(BaseModel):
    path: list[str | int]
    message: str
    code: str


# -------------------- API responses --------------------

class SubmitOk(BaseModel):
    success: Literal[True] = True
    submissionId: str
    message: str


class SubmitFailed(BaseModel):
    success: Literal[False] = False
    message: str
    errors: list[FieldError] = Field(default_factory=list)


class HealthOut(BaseModel):
    ok: bool
    version: str
    extra: dict[str, Any] = Field(default_factory=dict)
