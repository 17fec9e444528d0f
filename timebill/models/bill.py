from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel

from timebill.models.adjustment import AdjustmentType


class BillState(str, Enum):
    DRAFT = "draft"
    PAID = "paid"
    VOID = "void"


class Bill(BaseModel):
    id: int | None = None
    uuid: str = ""
    employee_id: int
    period_start: date
    period_end: date
    state: BillState = BillState.DRAFT
    total_minutes: int = 0
    total_fees: int = 0  # cents
    total_adjustments: int = 0  # cents
    total_amount: int = 0  # cents
    pdf_path: str | None = None
    closed_at: datetime | None = None
    version: int = 0
    created_at: datetime | None = None

    @property
    def total_hours(self) -> Decimal:
        return (Decimal(self.total_minutes) / 60).quantize(Decimal("0.01"))


class BillAdjustment(BaseModel):
    """Employee-level correction (commission, bonus, deduction) on one bill."""

    id: int | None = None
    uuid: str = ""
    bill_id: int
    employee_id: int
    period_end: date
    type: AdjustmentType = AdjustmentType.FEE
    amount: int  # cents, positive
    notes: str = ""
    void: bool = False
    created_at: datetime | None = None

    @property
    def signed_amount(self) -> int:
        if self.type == AdjustmentType.CREDIT:
            return -self.amount
        return self.amount
