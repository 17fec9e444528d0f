from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel

from timebill.models.adjustment import Adjustment
from timebill.models.entry import Entry


class InvoiceType(str, Enum):
    AR = "AR"


class InvoiceState(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    SENT = "sent"
    PAID = "paid"
    VOID = "void"


class Invoice(BaseModel):
    id: int | None = None
    uuid: str = ""
    project_id: int | None = None
    account_id: int
    type: InvoiceType = InvoiceType.AR
    state: InvoiceState = InvoiceState.DRAFT
    period_start: date | None = None
    period_end: date | None = None
    accepted_at: datetime | None = None
    sent_at: datetime | None = None
    due_at: datetime | None = None
    closed_at: datetime | None = None
    total_minutes: int = 0
    total_fees: int = 0  # cents
    total_adjustments: int = 0  # cents
    total_amount: int = 0  # cents
    pdf_path: str | None = None
    version: int = 0
    entries: list[Entry] = []  # client-facing entries, ordered by start
    adjustments: list[Adjustment] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def total_hours(self) -> Decimal:
        return (Decimal(self.total_minutes) / 60).quantize(Decimal("0.01"))

    @property
    def scope_label(self) -> str:
        if self.project_id is not None:
            return f"project {self.project_id}"
        return f"account {self.account_id}"


class InvoiceTotals(BaseModel):
    total_minutes: int = 0
    total_fees: int = 0
    total_adjustments: int = 0
    total_amount: int = 0
    period_start: date | None = None
    period_end: date | None = None

    @property
    def total_hours(self) -> Decimal:
        return (Decimal(self.total_minutes) / 60).quantize(Decimal("0.01"))


class InvoiceLineItem(BaseModel):
    entry_id: int
    employee_id: int
    billing_code_id: int
    billing_code: str
    start: datetime
    notes: str
    state: str
    billed_minutes: int
    rate_amount: int  # cents per hour
    fee: int  # cents

    @property
    def billed_hours(self) -> Decimal:
        return (Decimal(self.billed_minutes) / 60).quantize(Decimal("0.01"))
