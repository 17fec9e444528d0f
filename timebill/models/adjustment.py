from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class AdjustmentType(str, Enum):
    FEE = "fee"
    CREDIT = "credit"


class AdjustmentState(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    SENT = "sent"
    VOID = "void"


class Adjustment(BaseModel):
    id: int | None = None
    uuid: str = ""
    invoice_id: int
    type: AdjustmentType = AdjustmentType.FEE
    amount: int  # cents, always positive; the type carries the sign
    notes: str = ""
    state: AdjustmentState = AdjustmentState.DRAFT
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def signed_amount(self) -> int:
        if self.type == AdjustmentType.CREDIT:
            return -self.amount
        return self.amount
