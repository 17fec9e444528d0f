from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel


class BillingCode(BaseModel):
    id: int | None = None
    uuid: str = ""
    project_id: int
    name: str = ""
    category: str = ""
    code: str
    rate_id: int
    internal_rate_id: int
    rounded_to: int = 15  # minutes
    active_start: date
    active_end: date
    created_at: datetime | None = None

    def is_active(self, on: date) -> bool:
        return self.active_start <= on <= self.active_end
