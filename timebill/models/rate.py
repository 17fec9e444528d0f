from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel


class Rate(BaseModel):
    """One version of a named hourly rate.

    Rates sharing a ``name`` form a series; a billing code points at any
    member of the series and the member effective on a given date is used.
    """

    id: int | None = None
    uuid: str = ""
    name: str
    amount: int  # cents per hour
    active_from: date
    active_to: date
    internal_only: bool = False
    created_at: datetime | None = None

    def is_effective(self, on: date) -> bool:
        return self.active_from <= on <= self.active_to

    def overlaps(self, other: Rate) -> bool:
        return self.active_from <= other.active_to and other.active_from <= self.active_to
