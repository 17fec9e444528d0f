from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from timebill.models.billing_code import BillingCode


class Account(BaseModel):
    id: int | None = None
    uuid: str = ""
    name: str
    # One draft invoice for the whole account instead of one per project.
    projects_single_invoice: bool = False
    created_at: datetime | None = None


class Project(BaseModel):
    id: int | None = None
    uuid: str = ""
    account_id: int
    name: str
    billing_codes: list[BillingCode] = []
    created_at: datetime | None = None


class Employee(BaseModel):
    id: int | None = None
    uuid: str = ""
    first_name: str
    last_name: str = ""
    email: str = ""
    user_id: int | None = None
    created_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
