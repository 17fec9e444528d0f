from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class EntryState(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    SENT = "sent"
    PAID = "paid"
    VOID = "void"


class JournalClass(str, Enum):
    RECEIVABLE = "receivable"
    INTERNAL_COST = "internal_cost"


LOCKED_ENTRY_STATES = frozenset(
    {EntryState.APPROVED, EntryState.SENT, EntryState.PAID, EntryState.VOID}
)


class Entry(BaseModel):
    id: int | None = None
    uuid: str = ""
    project_id: int
    employee_id: int
    billing_code_id: int
    start: datetime
    end: datetime
    notes: str = ""
    internal: bool = False
    state: EntryState = EntryState.DRAFT
    journal: JournalClass = JournalClass.RECEIVABLE
    linked_entry_id: int | None = None
    invoice_id: int | None = None
    bill_id: int | None = None
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    @property
    def is_locked(self) -> bool:
        return self.state in LOCKED_ENTRY_STATES


class EntryEdit(BaseModel):
    """Fields a caller may change on a draft entry. ``None`` leaves a field as is."""

    start: datetime | None = None
    end: datetime | None = None
    notes: str | None = None
    billing_code_id: int | None = None
