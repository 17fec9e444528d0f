from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class OutboxStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class OutboxTask(BaseModel):
    id: int | None = None
    uuid: str = ""
    kind: str
    payload: dict = {}
    status: OutboxStatus = OutboxStatus.PENDING
    attempts: int = 0
    last_error: str = ""
    created_at: datetime | None = None
    processed_at: datetime | None = None
