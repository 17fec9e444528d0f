from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class AuditEventType:
    """String constants for all audit event types."""

    # Rate and billing code events
    RATE_CREATE = "rate.create"
    RATE_UPDATE = "rate.update"
    BILLING_CODE_CREATE = "billing_code.create"
    BILLING_CODE_UPDATE = "billing_code.update"
    BILLING_CODE_ASSIGN = "billing_code.assign"

    # Entry events
    ENTRY_CREATE = "entry.create"
    ENTRY_UPDATE = "entry.update"
    ENTRY_TRANSITION = "entry.transition"
    ENTRY_DELETE = "entry.delete"

    # Adjustment events
    ADJUSTMENT_CREATE = "adjustment.create"
    ADJUSTMENT_UPDATE = "adjustment.update"
    ADJUSTMENT_TRANSITION = "adjustment.transition"
    ADJUSTMENT_DELETE = "adjustment.delete"

    # Invoice events
    INVOICE_CREATE = "invoice.create"
    INVOICE_APPROVE = "invoice.approve"
    INVOICE_SEND = "invoice.send"
    INVOICE_PAID = "invoice.paid"
    INVOICE_VOID = "invoice.void"

    # Bill events
    BILL_GENERATE = "bill.generate"
    BILL_REGENERATE = "bill.regenerate"
    BILL_PAID = "bill.paid"
    BILL_VOID = "bill.void"
    BILL_ADJUSTMENT_CREATE = "bill.adjustment_create"


class AuditLog(BaseModel):
    id: int | None = None
    uuid: str = ""
    event_type: str
    actor_id: int | None = None
    source: str = ""  # 'service', 'cli' or 'worker'
    entity_type: str = ""
    entity_id: int | None = None
    entity_uuid: str = ""
    previous_state: dict | None = None  # JSON (None for creates)
    new_state: dict | None = None  # JSON (None for deletes)
    metadata: dict = {}
    created_at: datetime | None = None
