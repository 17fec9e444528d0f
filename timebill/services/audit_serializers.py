"""Serializers that convert models to dicts suitable for audit log state fields.

Dates and datetimes become ISO 8601 strings and enums their values, so the
result is always JSON compatible.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable

from timebill.models.adjustment import Adjustment
from timebill.models.bill import Bill, BillAdjustment
from timebill.models.billing_code import BillingCode
from timebill.models.entry import Entry
from timebill.models.invoice import Invoice
from timebill.models.rate import Rate


def _dt(val: date | datetime | None) -> str | None:
    """Convert a date or datetime to an ISO string, or None."""
    if val is None:
        return None
    return val.isoformat()


def serialize_rate(rate: Rate) -> dict:
    return {
        "id": rate.id,
        "uuid": rate.uuid,
        "name": rate.name,
        "amount": rate.amount,
        "active_from": _dt(rate.active_from),
        "active_to": _dt(rate.active_to),
        "internal_only": rate.internal_only,
    }


def serialize_billing_code(code: BillingCode) -> dict:
    return {
        "id": code.id,
        "uuid": code.uuid,
        "project_id": code.project_id,
        "category": code.category,
        "code": code.code,
        "rate_id": code.rate_id,
        "internal_rate_id": code.internal_rate_id,
        "rounded_to": code.rounded_to,
        "active_start": _dt(code.active_start),
        "active_end": _dt(code.active_end),
    }


def serialize_entry(entry: Entry) -> dict:
    return {
        "id": entry.id,
        "uuid": entry.uuid,
        "project_id": entry.project_id,
        "employee_id": entry.employee_id,
        "billing_code_id": entry.billing_code_id,
        "start": _dt(entry.start),
        "end": _dt(entry.end),
        "notes": entry.notes,
        "internal": entry.internal,
        "state": entry.state.value,
        "linked_entry_id": entry.linked_entry_id,
        "invoice_id": entry.invoice_id,
        "bill_id": entry.bill_id,
    }


def serialize_adjustment(adjustment: Adjustment) -> dict:
    return {
        "id": adjustment.id,
        "uuid": adjustment.uuid,
        "invoice_id": adjustment.invoice_id,
        "type": adjustment.type.value,
        "amount": adjustment.amount,
        "notes": adjustment.notes,
        "state": adjustment.state.value,
    }


def serialize_invoice(invoice: Invoice) -> dict:
    """Serialize an Invoice header and totals; child rows are audited on their own."""
    return {
        "id": invoice.id,
        "uuid": invoice.uuid,
        "project_id": invoice.project_id,
        "account_id": invoice.account_id,
        "type": invoice.type.value,
        "state": invoice.state.value,
        "accepted_at": _dt(invoice.accepted_at),
        "sent_at": _dt(invoice.sent_at),
        "due_at": _dt(invoice.due_at),
        "closed_at": _dt(invoice.closed_at),
        "total_minutes": invoice.total_minutes,
        "total_fees": invoice.total_fees,
        "total_adjustments": invoice.total_adjustments,
        "total_amount": invoice.total_amount,
        "pdf_path": invoice.pdf_path,
    }


def serialize_bill(bill: Bill) -> dict:
    return {
        "id": bill.id,
        "uuid": bill.uuid,
        "employee_id": bill.employee_id,
        "period_start": _dt(bill.period_start),
        "period_end": _dt(bill.period_end),
        "state": bill.state.value,
        "total_minutes": bill.total_minutes,
        "total_fees": bill.total_fees,
        "total_adjustments": bill.total_adjustments,
        "total_amount": bill.total_amount,
        "closed_at": _dt(bill.closed_at),
    }


def serialize_bill_adjustment(adjustment: BillAdjustment) -> dict:
    return {
        "id": adjustment.id,
        "uuid": adjustment.uuid,
        "bill_id": adjustment.bill_id,
        "employee_id": adjustment.employee_id,
        "period_end": _dt(adjustment.period_end),
        "type": adjustment.type.value,
        "amount": adjustment.amount,
        "notes": adjustment.notes,
    }


AUDITED_ENTITIES: dict[type, tuple[str, Callable[[Any], dict]]] = {
    Rate: ("rate", serialize_rate),
    BillingCode: ("billing_code", serialize_billing_code),
    Entry: ("entry", serialize_entry),
    Adjustment: ("adjustment", serialize_adjustment),
    Invoice: ("invoice", serialize_invoice),
    Bill: ("bill", serialize_bill),
    BillAdjustment: ("bill_adjustment", serialize_bill_adjustment),
}


def _registration(entity: Any) -> tuple[str, Callable[[Any], dict]]:
    try:
        return AUDITED_ENTITIES[type(entity)]
    except KeyError:
        raise TypeError(f"{type(entity).__name__} is not an audited entity") from None


def entity_type_of(entity: Any) -> str:
    return _registration(entity)[0]


def serialize(entity: Any) -> dict:
    """Serialize any audited model with its registered serializer."""
    return _registration(entity)[1](entity)
