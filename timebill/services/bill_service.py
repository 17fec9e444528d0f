from __future__ import annotations

import logging
from datetime import datetime

from timebill.calc import billed_amount, pay_period
from timebill.constants import TZ
from timebill.errors import (
    ImmutableStateError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from timebill.models.adjustment import AdjustmentType
from timebill.models.audit_log import AuditEventType
from timebill.models.bill import Bill, BillAdjustment, BillState
from timebill.models.billing_code import BillingCode
from timebill.models.entry import Entry, EntryState
from timebill.models.invoice import InvoiceState
from timebill.pdf.bill import BillPDF
from timebill.repositories.store import Store
from timebill.services.audit_serializers import serialize_bill, serialize_bill_adjustment
from timebill.services.audit_service import AuditService
from timebill.services.billing_code_service import BillingCodeService
from timebill.settings import settings
from timebill.storage.base import BILL_ARTIFACTS, StorageBackend, artifact_key

logger = logging.getLogger(__name__)

BILL_TRANSITIONS: dict[BillState, frozenset[BillState]] = {
    BillState.DRAFT: frozenset({BillState.PAID, BillState.VOID}),
    BillState.PAID: frozenset(),
    BillState.VOID: frozenset(),
}


class BillService:
    def __init__(
        self,
        store: Store,
        storage: StorageBackend | None = None,
        billing_codes: BillingCodeService | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.billing_codes = billing_codes or BillingCodeService(store)
        self.audit = AuditService(store.audit_logs)
        self.pdf_generator = BillPDF()

    def get_bill(self, bill_id: int) -> Bill:
        bill = self.store.bills.get_by_id(bill_id)
        if bill is None:
            raise NotFoundError("Bill", bill_id)
        return bill

    def list_bills(self, employee_id: int | None = None) -> list[Bill]:
        if employee_id is not None:
            return self.store.bills.list_by_employee(employee_id)
        return self.store.bills.list_all()

    def list_entries(self, bill_id: int) -> list[Entry]:
        return self.store.entries.list_by_bill(bill_id)

    def list_adjustments(self, bill_id: int) -> list[BillAdjustment]:
        bill = self.get_bill(bill_id)
        return self.store.bills.list_adjustments(bill.id)

    def _lock(self, bill_id: int) -> Bill:
        bill = self.store.bills.lock(bill_id)
        if bill is None:
            raise NotFoundError("Bill", bill_id)
        return bill

    def _internal_fee(self, entry: Entry, codes: dict[int, BillingCode]) -> int:
        code = codes.get(entry.billing_code_id)
        if code is None:
            code = self.billing_codes.resolve(entry.billing_code_id)
            codes[entry.billing_code_id] = code
        try:
            rate = self.billing_codes.effective_internal_rate(code, entry.start.date())
        except NotFoundError as exc:
            raise ValidationError(f"Entry {entry.id}: {exc}") from exc
        return billed_amount(entry, code.rounded_to, rate.amount)

    def _recompute(self, bill: Bill) -> Bill:
        """Rebuild a bill's totals from its non-void entries and live adjustments."""
        if bill.id is None:  # pragma: no cover
            raise ValueError("Cannot recompute bill without an id")
        codes: dict[int, BillingCode] = {}
        entries = [e for e in self.store.entries.list_by_bill(bill.id) if e.state != EntryState.VOID]
        adjustments = [a for a in self.store.bills.list_adjustments(bill.id) if not a.void]
        bill.total_minutes = sum(e.duration_minutes for e in entries)
        bill.total_fees = sum(self._internal_fee(e, codes) for e in entries)
        bill.total_adjustments = sum(a.signed_amount for a in adjustments)
        bill.total_amount = bill.total_fees + bill.total_adjustments
        return self.store.bills.update(bill)

    def generate_bills(self, invoice_id: int, actor_id: int | None = None) -> list[Bill]:
        """Fold a paid invoice's internal-cost entries into per-employee, per-period bills.

        Entries already on a bill stay where they are, so running this again
        against the same invoice yields the same bills and totals.
        """
        with self.store.atomic():
            invoice = self.store.invoices.lock(invoice_id)
            if invoice is None:
                raise NotFoundError("Invoice", invoice_id)
            if invoice.state != InvoiceState.PAID:
                raise ValidationError(f"Invoice {invoice_id} is {invoice.state.value}; bills need a paid invoice")

            entries = [
                e
                for e in self.store.entries.list_by_invoice(invoice_id, internal=True)
                if e.state == EntryState.PAID
            ]
            groups: dict[tuple[int, tuple], list[Entry]] = {}
            bill_ids: set[int] = set()
            for entry in entries:
                if entry.bill_id is not None:
                    bill_ids.add(entry.bill_id)
                    continue
                period = pay_period(entry.start.date(), settings.pay_period)
                groups.setdefault((entry.employee_id, period), []).append(entry)

            for (employee_id, (period_start, period_end)), group in sorted(groups.items()):
                bill = self.store.bills.find_open(employee_id, period_end)
                if bill is None:
                    bill = self.store.bills.create(
                        Bill(employee_id=employee_id, period_start=period_start, period_end=period_end)
                    )
                if bill.id is None:  # pragma: no cover
                    raise ValueError("Bill has no id after create")
                self.store.entries.set_bill([e.id for e in group if e.id is not None], bill.id)
                bill_ids.add(bill.id)

            bills: list[Bill] = []
            for bill_id in sorted(bill_ids):
                bill = self.get_bill(bill_id)
                if bill.state == BillState.DRAFT:
                    before = serialize_bill(bill)
                    bill = self._recompute(bill)
                    self.audit.record(
                        AuditEventType.BILL_GENERATE,
                        bill,
                        actor=actor_id,
                        before=before,
                        metadata={"invoice_id": invoice_id},
                    )
                bills.append(bill)
        logger.info("Bills generated: invoice=%s bills=%s", invoice_id, [b.id for b in bills])
        return bills

    def regenerate(self, bill_id: int, actor_id: int | None = None) -> Bill:
        with self.store.atomic():
            bill = self._lock(bill_id)
            if bill.state != BillState.DRAFT:
                raise ImmutableStateError("Bill", bill_id, bill.state.value)
            before = serialize_bill(bill)
            bill = self._recompute(bill)
            self.audit.record(AuditEventType.BILL_REGENERATE, bill, actor=actor_id, before=before)
        logger.info("Bill regenerated: id=%s total=%d", bill_id, bill.total_amount)
        return bill

    def _check_transition(self, bill: Bill, target: BillState) -> None:
        if target not in BILL_TRANSITIONS[bill.state]:
            logger.warning("Rejected bill transition: id=%s %s -> %s", bill.id, bill.state.value, target.value)
            raise InvalidTransitionError("Bill", bill.id, bill.state.value, target.value)

    def mark_paid(self, bill_id: int, actor_id: int | None = None) -> Bill:
        with self.store.atomic():
            bill = self._lock(bill_id)
            self._check_transition(bill, BillState.PAID)
            before = serialize_bill(bill)
            bill.state = BillState.PAID
            bill.closed_at = datetime.now(TZ)
            bill = self.store.bills.update(bill)
            self.audit.record(AuditEventType.BILL_PAID, bill, actor=actor_id, before=before)
        logger.info("Bill paid: id=%s total=%d", bill_id, bill.total_amount)
        return bill

    def void(self, bill_id: int, actor_id: int | None = None) -> Bill:
        """Void a draft bill: totals go to zero and its entries and adjustments are voided.

        Destructive; callers are expected to confirm with the operator first.
        """
        with self.store.atomic():
            bill = self._lock(bill_id)
            self._check_transition(bill, BillState.VOID)
            before = serialize_bill(bill)
            entries = self.store.entries.set_state_for_bill(bill_id, EntryState.VOID)
            self.store.bills.void_adjustments(bill_id)
            bill.state = BillState.VOID
            bill.closed_at = datetime.now(TZ)
            bill.total_minutes = 0
            bill.total_fees = 0
            bill.total_adjustments = 0
            bill.total_amount = 0
            bill = self.store.bills.update(bill)
            self.audit.record(
                AuditEventType.BILL_VOID, bill, actor=actor_id, before=before, metadata={"entries": entries}
            )
        logger.info("Bill voided: id=%s entries=%d", bill_id, entries)
        return bill

    def add_adjustment(
        self,
        bill_id: int,
        adjustment_type: AdjustmentType,
        amount: int,
        notes: str = "",
        actor_id: int | None = None,
    ) -> Bill:
        if amount <= 0:
            raise ValidationError("Adjustment amount must be positive")
        with self.store.atomic():
            bill = self._lock(bill_id)
            if bill.state != BillState.DRAFT:
                raise ImmutableStateError("Bill", bill_id, bill.state.value)
            adjustment = self.store.bills.create_adjustment(
                BillAdjustment(
                    bill_id=bill_id,
                    employee_id=bill.employee_id,
                    period_end=bill.period_end,
                    type=adjustment_type,
                    amount=amount,
                    notes=notes,
                )
            )
            bill = self._recompute(bill)
            self.audit.record(
                AuditEventType.BILL_ADJUSTMENT_CREATE, bill, actor=actor_id, after=serialize_bill_adjustment(adjustment)
            )
        logger.info("Bill adjustment added: bill=%s type=%s amount=%d", bill_id, adjustment_type.value, amount)
        return bill

    def render_pdf(self, bill_id: int) -> str:
        """Render the bill, store it and record the path. Returns the storage path."""
        with self.store.atomic():
            bill = self.get_bill(bill_id)
            employee = self.store.employees.get_by_id(bill.employee_id)
            employee_name = employee.full_name if employee else f"Employee {bill.employee_id}"
            codes: dict[int, BillingCode] = {}
            rows = [
                (entry, self.billing_codes.resolve(entry.billing_code_id).code, self._internal_fee(entry, codes))
                for entry in self.list_entries(bill_id)
                if entry.state != EntryState.VOID
            ]
            adjustments = [a for a in self.list_adjustments(bill_id) if not a.void]
            pdf_bytes = self.pdf_generator.generate(bill, employee_name, rows, adjustments)

            if self.storage is None:
                from timebill.storage.factory import get_storage

                self.storage = get_storage()
            key = artifact_key(BILL_ARTIFACTS, bill.uuid)
            try:
                path = self.storage.save(key, pdf_bytes)
            except Exception as exc:
                logger.error("Failed to store bill %s PDF at %s: %s", bill.uuid, key, exc)
                raise PersistenceError(f"Could not store bill {bill.uuid}: {exc}") from exc
            self.store.bills.update_pdf_path(bill_id, path)
        logger.info("PDF stored at %s for bill %s", key, bill.uuid)
        return path
