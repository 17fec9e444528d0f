from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta

from timebill.calc import billed_amount, billed_minutes
from timebill.constants import OUTBOX_COMMISSION_COMPUTE, OUTBOX_JOURNAL_POST, TZ
from timebill.errors import (
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from timebill.models.adjustment import AdjustmentState
from timebill.models.audit_log import AuditEventType
from timebill.models.billing_code import BillingCode
from timebill.models.entry import Entry, EntryState
from timebill.models.invoice import Invoice, InvoiceLineItem, InvoiceState, InvoiceTotals
from timebill.models.outbox import OutboxTask
from timebill.models.project import Project
from timebill.pdf.invoice import InvoicePDF
from timebill.repositories.store import Store
from timebill.services.audit_service import AuditService
from timebill.services.bill_service import BillService
from timebill.services.billing_code_service import BillingCodeService
from timebill.settings import settings
from timebill.storage.base import INVOICE_ARTIFACTS, StorageBackend, artifact_key

logger = logging.getLogger(__name__)

INVOICE_TRANSITIONS: dict[InvoiceState, frozenset[InvoiceState]] = {
    InvoiceState.DRAFT: frozenset({InvoiceState.APPROVED, InvoiceState.VOID}),
    InvoiceState.APPROVED: frozenset({InvoiceState.SENT, InvoiceState.VOID}),
    InvoiceState.SENT: frozenset({InvoiceState.PAID, InvoiceState.VOID}),
    InvoiceState.PAID: frozenset(),
    InvoiceState.VOID: frozenset(),
}

_LIVE_ENTRY_STATES = (EntryState.DRAFT, EntryState.APPROVED, EntryState.SENT)
_LIVE_ADJUSTMENT_STATES = (AdjustmentState.DRAFT, AdjustmentState.APPROVED, AdjustmentState.SENT)


def _now() -> datetime:
    return datetime.now(TZ)


class InvoiceService:
    def __init__(
        self,
        store: Store,
        storage: StorageBackend | None = None,
        billing_codes: BillingCodeService | None = None,
        bill_service: BillService | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.billing_codes = billing_codes or BillingCodeService(store)
        self.audit = AuditService(store.audit_logs)
        self.pdf_generator = InvoicePDF()
        self.bill_service = bill_service or BillService(store, storage, billing_codes=self.billing_codes)

    # -- lookups ---------------------------------------------------------

    def get_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.store.invoices.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    def get_by_uuid(self, uuid: str) -> Invoice:
        invoice = self.store.invoices.get_by_uuid(uuid)
        if invoice is None:
            raise NotFoundError("Invoice", uuid)
        return invoice

    def list_drafts(self) -> list[Invoice]:
        return self.store.invoices.list_by_state([InvoiceState.DRAFT])

    def list_by_state(self, states: Iterable[InvoiceState]) -> list[Invoice]:
        return self.store.invoices.list_by_state(list(states))

    def _lock(self, invoice_id: int) -> Invoice:
        invoice = self.store.invoices.lock(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    # -- association -----------------------------------------------------

    def _draft_scope(self, project: Project) -> tuple[str, int | None, int]:
        """Return (draft key, project id or None, account id) for a project's draft invoice."""
        account = self.store.accounts.get_by_id(project.account_id)
        if account is None:
            raise NotFoundError("Account", project.account_id)
        if account.projects_single_invoice:
            return f"AR:account:{account.id}", None, account.id
        return f"AR:project:{project.id}", project.id, account.id

    def find_or_create_draft_invoice(self, project_id: int, actor_id: int | None = None) -> Invoice:
        """Return the single open draft AR invoice for the project's scope, creating it if needed.

        The ``open_draft_key`` unique column guarantees that two concurrent callers
        never both create a draft; the loser re-reads the winner's row.
        """
        project = self.store.projects.get_by_id(project_id)
        if project is None:
            raise NotFoundError("Project", project_id)
        key, scope_project_id, account_id = self._draft_scope(project)

        with self.store.atomic():
            existing = self.store.invoices.find_open_draft(key)
            if existing is not None:
                return existing

            created = self.store.invoices.create_draft(
                Invoice(project_id=scope_project_id, account_id=account_id), key
            )
            if created is None:
                existing = self.store.invoices.find_open_draft(key)
                if existing is None:
                    raise PersistenceError(f"Draft invoice for {key} vanished after a conflicting insert")
                logger.debug("Lost draft invoice race for %s, reusing id=%s", key, existing.id)
                return existing

            self.audit.record(AuditEventType.INVOICE_CREATE, created, actor=actor_id)
        logger.info("Invoice created: id=%s scope=%s", created.id, key)
        return created

    def associate_entries(self, entries: Iterable[Entry], actor_id: int | None = None) -> list[Invoice]:
        """Attach draft entries to the open draft invoice of their project.

        Invoices the entries were moved away from are recomputed as well.
        """
        by_project: dict[int, list[Entry]] = {}
        for entry in entries:
            if entry.state == EntryState.DRAFT:
                by_project.setdefault(entry.project_id, []).append(entry)

        touched: list[Invoice] = []
        with self.store.atomic():
            for project_id, project_entries in by_project.items():
                invoice = self.find_or_create_draft_invoice(project_id, actor_id=actor_id)
                if invoice.id is None:  # pragma: no cover
                    raise ValueError("Draft invoice has no id")
                moving = [e for e in project_entries if e.invoice_id != invoice.id]
                if moving:
                    previous = {e.invoice_id for e in moving if e.invoice_id is not None}
                    self.store.entries.set_invoice([e.id for e in moving if e.id is not None], invoice.id)
                    for old_invoice_id in previous:
                        self.recompute_totals(old_invoice_id)
                    logger.debug("Associated %d entries with invoice %s", len(moving), invoice.id)
                self.recompute_totals(invoice.id)
                touched.append(self.get_invoice(invoice.id))
        return touched

    def associate_entry(self, entry_id: int, actor_id: int | None = None) -> Invoice | None:
        """Attach an entry and its linked twin to their draft invoice."""
        entry = self.store.entries.get_by_id(entry_id)
        if entry is None:
            raise NotFoundError("Entry", entry_id)
        pair = [entry]
        if entry.linked_entry_id is not None:
            twin = self.store.entries.get_by_id(entry.linked_entry_id)
            if twin is not None:
                pair.append(twin)
        touched = self.associate_entries(pair, actor_id=actor_id)
        return touched[0] if touched else None

    # -- totals ------------------------------------------------------------

    def _priced_entries(self, invoice_id: int) -> list[tuple[Entry, BillingCode, int]]:
        """Return (entry, billing code, external cents/hour) for each non-void client-facing entry."""
        codes: dict[int, BillingCode] = {}
        priced = []
        for entry in self.store.entries.list_by_invoice(invoice_id, internal=False):
            if entry.state == EntryState.VOID:
                continue
            code = codes.get(entry.billing_code_id)
            if code is None:
                code = self.billing_codes.resolve(entry.billing_code_id)
                codes[entry.billing_code_id] = code
            try:
                rate = self.billing_codes.effective_external_rate(code, entry.start.date())
            except NotFoundError as exc:
                raise ValidationError(f"Entry {entry.id}: {exc}") from exc
            priced.append((entry, code, rate.amount))
        return priced

    def compute_totals(self, invoice_id: int) -> InvoiceTotals:
        """Pure recomputation from the invoice's current non-void entries and adjustments."""
        priced = self._priced_entries(invoice_id)
        total_minutes = sum(entry.duration_minutes for entry, _, _ in priced)
        total_fees = sum(billed_amount(entry, code.rounded_to, rate) for entry, code, rate in priced)
        total_adjustments = sum(
            adj.signed_amount
            for adj in self.store.adjustments.list_by_invoice(invoice_id)
            if adj.state != AdjustmentState.VOID
        )
        starts = [entry.start.date() for entry, _, _ in priced]
        return InvoiceTotals(
            total_minutes=total_minutes,
            total_fees=total_fees,
            total_adjustments=total_adjustments,
            total_amount=total_fees + total_adjustments,
            period_start=min(starts) if starts else None,
            period_end=max(starts) if starts else None,
        )

    def recompute_totals(self, invoice_id: int) -> InvoiceTotals:
        totals = self.compute_totals(invoice_id)
        self.store.invoices.update_totals(invoice_id, totals)
        return totals

    def totals(self, invoice_id: int) -> InvoiceTotals:
        """Recompute, store and return an invoice's totals. Safe to call repeatedly."""
        with self.store.atomic():
            self._lock(invoice_id)
            return self.recompute_totals(invoice_id)

    def line_items(self, invoice_id: int) -> list[InvoiceLineItem]:
        self.get_invoice(invoice_id)
        return [
            InvoiceLineItem(
                entry_id=entry.id,
                employee_id=entry.employee_id,
                billing_code_id=code.id,
                billing_code=code.code,
                start=entry.start,
                notes=entry.notes,
                state=entry.state.value,
                billed_minutes=billed_minutes(entry, code.rounded_to),
                rate_amount=rate,
                fee=billed_amount(entry, code.rounded_to, rate),
            )
            for entry, code, rate in self._priced_entries(invoice_id)
        ]

    # -- state machine -----------------------------------------------------

    @staticmethod
    def _check_transition(invoice: Invoice, target: InvoiceState) -> None:
        if target not in INVOICE_TRANSITIONS[invoice.state]:
            logger.warning(
                "Rejected invoice transition: id=%s %s -> %s", invoice.id, invoice.state.value, target.value
            )
            raise InvalidTransitionError("Invoice", invoice.id, invoice.state.value, target.value)

    def _log_transition(
        self, event_type: str, before: Invoice, after: Invoice, actor_id: int | None, metadata: dict | None = None
    ) -> None:
        self.audit.record(event_type, after, actor=actor_id, before=before, metadata=metadata)

    def approve(self, invoice_id: int, actor_id: int | None = None) -> Invoice:
        with self.store.atomic():
            invoice = self._lock(invoice_id)
            self._check_transition(invoice, InvoiceState.APPROVED)
            before = invoice.model_copy()
            entries = self.store.entries.set_state_for_invoice(
                invoice_id, [EntryState.DRAFT], EntryState.APPROVED
            )
            self.store.adjustments.set_state_for_invoice(
                invoice_id, [AdjustmentState.DRAFT], AdjustmentState.APPROVED
            )
            invoice.state = InvoiceState.APPROVED
            invoice.accepted_at = _now()
            self.store.invoices.update_state(invoice)
            self.recompute_totals(invoice_id)
            invoice = self.get_invoice(invoice_id)
            self._log_transition(AuditEventType.INVOICE_APPROVE, before, invoice, actor_id, {"entries": entries})
        logger.info("Invoice approved: id=%s entries=%d", invoice_id, entries)
        return invoice

    def _store_artifact(self, invoice: Invoice) -> str:
        if self.storage is None:
            from timebill.storage.factory import get_storage

            self.storage = get_storage()
        project_name = ""
        if invoice.project_id is not None:
            project = self.store.projects.get_by_id(invoice.project_id)
            project_name = project.name if project else ""
        account = self.store.accounts.get_by_id(invoice.account_id)
        client_name = account.name if account else invoice.scope_label
        pdf_bytes = self.pdf_generator.generate(
            invoice, self.line_items(invoice.id), client_name=client_name, project_name=project_name
        )
        key = artifact_key(INVOICE_ARTIFACTS, invoice.uuid)
        try:
            path = self.storage.save(key, pdf_bytes)
        except Exception as exc:
            logger.error("Failed to store invoice %s artifact at %s: %s", invoice.uuid, key, exc)
            raise PersistenceError(f"Could not store invoice {invoice.uuid}: {exc}") from exc
        self.store.invoices.update_pdf_path(invoice.id, path)
        logger.info("PDF stored at %s for invoice %s", key, invoice.uuid)
        return path

    def send(self, invoice_id: int, actor_id: int | None = None) -> Invoice:
        with self.store.atomic():
            invoice = self._lock(invoice_id)
            self._check_transition(invoice, InvoiceState.SENT)
            before = invoice.model_copy()
            entries = self.store.entries.set_state_for_invoice(
                invoice_id, [EntryState.APPROVED], EntryState.SENT
            )
            self.store.adjustments.set_state_for_invoice(
                invoice_id, [AdjustmentState.APPROVED], AdjustmentState.SENT
            )
            now = _now()
            invoice.state = InvoiceState.SENT
            invoice.sent_at = now
            invoice.due_at = now + timedelta(days=settings.invoice_due_days)
            self.store.invoices.update_state(invoice)
            self.recompute_totals(invoice_id)
            path = self._store_artifact(self.get_invoice(invoice_id))
            invoice = self.get_invoice(invoice_id)
            self._log_transition(
                AuditEventType.INVOICE_SEND, before, invoice, actor_id, {"entries": entries, "pdf_path": path}
            )
        logger.info("Invoice sent: id=%s entries=%d due=%s", invoice_id, entries, invoice.due_at)
        return invoice

    def mark_paid(self, invoice_id: int, actor_id: int | None = None) -> Invoice:
        """Close the invoice as paid, generate payroll bills and queue post-payment work.

        Journal posting and commission computation are only enqueued here; a
        failure to process them later never affects the paid invoice.
        """
        with self.store.atomic():
            invoice = self._lock(invoice_id)
            self._check_transition(invoice, InvoiceState.PAID)
            before = invoice.model_copy()
            entries = self.store.entries.set_state_for_invoice(invoice_id, _LIVE_ENTRY_STATES, EntryState.PAID)
            invoice.state = InvoiceState.PAID
            invoice.closed_at = _now()
            self.store.invoices.update_state(invoice)
            totals = self.recompute_totals(invoice_id)
            bills = self.bill_service.generate_bills(invoice_id, actor_id=actor_id)
            bill_ids = [bill.id for bill in bills]
            self.store.outbox.enqueue(
                OutboxTask(
                    kind=OUTBOX_JOURNAL_POST,
                    payload={
                        "invoice_id": invoice_id,
                        "invoice_uuid": invoice.uuid,
                        "total_amount": totals.total_amount,
                    },
                )
            )
            self.store.outbox.enqueue(
                OutboxTask(kind=OUTBOX_COMMISSION_COMPUTE, payload={"invoice_id": invoice_id, "bill_ids": bill_ids})
            )
            invoice = self.get_invoice(invoice_id)
            self._log_transition(
                AuditEventType.INVOICE_PAID, before, invoice, actor_id, {"entries": entries, "bill_ids": bill_ids}
            )
        logger.info("Invoice paid: id=%s entries=%d bills=%s", invoice_id, entries, bill_ids)
        return invoice

    def void(self, invoice_id: int, actor_id: int | None = None) -> Invoice:
        """Void the invoice and every live entry and adjustment on it. Entries stay attached."""
        with self.store.atomic():
            invoice = self._lock(invoice_id)
            self._check_transition(invoice, InvoiceState.VOID)
            before = invoice.model_copy()
            entries = self.store.entries.set_state_for_invoice(invoice_id, _LIVE_ENTRY_STATES, EntryState.VOID)
            self.store.adjustments.set_state_for_invoice(invoice_id, _LIVE_ADJUSTMENT_STATES, AdjustmentState.VOID)
            invoice.state = InvoiceState.VOID
            invoice.closed_at = _now()
            self.store.invoices.update_state(invoice)
            self.recompute_totals(invoice_id)
            invoice = self.get_invoice(invoice_id)
            self._log_transition(AuditEventType.INVOICE_VOID, before, invoice, actor_id, {"entries": entries})
        logger.info("Invoice voided: id=%s entries=%d", invoice_id, entries)
        return invoice
