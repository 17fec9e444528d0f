from __future__ import annotations

import logging
from datetime import datetime

from timebill.constants import TZ
from timebill.errors import (
    ImmutableStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from timebill.models.audit_log import AuditEventType
from timebill.models.billing_code import BillingCode
from timebill.models.entry import Entry, EntryEdit, EntryState, JournalClass
from timebill.models.invoice import InvoiceState
from timebill.repositories.store import Store
from timebill.services.audit_serializers import serialize_entry
from timebill.services.audit_service import AuditService
from timebill.services.billing_code_service import BillingCodeService
from timebill.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)

# Re-opening (-> draft) is allowed from anywhere but paid.
ENTRY_TRANSITIONS: dict[EntryState, frozenset[EntryState]] = {
    EntryState.DRAFT: frozenset({EntryState.APPROVED, EntryState.VOID}),
    EntryState.APPROVED: frozenset({EntryState.VOID, EntryState.DRAFT}),
    EntryState.SENT: frozenset({EntryState.DRAFT}),
    EntryState.PAID: frozenset(),
    EntryState.VOID: frozenset({EntryState.DRAFT}),
}


def _wall_clock(value: datetime) -> datetime:
    """Normalise to a naive local timestamp truncated to the minute."""
    if value.tzinfo is not None:
        value = value.astimezone(TZ).replace(tzinfo=None)
    return value.replace(second=0, microsecond=0)


class EntryService:
    def __init__(
        self,
        store: Store,
        invoice_service: InvoiceService | None = None,
        billing_codes: BillingCodeService | None = None,
    ) -> None:
        self.store = store
        self.billing_codes = billing_codes or BillingCodeService(store)
        self.invoices = invoice_service or InvoiceService(store, billing_codes=self.billing_codes)
        self.audit = AuditService(store.audit_logs)

    def get_entry(self, entry_id: int) -> Entry:
        entry = self.store.entries.get_by_id(entry_id)
        if entry is None:
            raise NotFoundError("Entry", entry_id)
        return entry

    def get_linked(self, entry: Entry) -> Entry | None:
        if entry.linked_entry_id is None:
            return None
        return self.store.entries.get_by_id(entry.linked_entry_id)

    def list_for_employee(self, employee_id: int) -> list[Entry]:
        return self.store.entries.list_by_employee(employee_id, internal=False)

    def list_for_invoice(self, invoice_id: int) -> list[Entry]:
        return self.store.entries.list_by_invoice(invoice_id, internal=False)

    def _check_billable(self, code: BillingCode, start: datetime, end: datetime) -> None:
        if end <= start:
            raise ValidationError(f"Entry must end after it starts ({start:%Y-%m-%d %H:%M} - {end:%H:%M})")
        on = start.date()
        if not code.is_active(on):
            raise ValidationError(f"Billing code {code.code} is not active on {on}")
        try:
            self.billing_codes.effective_external_rate(code, on)
            self.billing_codes.effective_internal_rate(code, on)
        except NotFoundError as exc:
            raise ValidationError(f"Billing code {code.code} has no rate on {on}: {exc}") from exc

    def create_entry(
        self,
        billing_code_id: int,
        employee_id: int,
        start: datetime,
        end: datetime,
        notes: str = "",
        actor_id: int | None = None,
    ) -> tuple[Entry, Entry]:
        """Record time and its internal-cost twin, then attach both to the draft invoice.

        The project always comes from the billing code. Returns (entry, linked entry).
        """
        start, end = _wall_clock(start), _wall_clock(end)
        code = self.billing_codes.resolve(billing_code_id)
        if self.store.employees.get_by_id(employee_id) is None:
            raise NotFoundError("Employee", employee_id)
        self._check_billable(code, start, end)

        with self.store.atomic():
            entry = self.store.entries.create(
                Entry(
                    project_id=code.project_id,
                    employee_id=employee_id,
                    billing_code_id=billing_code_id,
                    start=start,
                    end=end,
                    notes=notes,
                    internal=False,
                    journal=JournalClass.RECEIVABLE,
                )
            )
            twin = self.store.entries.create(
                entry.model_copy(
                    update={"id": None, "uuid": "", "internal": True, "journal": JournalClass.INTERNAL_COST}
                )
            )
            # Neither row has an id before insert, so links are written in a second pass.
            self.store.entries.set_link(entry.id, twin.id)
            self.store.entries.set_link(twin.id, entry.id)
            self.invoices.associate_entries([self.get_entry(entry.id), self.get_entry(twin.id)], actor_id=actor_id)
            entry, twin = self.get_entry(entry.id), self.get_entry(twin.id)
            self.audit.record(AuditEventType.ENTRY_CREATE, entry, actor=actor_id, metadata={"linked_entry_id": twin.id})
        logger.info(
            "Entry created: id=%s linked=%s project=%s invoice=%s",
            entry.id,
            twin.id,
            entry.project_id,
            entry.invoice_id,
        )
        return entry, twin

    def _require_draft_invoice(self, entry: Entry) -> None:
        if entry.invoice_id is None:
            return
        invoice = self.store.invoices.lock(entry.invoice_id)
        if invoice is not None and invoice.state != InvoiceState.DRAFT:
            raise ImmutableStateError(
                "Entry", entry.id, entry.state.value, f"invoice {invoice.id} is {invoice.state.value}"
            )

    def edit_entry(self, entry_id: int, edit: EntryEdit, actor_id: int | None = None) -> Entry:
        """Change a draft entry and mirror the change onto its twin."""
        with self.store.atomic():
            entry = self.get_entry(entry_id)
            if entry.is_locked:
                logger.warning("Rejected edit of %s entry %s", entry.state.value, entry_id)
                raise ImmutableStateError("Entry", entry_id, entry.state.value)
            self._require_draft_invoice(entry)

            code = self.billing_codes.resolve(edit.billing_code_id or entry.billing_code_id)
            start = _wall_clock(edit.start) if edit.start is not None else entry.start
            end = _wall_clock(edit.end) if edit.end is not None else entry.end
            self._check_billable(code, start, end)
            changes = {
                "project_id": code.project_id,
                "billing_code_id": code.id,
                "start": start,
                "end": end,
                "notes": entry.notes if edit.notes is None else edit.notes,
            }

            before = serialize_entry(entry)
            entry = self.store.entries.update(entry.model_copy(update=changes))
            twin = self.get_linked(entry)
            if twin is not None:
                twin = self.store.entries.update(twin.model_copy(update=changes))
            self.invoices.associate_entries([e for e in (entry, twin) if e is not None], actor_id=actor_id)
            entry = self.get_entry(entry_id)
            self.audit.record(AuditEventType.ENTRY_UPDATE, entry, actor=actor_id, before=before)
        logger.info("Entry updated: id=%s linked=%s", entry_id, entry.linked_entry_id)
        return entry

    def transition_entry(self, entry_id: int, target: EntryState, actor_id: int | None = None) -> Entry:
        """Move an entry (and its twin) to ``target`` and recompute its invoice."""
        with self.store.atomic():
            entry = self.get_entry(entry_id)
            if target not in ENTRY_TRANSITIONS[entry.state]:
                logger.warning("Rejected entry transition: id=%s %s -> %s", entry_id, entry.state.value, target.value)
                raise InvalidTransitionError("Entry", entry_id, entry.state.value, target.value)
            if entry.invoice_id is not None:
                invoice = self.store.invoices.lock(entry.invoice_id)
                if invoice is not None and invoice.state in (InvoiceState.PAID, InvoiceState.VOID):
                    raise ImmutableStateError(
                        "Entry", entry_id, entry.state.value, f"invoice {invoice.id} is {invoice.state.value}"
                    )
                if target == EntryState.DRAFT:
                    self._require_draft_invoice(entry)

            ids = [entry_id] + ([entry.linked_entry_id] if entry.linked_entry_id is not None else [])
            before = serialize_entry(entry)
            self.store.entries.set_state(ids, target)
            if entry.invoice_id is not None:
                self.invoices.recompute_totals(entry.invoice_id)
            entry = self.get_entry(entry_id)
            self.audit.record(AuditEventType.ENTRY_TRANSITION, entry, actor=actor_id, before=before)
        logger.info("Entry transitioned: id=%s %s -> %s", entry_id, before["state"], target.value)
        return entry

    def delete_entry(self, entry_id: int, actor_id: int | None = None) -> None:
        """Hard-delete a draft entry together with its linked twin."""
        with self.store.atomic():
            entry = self.get_entry(entry_id)
            twin = self.get_linked(entry)
            for row in (entry, twin):
                if row is not None and row.state != EntryState.DRAFT:
                    raise ImmutableStateError("Entry", row.id, row.state.value)
            self._require_draft_invoice(entry)

            for row in (twin, entry):
                if row is not None and row.id is not None:
                    self.store.entries.delete(row.id)
            if entry.invoice_id is not None:
                self.invoices.recompute_totals(entry.invoice_id)
            self.audit.record(
                AuditEventType.ENTRY_DELETE,
                entry,
                actor=actor_id,
                removed=True,
                metadata={"linked_entry_id": twin.id if twin else None},
            )
        logger.info("Entry deleted: id=%s linked=%s", entry_id, twin.id if twin else None)

    def backfill_project(self, project_id: int, actor_id: int | None = None) -> int:
        """Attach every unassociated draft entry of a project to its draft invoice."""
        if self.store.projects.get_by_id(project_id) is None:
            raise NotFoundError("Project", project_id)
        with self.store.atomic():
            entries = self.store.entries.list_unassociated(project_id)
            if entries:
                self.invoices.associate_entries(entries, actor_id=actor_id)
        logger.info("Backfilled project %s: %d entries", project_id, len(entries))
        return len(entries)
