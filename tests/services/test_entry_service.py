from datetime import datetime, timezone

import pytest
from freezegun import freeze_time

from timebill.errors import ImmutableStateError, InvalidTransitionError, NotFoundError, ValidationError
from timebill.models.entry import Entry, EntryEdit, EntryState, JournalClass


def _log(services, catalog, start=datetime(2024, 3, 4, 9, 0), end=datetime(2024, 3, 4, 11, 0), notes=""):
    return services.entries.create_entry(catalog.code.id, catalog.employee.id, start, end, notes)


class TestCreateEntry:
    def test_twin_is_linked_both_ways(self, services, catalog):
        entry, twin = _log(services, catalog)
        assert entry.linked_entry_id == twin.id
        assert twin.linked_entry_id == entry.id
        assert entry.internal is False
        assert entry.journal == JournalClass.RECEIVABLE
        assert twin.internal is True
        assert twin.journal == JournalClass.INTERNAL_COST

    def test_twin_copies_time_and_invoice(self, services, catalog):
        entry, twin = _log(services, catalog, notes="Kickoff")
        assert (twin.start, twin.end, twin.notes) == (entry.start, entry.end, "Kickoff")
        assert entry.invoice_id is not None
        assert twin.invoice_id == entry.invoice_id

    def test_project_comes_from_code(self, services, catalog):
        entry, _ = _log(services, catalog)
        assert entry.project_id == catalog.project.id

    def test_invoice_totals_updated(self, services, catalog):
        entry, _ = _log(services, catalog)
        invoice = services.invoices.get_invoice(entry.invoice_id)
        assert invoice.total_minutes == 120
        assert invoice.total_fees == 20000
        assert [e.id for e in invoice.entries] == [entry.id]

    def test_entries_share_the_draft_invoice(self, services, catalog):
        first, _ = _log(services, catalog)
        second, _ = _log(services, catalog, datetime(2024, 3, 5, 9, 0), datetime(2024, 3, 5, 12, 0))
        assert first.invoice_id == second.invoice_id
        assert services.invoices.get_invoice(first.invoice_id).total_fees == 50000

    def test_seconds_are_dropped_and_timezone_normalised(self, services, catalog):
        entry, _ = _log(
            services,
            catalog,
            datetime(2024, 3, 4, 9, 0, 45, tzinfo=timezone.utc),
            datetime(2024, 3, 4, 10, 30, 10, tzinfo=timezone.utc),
        )
        assert entry.start == datetime(2024, 3, 4, 9, 0)
        assert entry.duration_minutes == 90

    def test_end_before_start(self, services, catalog):
        with pytest.raises(ValidationError):
            _log(services, catalog, datetime(2024, 3, 4, 11, 0), datetime(2024, 3, 4, 9, 0))

    def test_inactive_code(self, services, catalog):
        with pytest.raises(ValidationError, match="not active"):
            _log(services, catalog, datetime(2025, 1, 2, 9, 0), datetime(2025, 1, 2, 10, 0))

    @freeze_time("2026-10-19")
    def test_back_dated_time_inside_code_window(self, services, catalog):
        entry, _ = _log(services, catalog)
        assert entry.start == datetime(2024, 3, 4, 9, 0)
        assert entry.state == EntryState.DRAFT

    @freeze_time("2024-06-01")
    def test_activity_follows_entry_start_not_today(self, services, catalog):
        with pytest.raises(ValidationError, match="not active on 2025-01-02"):
            _log(services, catalog, datetime(2025, 1, 2, 9, 0), datetime(2025, 1, 2, 10, 0))

    def test_unknown_employee(self, services, catalog):
        with pytest.raises(NotFoundError):
            services.entries.create_entry(catalog.code.id, 99, datetime(2024, 3, 4, 9), datetime(2024, 3, 4, 10))

    def test_audit_records_twin(self, services, store, catalog):
        entry, twin = _log(services, catalog)
        log = store.audit_logs.list_by_entity("entry", entry.id)[0]
        assert log.event_type == "entry.create"
        assert log.metadata == {"linked_entry_id": twin.id}


class TestRounding:
    def test_exact_increment_unchanged(self, services, catalog):
        entry, _ = _log(services, catalog, datetime(2024, 3, 4, 9, 0), datetime(2024, 3, 4, 10, 30))
        item = services.invoices.line_items(entry.invoice_id)[0]
        assert item.billed_minutes == 90
        assert item.fee == 15000

    def test_partial_increment_rounds_up(self, services, catalog):
        entry, _ = _log(services, catalog, datetime(2024, 3, 4, 9, 0), datetime(2024, 3, 4, 10, 7))
        item = services.invoices.line_items(entry.invoice_id)[0]
        assert item.billed_minutes == 75
        assert item.fee == 12500


class TestEditEntry:
    def test_edit_mirrors_onto_twin(self, services, catalog):
        entry, twin = _log(services, catalog)
        edited = services.entries.edit_entry(entry.id, EntryEdit(end=datetime(2024, 3, 4, 12, 0), notes="Longer"))
        twin = services.entries.get_entry(twin.id)
        assert edited.end == datetime(2024, 3, 4, 12, 0)
        assert twin.end == edited.end
        assert twin.notes == "Longer"
        assert services.invoices.get_invoice(entry.invoice_id).total_fees == 30000

    @pytest.mark.parametrize("state", [EntryState.APPROVED, EntryState.SENT, EntryState.PAID, EntryState.VOID])
    def test_locked_states_reject_edits(self, services, store, catalog, state):
        entry, _ = _log(services, catalog)
        store.entries.set_state([entry.id], state)
        with pytest.raises(ImmutableStateError):
            services.entries.edit_entry(entry.id, EntryEdit(notes="Nope"))
        assert services.entries.get_entry(entry.id).notes == ""

    def test_draft_entry_on_approved_invoice(self, services, store, catalog):
        entry, _ = _log(services, catalog)
        services.invoices.approve(entry.invoice_id)
        store.entries.set_state([entry.id], EntryState.DRAFT)
        with pytest.raises(ImmutableStateError, match="invoice"):
            services.entries.edit_entry(entry.id, EntryEdit(notes="Nope"))

    def test_invalid_window_rolls_back(self, services, catalog):
        entry, _ = _log(services, catalog)
        with pytest.raises(ValidationError):
            services.entries.edit_entry(entry.id, EntryEdit(end=datetime(2024, 3, 4, 8, 0)))
        assert services.entries.get_entry(entry.id).end == datetime(2024, 3, 4, 11, 0)


class TestTransitionEntry:
    def test_approve_moves_twin(self, services, catalog):
        entry, twin = _log(services, catalog)
        services.entries.transition_entry(entry.id, EntryState.APPROVED)
        assert services.entries.get_entry(twin.id).state == EntryState.APPROVED

    def test_void_drops_from_totals(self, services, catalog):
        entry, _ = _log(services, catalog)
        services.entries.transition_entry(entry.id, EntryState.VOID)
        assert services.invoices.get_invoice(entry.invoice_id).total_fees == 0

    def test_reopen_void_entry(self, services, catalog):
        entry, _ = _log(services, catalog)
        services.entries.transition_entry(entry.id, EntryState.VOID)
        reopened = services.entries.transition_entry(entry.id, EntryState.DRAFT)
        assert reopened.state == EntryState.DRAFT
        assert services.invoices.get_invoice(entry.invoice_id).total_fees == 20000

    def test_sent_only_through_invoice(self, services, catalog):
        entry, _ = _log(services, catalog)
        with pytest.raises(InvalidTransitionError):
            services.entries.transition_entry(entry.id, EntryState.SENT)

    def test_paid_is_final(self, services, store, catalog):
        entry, _ = _log(services, catalog)
        store.entries.set_state([entry.id], EntryState.PAID)
        with pytest.raises(InvalidTransitionError):
            services.entries.transition_entry(entry.id, EntryState.DRAFT)

    def test_closed_invoice_blocks_transition(self, services, catalog):
        entry, _ = _log(services, catalog)
        services.invoices.void(entry.invoice_id)
        with pytest.raises(ImmutableStateError):
            services.entries.transition_entry(entry.id, EntryState.DRAFT)


class TestDeleteEntry:
    def test_deletes_twin_and_updates_totals(self, services, catalog):
        entry, twin = _log(services, catalog)
        services.entries.delete_entry(entry.id)
        with pytest.raises(NotFoundError):
            services.entries.get_entry(entry.id)
        with pytest.raises(NotFoundError):
            services.entries.get_entry(twin.id)
        assert services.invoices.get_invoice(entry.invoice_id).total_minutes == 0

    def test_approved_entry_cannot_be_deleted(self, services, catalog):
        entry, _ = _log(services, catalog)
        services.entries.transition_entry(entry.id, EntryState.APPROVED)
        with pytest.raises(ImmutableStateError):
            services.entries.delete_entry(entry.id)
        assert services.entries.get_entry(entry.id).state == EntryState.APPROVED


class TestBackfillProject:
    def test_attaches_unassociated_entries(self, services, store, catalog):
        with store.atomic():
            orphan = store.entries.create(
                Entry(
                    project_id=catalog.project.id,
                    employee_id=catalog.employee.id,
                    billing_code_id=catalog.code.id,
                    start=datetime(2024, 3, 6, 9, 0),
                    end=datetime(2024, 3, 6, 10, 0),
                )
            )
        assert services.entries.backfill_project(catalog.project.id) == 1
        attached = services.entries.get_entry(orphan.id)
        assert attached.invoice_id is not None
        assert services.invoices.get_invoice(attached.invoice_id).total_fees == 10000
        assert services.entries.backfill_project(catalog.project.id) == 0

    def test_unknown_project(self, services):
        with pytest.raises(NotFoundError):
            services.entries.backfill_project(99)
