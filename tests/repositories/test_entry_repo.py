from datetime import datetime

import pytest

from timebill.errors import ConcurrentModificationError
from timebill.models.entry import EntryState, JournalClass


@pytest.fixture()
def make_entry(store, catalog, sample_entry):
    def _make(**overrides):
        fields = dict(
            project_id=catalog.project.id,
            employee_id=catalog.employee.id,
            billing_code_id=catalog.code.id,
        )
        fields.update(overrides)
        return store.entries.create(sample_entry(**fields))

    return _make


class TestEntryRepo:
    def test_create_and_get(self, store, make_entry):
        entry = make_entry()
        fetched = store.entries.get_by_id(entry.id)
        assert fetched.start == datetime(2024, 3, 4, 9, 0)
        assert fetched.end == datetime(2024, 3, 4, 11, 0)
        assert fetched.state == EntryState.DRAFT
        assert fetched.journal == JournalClass.RECEIVABLE
        assert fetched.version == 0

    def test_set_link_both_ways(self, store, make_entry):
        entry = make_entry()
        twin = make_entry(internal=True, journal=JournalClass.INTERNAL_COST)
        store.entries.set_link(entry.id, twin.id)
        store.entries.set_link(twin.id, entry.id)
        assert store.entries.get_by_id(entry.id).linked_entry_id == twin.id
        assert store.entries.get_by_id(twin.id).linked_entry_id == entry.id

    def test_delete_clears_back_reference(self, store, make_entry):
        entry = make_entry()
        twin = make_entry(internal=True)
        store.entries.set_link(entry.id, twin.id)
        store.entries.set_link(twin.id, entry.id)
        store.entries.delete(entry.id)
        assert store.entries.get_by_id(entry.id) is None
        assert store.entries.get_by_id(twin.id).linked_entry_id is None

    def test_update_bumps_version(self, store, make_entry):
        entry = make_entry()
        updated = store.entries.update(entry.model_copy(update={"notes": "Changed"}))
        assert updated.notes == "Changed"
        assert updated.version == 1

    def test_stale_update_raises(self, store, make_entry):
        entry = make_entry()
        store.entries.update(entry.model_copy(update={"notes": "First"}))
        with pytest.raises(ConcurrentModificationError):
            store.entries.update(entry.model_copy(update={"notes": "Second"}))

    def test_set_state_returns_rowcount(self, store, make_entry):
        ids = [make_entry().id, make_entry().id]
        assert store.entries.set_state(ids, EntryState.APPROVED) == 2
        assert store.entries.set_state([], EntryState.APPROVED) == 0
        assert all(store.entries.get_by_id(i).state == EntryState.APPROVED for i in ids)

    def test_list_by_employee_excludes_internal(self, store, catalog, make_entry):
        make_entry()
        make_entry(internal=True)
        assert len(store.entries.list_by_employee(catalog.employee.id)) == 1
        assert len(store.entries.list_by_employee(catalog.employee.id, internal=True)) == 1

    def test_list_unassociated(self, store, catalog, make_entry):
        entry = make_entry()
        make_entry(state=EntryState.APPROVED)
        assert [e.id for e in store.entries.list_unassociated(catalog.project.id)] == [entry.id]

    def test_has_entries(self, store, catalog, make_entry):
        assert store.entries.has_entries(catalog.code.id) is False
        make_entry()
        assert store.entries.has_entries(catalog.code.id) is True
        assert store.entries.has_entries(catalog.code.id, posted_only=True) is False
        make_entry(state=EntryState.SENT)
        assert store.entries.has_entries(catalog.code.id, posted_only=True) is True

    def test_list_by_invoice_ordered_by_start(self, store, services, catalog, make_entry):
        invoice = services.invoices.find_or_create_draft_invoice(catalog.project.id)
        late = make_entry(start=datetime(2024, 3, 5, 9, 0), end=datetime(2024, 3, 5, 10, 0))
        early = make_entry()
        twin = make_entry(internal=True)
        store.entries.set_invoice([late.id, early.id, twin.id], invoice.id)
        assert [e.id for e in store.entries.list_by_invoice(invoice.id)] == [early.id, late.id]
        assert len(store.entries.list_by_invoice(invoice.id, internal=None)) == 3
        assert [e.id for e in store.entries.list_by_invoice(invoice.id, internal=True)] == [twin.id]

    def test_set_state_for_invoice_filters_source_states(self, store, services, catalog, make_entry):
        invoice = services.invoices.find_or_create_draft_invoice(catalog.project.id)
        draft = make_entry()
        void = make_entry(state=EntryState.VOID)
        store.entries.set_invoice([draft.id, void.id], invoice.id)
        changed = store.entries.set_state_for_invoice(invoice.id, [EntryState.DRAFT], EntryState.APPROVED)
        assert changed == 1
        assert store.entries.get_by_id(void.id).state == EntryState.VOID
