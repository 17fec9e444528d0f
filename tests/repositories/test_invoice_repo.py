from datetime import date, datetime

import pytest

from timebill.errors import ConcurrentModificationError
from timebill.models.adjustment import Adjustment, AdjustmentState, AdjustmentType
from timebill.models.invoice import Invoice, InvoiceState, InvoiceTotals


@pytest.fixture()
def draft(store, catalog):
    return store.invoices.create_draft(
        Invoice(project_id=catalog.project.id, account_id=catalog.account.id), f"AR:project:{catalog.project.id}"
    )


class TestCreateDraft:
    def test_creates_draft_with_zero_totals(self, draft, catalog):
        assert draft.id is not None
        assert draft.state == InvoiceState.DRAFT
        assert draft.project_id == catalog.project.id
        assert draft.total_amount == 0
        assert draft.entries == []
        assert draft.adjustments == []

    def test_duplicate_key_returns_none(self, store, draft, catalog):
        again = store.invoices.create_draft(
            Invoice(project_id=catalog.project.id, account_id=catalog.account.id), f"AR:project:{catalog.project.id}"
        )
        assert again is None

    def test_find_open_draft(self, store, draft, catalog):
        found = store.invoices.find_open_draft(f"AR:project:{catalog.project.id}")
        assert found.id == draft.id
        assert store.invoices.find_open_draft("AR:project:999") is None

    def test_get_by_uuid(self, store, draft):
        assert store.invoices.get_by_uuid(draft.uuid).id == draft.id
        assert store.invoices.get_by_uuid("missing") is None


class TestUpdateState:
    def test_clears_draft_key(self, store, draft, catalog):
        draft.state = InvoiceState.APPROVED
        draft.accepted_at = datetime(2024, 3, 31, 12, 0)
        updated = store.invoices.update_state(draft)
        assert updated.state == InvoiceState.APPROVED
        assert updated.version == 1
        assert updated.accepted_at == datetime(2024, 3, 31, 12, 0)
        assert store.invoices.find_open_draft(f"AR:project:{catalog.project.id}") is None

        replacement = store.invoices.create_draft(
            Invoice(project_id=catalog.project.id, account_id=catalog.account.id), f"AR:project:{catalog.project.id}"
        )
        assert replacement is not None
        assert replacement.id != draft.id

    def test_stale_version_raises(self, store, draft):
        store.invoices.update_state(draft.model_copy(update={"state": InvoiceState.APPROVED}))
        with pytest.raises(ConcurrentModificationError):
            store.invoices.update_state(draft.model_copy(update={"state": InvoiceState.VOID}))


class TestTotalsAndListing:
    def test_update_totals(self, store, draft):
        totals = InvoiceTotals(
            total_minutes=120,
            total_fees=20000,
            total_adjustments=-500,
            total_amount=19500,
            period_start=date(2024, 3, 4),
            period_end=date(2024, 3, 8),
        )
        store.invoices.update_totals(draft.id, totals)
        invoice = store.invoices.get_by_id(draft.id)
        assert invoice.total_minutes == 120
        assert invoice.total_amount == 19500
        assert invoice.period_start == date(2024, 3, 4)
        assert invoice.period_end == date(2024, 3, 8)

    def test_update_pdf_path(self, store, draft):
        store.invoices.update_pdf_path(draft.id, "/artifacts/a.pdf")
        assert store.invoices.get_by_id(draft.id).pdf_path == "/artifacts/a.pdf"

    def test_list_by_state_loads_children(self, store, draft, sample_entry, catalog):
        entry = store.entries.create(sample_entry(invoice_id=draft.id))
        store.entries.create(sample_entry(invoice_id=draft.id, internal=True))
        store.adjustments.create(Adjustment(invoice_id=draft.id, type=AdjustmentType.CREDIT, amount=500))

        invoices = store.invoices.list_by_state([InvoiceState.DRAFT])
        assert [i.id for i in invoices] == [draft.id]
        assert [e.id for e in invoices[0].entries] == [entry.id]
        assert invoices[0].adjustments[0].signed_amount == -500
        assert store.invoices.list_by_state([InvoiceState.PAID]) == []

    def test_lock_returns_invoice(self, store, draft):
        assert store.invoices.lock(draft.id).id == draft.id
        assert store.invoices.lock(999) is None


class TestAdjustmentRepo:
    def test_crud(self, store, draft):
        adjustment = store.adjustments.create(Adjustment(invoice_id=draft.id, amount=5000, notes="Setup fee"))
        assert adjustment.state == AdjustmentState.DRAFT
        updated = store.adjustments.update(adjustment.model_copy(update={"amount": 6000}))
        assert updated.amount == 6000
        assert [a.id for a in store.adjustments.list_by_invoice(draft.id)] == [adjustment.id]
        store.adjustments.delete(adjustment.id)
        assert store.adjustments.get_by_id(adjustment.id) is None

    def test_set_state_for_invoice(self, store, draft):
        first = store.adjustments.create(Adjustment(invoice_id=draft.id, amount=100))
        second = store.adjustments.create(Adjustment(invoice_id=draft.id, amount=200, state=AdjustmentState.VOID))
        changed = store.adjustments.set_state_for_invoice(
            draft.id, [AdjustmentState.DRAFT], AdjustmentState.APPROVED
        )
        assert changed == 1
        assert store.adjustments.get_by_id(first.id).state == AdjustmentState.APPROVED
        assert store.adjustments.get_by_id(second.id).state == AdjustmentState.VOID
