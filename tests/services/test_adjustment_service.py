from datetime import datetime

import pytest

from timebill.errors import ImmutableStateError, InvalidTransitionError, NotFoundError, ValidationError
from timebill.models.adjustment import AdjustmentState, AdjustmentType


@pytest.fixture()
def invoice_id(services, catalog):
    entry, _ = services.entries.create_entry(
        catalog.code.id, catalog.employee.id, datetime(2024, 3, 4, 9, 0), datetime(2024, 3, 4, 11, 0)
    )
    return entry.invoice_id


class TestCreateAdjustment:
    def test_fee_added_to_total(self, services, invoice_id):
        adjustment = services.adjustments.create_adjustment(invoice_id, AdjustmentType.FEE, 5000, "Travel")
        assert adjustment.state == AdjustmentState.DRAFT
        assert services.invoices.get_invoice(invoice_id).total_amount == 25000

    def test_amount_must_be_positive(self, services, invoice_id):
        with pytest.raises(ValidationError):
            services.adjustments.create_adjustment(invoice_id, AdjustmentType.CREDIT, 0)

    def test_invoice_must_be_draft(self, services, invoice_id):
        services.invoices.approve(invoice_id)
        with pytest.raises(ImmutableStateError):
            services.adjustments.create_adjustment(invoice_id, AdjustmentType.FEE, 100)

    def test_unknown_invoice(self, services, catalog):
        with pytest.raises(NotFoundError):
            services.adjustments.create_adjustment(99, AdjustmentType.FEE, 100)


class TestEditAdjustment:
    def test_switch_to_credit(self, services, invoice_id):
        adjustment = services.adjustments.create_adjustment(invoice_id, AdjustmentType.FEE, 5000)
        services.adjustments.edit_adjustment(adjustment.id, adjustment_type=AdjustmentType.CREDIT, amount=1000)
        invoice = services.invoices.get_invoice(invoice_id)
        assert invoice.total_adjustments == -1000
        assert invoice.total_amount == 19000

    def test_approved_adjustment_is_locked(self, services, invoice_id):
        adjustment = services.adjustments.create_adjustment(invoice_id, AdjustmentType.FEE, 5000)
        services.invoices.approve(invoice_id)
        with pytest.raises(ImmutableStateError):
            services.adjustments.edit_adjustment(adjustment.id, amount=1)
        with pytest.raises(ImmutableStateError):
            services.adjustments.delete_adjustment(adjustment.id)


class TestTransitionAdjustment:
    def test_void_excluded_from_totals(self, services, invoice_id):
        adjustment = services.adjustments.create_adjustment(invoice_id, AdjustmentType.FEE, 5000)
        services.adjustments.transition_adjustment(adjustment.id, AdjustmentState.VOID)
        assert services.invoices.get_invoice(invoice_id).total_adjustments == 0

    def test_draft_cannot_jump_to_sent(self, services, invoice_id):
        adjustment = services.adjustments.create_adjustment(invoice_id, AdjustmentType.FEE, 5000)
        with pytest.raises(InvalidTransitionError):
            services.adjustments.transition_adjustment(adjustment.id, AdjustmentState.SENT)

    def test_reopen_needs_draft_invoice(self, services, invoice_id):
        adjustment = services.adjustments.create_adjustment(invoice_id, AdjustmentType.FEE, 5000)
        services.invoices.approve(invoice_id)
        with pytest.raises(ImmutableStateError):
            services.adjustments.transition_adjustment(adjustment.id, AdjustmentState.DRAFT)

    def test_closed_invoice_blocks_changes(self, services, invoice_id):
        adjustment = services.adjustments.create_adjustment(invoice_id, AdjustmentType.FEE, 5000)
        services.invoices.void(invoice_id)
        with pytest.raises(ImmutableStateError):
            services.adjustments.transition_adjustment(adjustment.id, AdjustmentState.DRAFT)


class TestDeleteAdjustment:
    def test_delete_recomputes(self, services, store, invoice_id):
        adjustment = services.adjustments.create_adjustment(invoice_id, AdjustmentType.FEE, 5000)
        services.adjustments.delete_adjustment(adjustment.id)
        assert services.adjustments.list_for_invoice(invoice_id) == []
        assert services.invoices.get_invoice(invoice_id).total_amount == 20000
        events = [log.event_type for log in store.audit_logs.list_by_entity("adjustment", adjustment.id)]
        assert events == ["adjustment.delete", "adjustment.create"]
