from decimal import Decimal

from timebill.models.adjustment import Adjustment, AdjustmentState, AdjustmentType
from timebill.models.invoice import Invoice, InvoiceState, InvoiceTotals, InvoiceType


class TestInvoice:
    def test_defaults(self):
        invoice = Invoice(project_id=1, account_id=1)
        assert invoice.type == InvoiceType.AR
        assert invoice.state == InvoiceState.DRAFT
        assert invoice.total_amount == 0
        assert invoice.entries == []
        assert invoice.adjustments == []
        assert invoice.pdf_path is None

    def test_total_hours(self):
        assert Invoice(account_id=1, total_minutes=90).total_hours == Decimal("1.50")
        assert Invoice(account_id=1, total_minutes=20).total_hours == Decimal("0.33")

    def test_scope_label(self):
        assert Invoice(project_id=3, account_id=1).scope_label == "project 3"
        assert Invoice(project_id=None, account_id=1).scope_label == "account 1"


class TestInvoiceTotals:
    def test_total_hours(self):
        assert InvoiceTotals(total_minutes=300).total_hours == Decimal("5.00")


class TestAdjustment:
    def test_defaults(self):
        adjustment = Adjustment(invoice_id=1, amount=5000)
        assert adjustment.type == AdjustmentType.FEE
        assert adjustment.state == AdjustmentState.DRAFT

    def test_fee_is_positive(self):
        assert Adjustment(invoice_id=1, amount=5000).signed_amount == 5000

    def test_credit_is_negative(self):
        assert Adjustment(invoice_id=1, amount=5000, type=AdjustmentType.CREDIT).signed_amount == -5000
