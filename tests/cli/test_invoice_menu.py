from unittest.mock import MagicMock, patch

from timebill.errors import InvalidTransitionError
from timebill.models.invoice import Invoice, InvoiceState


def _invoice(**overrides) -> Invoice:
    fields = dict(id=1, uuid="inv-uuid", project_id=2, account_id=1, total_amount=20000)
    fields.update(overrides)
    return Invoice(**fields)


def _service(invoice: Invoice) -> MagicMock:
    service = MagicMock()
    service.get_invoice.return_value = invoice
    service.line_items.return_value = []
    return service


class TestInvoiceLabel:
    def test_label(self):
        from timebill.cli.invoice_menu import _invoice_label

        assert _invoice_label(_invoice()) == "1 - project 2 [Draft] $200.00"


class TestListInvoicesMenu:
    @patch("timebill.cli.invoice_menu.questionary")
    def test_empty(self, mock_q):
        from timebill.cli.invoice_menu import list_invoices_menu

        service = MagicMock()
        service.list_drafts.return_value = []
        list_invoices_menu(service, drafts_only=True)
        mock_q.select.assert_not_called()

    @patch("timebill.cli.invoice_menu.questionary")
    def test_back(self, mock_q):
        from timebill.cli.invoice_menu import list_invoices_menu

        service = MagicMock()
        service.list_by_state.return_value = [_invoice()]
        mock_q.select.return_value.ask.return_value = "Back"
        list_invoices_menu(service)
        service.get_invoice.assert_not_called()

    @patch("timebill.cli.invoice_menu.invoice_detail_menu")
    @patch("timebill.cli.invoice_menu.questionary")
    def test_select_opens_detail(self, mock_q, mock_detail):
        from timebill.cli.invoice_menu import _invoice_label, list_invoices_menu

        invoice = _invoice()
        service = _service(invoice)
        service.list_drafts.return_value = [invoice]
        mock_q.select.return_value.ask.return_value = _invoice_label(invoice)
        list_invoices_menu(service, drafts_only=True, actor_id=3)
        service.get_invoice.assert_called_once_with(1)
        mock_detail.assert_called_once_with(invoice, service, 3)


class TestInvoiceDetailMenu:
    @patch("timebill.cli.invoice_menu.questionary")
    def test_draft_offers_approve_and_void(self, mock_q):
        from timebill.cli.invoice_menu import invoice_detail_menu

        mock_q.select.return_value.ask.return_value = "Back"
        invoice_detail_menu(_invoice(), _service(_invoice()))
        choices = mock_q.select.call_args.kwargs["choices"]
        assert choices == ["Approve", "Void", "Recompute totals", "Back"]

    @patch("timebill.cli.invoice_menu.questionary")
    def test_paid_offers_no_transitions(self, mock_q):
        from timebill.cli.invoice_menu import invoice_detail_menu

        paid = _invoice(state=InvoiceState.PAID)
        mock_q.select.return_value.ask.return_value = None
        invoice_detail_menu(paid, _service(paid))
        assert mock_q.select.call_args.kwargs["choices"] == ["Recompute totals", "Back"]

    @patch("timebill.cli.invoice_menu.questionary")
    def test_approve_passes_actor(self, mock_q):
        from timebill.cli.invoice_menu import invoice_detail_menu

        invoice = _invoice()
        service = _service(invoice)
        service.approve.return_value = _invoice(state=InvoiceState.APPROVED)
        mock_q.select.return_value.ask.side_effect = ["Approve", "Back"]
        invoice_detail_menu(invoice, service, actor_id=5)
        service.approve.assert_called_once_with(1, actor_id=5)

    @patch("timebill.cli.invoice_menu.questionary")
    def test_void_requires_confirmation(self, mock_q):
        from timebill.cli.invoice_menu import invoice_detail_menu

        invoice = _invoice()
        service = _service(invoice)
        mock_q.select.return_value.ask.side_effect = ["Void", "Back"]
        mock_q.confirm.return_value.ask.return_value = False
        invoice_detail_menu(invoice, service)
        service.void.assert_not_called()

    @patch("timebill.cli.invoice_menu.questionary")
    def test_rejected_transition_is_reported(self, mock_q):
        from timebill.cli.invoice_menu import invoice_detail_menu

        invoice = _invoice()
        service = _service(invoice)
        service.approve.side_effect = InvalidTransitionError("Invoice", 1, "draft", "approved")
        mock_q.select.return_value.ask.side_effect = ["Approve", "Back"]
        invoice_detail_menu(invoice, service)
        service.approve.assert_called_once()

    @patch("timebill.cli.invoice_menu.questionary")
    def test_recompute_totals(self, mock_q):
        from timebill.cli.invoice_menu import invoice_detail_menu

        invoice = _invoice()
        service = _service(invoice)
        mock_q.select.return_value.ask.side_effect = ["Recompute totals", "Back"]
        invoice_detail_menu(invoice, service)
        service.totals.assert_called_once_with(1)
