from __future__ import annotations

import questionary
from rich.console import Console
from rich.table import Table

from timebill.constants import INVOICE_STATE_LABELS, format_period
from timebill.errors import TimebillError
from timebill.models import format_usd
from timebill.models.invoice import Invoice, InvoiceState
from timebill.services.invoice_service import INVOICE_TRANSITIONS, InvoiceService

console = Console()

ACTIONS = {
    InvoiceState.APPROVED: "Approve",
    InvoiceState.SENT: "Send",
    InvoiceState.PAID: "Mark paid",
    InvoiceState.VOID: "Void",
}


def _invoice_label(invoice: Invoice) -> str:
    state = INVOICE_STATE_LABELS.get(invoice.state, invoice.state.value)
    return f"{invoice.id} - {invoice.scope_label} [{state}] {format_usd(invoice.total_amount)}"


def _show_invoice_detail(invoice: Invoice, invoice_service: InvoiceService) -> None:
    """Display an invoice's line items and totals."""
    table = Table(title=f"Invoice {invoice.uuid}")
    table.add_column("Date")
    table.add_column("Employee", justify="right")
    table.add_column("Code")
    table.add_column("Notes")
    table.add_column("Hours", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Fee", justify="right")

    for item in invoice_service.line_items(invoice.id):
        table.add_row(
            f"{item.start:%Y-%m-%d %H:%M}",
            str(item.employee_id),
            item.billing_code,
            item.notes,
            f"{item.billed_hours}",
            format_usd(item.rate_amount),
            format_usd(item.fee),
        )

    console.print(table)
    for adjustment in invoice.adjustments:
        console.print(
            f"  {adjustment.type.value.capitalize()}: {format_usd(adjustment.signed_amount)}"
            f" ({adjustment.state.value}) {adjustment.notes}"
        )
    console.print(f"  Period: {format_period(invoice.period_start, invoice.period_end) or '-'}")
    console.print(f"  Hours: {invoice.total_hours}")
    console.print(f"  Fees: {format_usd(invoice.total_fees)}")
    console.print(f"  Adjustments: {format_usd(invoice.total_adjustments)}")
    console.print(f"  [bold]Total: {format_usd(invoice.total_amount)}[/bold]")
    if invoice.due_at:
        console.print(f"  Due: {invoice.due_at:%Y-%m-%d}")
    if invoice.pdf_path:
        console.print(f"  PDF: {invoice.pdf_path}")


def _apply_action(
    invoice: Invoice, target: InvoiceState, invoice_service: InvoiceService, actor_id: int | None = None
) -> Invoice:
    handlers = {
        InvoiceState.APPROVED: invoice_service.approve,
        InvoiceState.SENT: invoice_service.send,
        InvoiceState.PAID: invoice_service.mark_paid,
        InvoiceState.VOID: invoice_service.void,
    }
    if target == InvoiceState.VOID:
        confirm = questionary.confirm(f"Void invoice {invoice.id} and all of its entries?", default=False).ask()
        if not confirm:
            return invoice
    try:
        updated = handlers[target](invoice.id, actor_id=actor_id)
    except TimebillError as exc:
        console.print(f"[red]{exc}[/red]")
        return invoice
    console.print(f"[green]Invoice {updated.id} is now {INVOICE_STATE_LABELS[updated.state]}.[/green]")
    return updated


def invoice_detail_menu(invoice: Invoice, invoice_service: InvoiceService, actor_id: int | None = None) -> None:
    while True:
        _show_invoice_detail(invoice, invoice_service)
        targets = [t for t in ACTIONS if t in INVOICE_TRANSITIONS[invoice.state]]
        choices = [ACTIONS[t] for t in targets] + ["Recompute totals", "Back"]
        action = questionary.select("Action:", choices=choices).ask()

        if action is None or action == "Back":
            return
        if action == "Recompute totals":
            try:
                invoice_service.totals(invoice.id)
            except TimebillError as exc:
                console.print(f"[red]{exc}[/red]")
        else:
            target = next(t for t in targets if ACTIONS[t] == action)
            invoice = _apply_action(invoice, target, invoice_service, actor_id)
        invoice = invoice_service.get_invoice(invoice.id)


def list_invoices_menu(
    invoice_service: InvoiceService, drafts_only: bool = False, actor_id: int | None = None
) -> None:
    if drafts_only:
        invoices = invoice_service.list_drafts()
    else:
        invoices = invoice_service.list_by_state(list(InvoiceState))

    if not invoices:
        console.print("[yellow]No invoices found.[/yellow]")
        return

    choices = [_invoice_label(inv) for inv in invoices] + ["Back"]
    choice = questionary.select("Select an invoice:", choices=choices).ask()
    if choice is None or choice == "Back":
        return

    invoice_id = int(choice.split(" - ")[0])
    try:
        invoice = invoice_service.get_invoice(invoice_id)
    except TimebillError as exc:
        console.print(f"[red]{exc}[/red]")
        return
    invoice_detail_menu(invoice, invoice_service, actor_id)
