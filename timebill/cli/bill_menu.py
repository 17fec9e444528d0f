from __future__ import annotations

import questionary
from rich.console import Console
from rich.table import Table

from timebill.constants import ADJUSTMENT_TYPE_LABELS, BILL_STATE_LABELS, format_period
from timebill.errors import TimebillError
from timebill.models import format_usd, parse_usd
from timebill.models.adjustment import AdjustmentType
from timebill.models.bill import Bill, BillState
from timebill.services.bill_service import BillService

console = Console()


def _bill_label(bill: Bill) -> str:
    state = BILL_STATE_LABELS.get(bill.state, bill.state.value)
    period = format_period(bill.period_start, bill.period_end)
    return f"{bill.id} - employee {bill.employee_id} {period} [{state}] {format_usd(bill.total_amount)}"


def _show_bill_detail(bill: Bill, bill_service: BillService) -> None:
    """Display a bill's entries and totals."""
    table = Table(title=f"Bill {bill.uuid}")
    table.add_column("Start")
    table.add_column("Notes")
    table.add_column("Hours", justify="right")
    table.add_column("State")

    for entry in bill_service.list_entries(bill.id):
        table.add_row(
            f"{entry.start:%Y-%m-%d %H:%M}",
            entry.notes,
            f"{entry.duration_minutes / 60:.2f}",
            entry.state.value,
        )

    console.print(table)
    for adjustment in bill_service.list_adjustments(bill.id):
        if not adjustment.void:
            label = ADJUSTMENT_TYPE_LABELS.get(adjustment.type, adjustment.type.value)
            console.print(f"  {label}: {format_usd(adjustment.signed_amount)} {adjustment.notes}")
    console.print(f"  Hours: {bill.total_hours}")
    console.print(f"  Fees: {format_usd(bill.total_fees)}")
    console.print(f"  Adjustments: {format_usd(bill.total_adjustments)}")
    console.print(f"  [bold]Total: {format_usd(bill.total_amount)}[/bold]")
    if bill.pdf_path:
        console.print(f"  PDF: {bill.pdf_path}")


def add_adjustment_menu(bill: Bill, bill_service: BillService, actor_id: int | None = None) -> None:
    kind = questionary.select("Type:", choices=["Fee", "Credit"]).ask()
    if kind is None:
        return
    amount = parse_usd(questionary.text("Amount (e.g. 150.00):").ask() or "")
    if amount is None or amount <= 0:
        console.print("[red]Invalid amount.[/red]")
        return
    notes = questionary.text("Notes:").ask() or ""
    adjustment_type = AdjustmentType.FEE if kind == "Fee" else AdjustmentType.CREDIT
    bill_service.add_adjustment(bill.id, adjustment_type, amount, notes, actor_id=actor_id)
    console.print("[green]Adjustment added.[/green]")


def bill_detail_menu(bill: Bill, bill_service: BillService, actor_id: int | None = None) -> None:
    while True:
        _show_bill_detail(bill, bill_service)
        if bill.state == BillState.DRAFT:
            choices = ["Mark paid", "Void", "Regenerate", "Add adjustment", "Render PDF", "Back"]
        else:
            choices = ["Render PDF", "Back"]
        action = questionary.select("Action:", choices=choices).ask()

        if action is None or action == "Back":
            return
        try:
            if action == "Mark paid":
                bill_service.mark_paid(bill.id, actor_id=actor_id)
            elif action == "Void":
                confirm = questionary.confirm(
                    f"Void bill {bill.id}? Its entries are voided and totals zeroed.", default=False
                ).ask()
                if confirm:
                    bill_service.void(bill.id, actor_id=actor_id)
            elif action == "Regenerate":
                bill_service.regenerate(bill.id, actor_id=actor_id)
            elif action == "Add adjustment":
                add_adjustment_menu(bill, bill_service, actor_id)
            elif action == "Render PDF":
                path = bill_service.render_pdf(bill.id)
                console.print(f"[green]PDF stored at {path}[/green]")
        except TimebillError as exc:
            console.print(f"[red]{exc}[/red]")
        bill = bill_service.get_bill(bill.id)


def list_bills_menu(bill_service: BillService, actor_id: int | None = None) -> None:
    bills = bill_service.list_bills()
    if not bills:
        console.print("[yellow]No bills found.[/yellow]")
        return

    choices = [_bill_label(bill) for bill in bills] + ["Back"]
    choice = questionary.select("Select a bill:", choices=choices).ask()
    if choice is None or choice == "Back":
        return

    bill_id = int(choice.split(" - ")[0])
    try:
        bill = bill_service.get_bill(bill_id)
    except TimebillError as exc:
        console.print(f"[red]{exc}[/red]")
        return
    bill_detail_menu(bill, bill_service, actor_id)
