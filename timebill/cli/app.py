import questionary
from rich.console import Console

from timebill.cli.bill_menu import list_bills_menu
from timebill.cli.invoice_menu import list_invoices_menu
from timebill.errors import TimebillError
from timebill.identity import Actor, IdentityResolver
from timebill.repositories.factory import get_store
from timebill.services.bill_service import BillService
from timebill.services.invoice_service import InvoiceService
from timebill.services.post_payment import PostPaymentWorker
from timebill.settings import settings
from timebill.storage.factory import get_storage

console = Console()


def _build_services() -> tuple[InvoiceService, BillService, PostPaymentWorker]:
    store = get_store()
    storage = get_storage()
    bill_service = BillService(store, storage)
    invoice_service = InvoiceService(
        store, storage, billing_codes=bill_service.billing_codes, bill_service=bill_service
    )
    return invoice_service, bill_service, PostPaymentWorker(store)


def _resolve_actor() -> Actor | None:
    """The CLI has no login; only the development bypass yields an actor."""
    return IdentityResolver(settings.auth_config()).resolve(None, source="cli")


def process_outbox(worker: PostPaymentWorker) -> None:
    try:
        delivered = worker.run_pending()
    except TimebillError as exc:
        console.print(f"[red]{exc}[/red]")
        return
    console.print(f"[green]{delivered} post-payment task(s) delivered.[/green]")


def main_menu() -> None:
    invoice_service, bill_service, worker = _build_services()
    actor = _resolve_actor()
    actor_id = actor.employee_id if actor else None

    console.print()
    console.print("[bold]Timebill[/bold]", style="cyan")
    console.print()

    while True:
        choice = questionary.select(
            "Main menu",
            choices=[
                "Draft invoices",
                "All invoices",
                "Bills",
                "Process post-payment tasks",
                "Exit",
            ],
        ).ask()

        if choice is None or choice == "Exit":
            console.print("[bold]Bye![/bold]")
            break
        elif choice == "Draft invoices":
            list_invoices_menu(invoice_service, drafts_only=True, actor_id=actor_id)
        elif choice == "All invoices":
            list_invoices_menu(invoice_service, actor_id=actor_id)
        elif choice == "Bills":
            list_bills_menu(bill_service, actor_id=actor_id)
        elif choice == "Process post-payment tasks":
            process_outbox(worker)
