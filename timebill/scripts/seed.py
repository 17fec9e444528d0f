"""Seed the database with demo data for local development.

Usage:
    python -m timebill.scripts.seed
"""

from __future__ import annotations

import random
from datetime import date, datetime, timedelta

from faker import Faker
from rich.console import Console
from rich.table import Table
from sqlalchemy import text

from timebill.db import initialize_db
from timebill.models import format_usd
from timebill.models.invoice import InvoiceState
from timebill.models.project import Account, Employee, Project
from timebill.repositories.factory import get_store
from timebill.repositories.store import Store
from timebill.services.billing_code_service import BillingCodeService
from timebill.services.entry_service import EntryService
from timebill.services.invoice_service import InvoiceService
from timebill.services.rate_service import RateService
from timebill.storage.factory import get_storage

console = Console()
fake = Faker()

NUM_EMPLOYEES = 4
DAYS_OF_TIME = 20

TABLES_TO_TRUNCATE = [
    "outbox_tasks",
    "audit_logs",
    "bill_adjustments",
    "adjustments",
    "entries",
    "bills",
    "invoices",
    "billing_codes",
    "rates",
    "projects",
    "accounts",
    "employees",
]

# (account name, single invoice per account, [project names])
ACCOUNT_TEMPLATES = [
    ("Northwind Traders", False, ["Warehouse migration", "Quarterly audit"]),
    ("Contoso Health", True, ["Patient portal", "Data platform"]),
]

# (code, category, external rate name, internal rate name)
CODE_TEMPLATES = [
    ("DEV", "Engineering", "Engineering", "Engineering cost"),
    ("PM", "Management", "Management", "Management cost"),
]

ENTRY_NOTES = [
    "Sprint planning",
    "Schema review",
    "Client workshop",
    "Bug triage",
    "Release prep",
    "Status call",
]


def _truncate_all(store: Store) -> None:
    """Empty every table, children first."""
    console.print("\n[yellow]Truncating all tables...[/yellow]")
    for table in TABLES_TO_TRUNCATE:
        store.conn.execute(text(f"DELETE FROM {table}"))  # noqa: S608
        console.print(f"  Truncated [dim]{table}[/dim]")
    store.conn.commit()
    console.print("[green]All tables truncated.[/green]\n")


def _create_rates(rate_service: RateService, year: int) -> dict[str, int]:
    """Create one rate series per name, with a mid-year price change. Returns name -> first rate id."""
    console.print("[cyan]Creating rates...[/cyan]")
    first_ids: dict[str, int] = {}
    for name, amount, internal in [
        ("Engineering", 10000, False),
        ("Management", 12500, False),
        ("Engineering cost", 6000, True),
        ("Management cost", 7000, True),
    ]:
        rate = rate_service.create_rate(
            name, amount, date(year - 1, 1, 1), date(year, 12, 31), internal_only=internal
        )
        rate_service.supersede_rate(rate.id, amount + amount // 5, date(year, 7, 1))
        first_ids[name] = rate.id
        console.print(f"  {name}: {format_usd(amount)}/h, then {format_usd(amount + amount // 5)}/h from July")
    console.print()
    return first_ids


def _create_catalog(store: Store, codes: BillingCodeService, rate_ids: dict[str, int], year: int) -> list[int]:
    """Create accounts, projects and their billing codes. Returns billing code ids."""
    console.print("[cyan]Creating accounts and projects...[/cyan]")
    code_ids = []
    for account_name, single_invoice, project_names in ACCOUNT_TEMPLATES:
        with store.atomic():
            account = store.accounts.create(Account(name=account_name, projects_single_invoice=single_invoice))
        for project_name in project_names:
            with store.atomic():
                project = store.projects.create(Project(account_id=account.id, name=project_name))
            for code, category, external, internal in CODE_TEMPLATES:
                billing_code = codes.create_code(
                    project_id=project.id,
                    code=f"{code}-{project.id}",
                    category=category,
                    rate_id=rate_ids[external],
                    internal_rate_id=rate_ids[internal],
                    active_start=date(year - 1, 1, 1),
                    active_end=date(year, 12, 31),
                )
                code_ids.append(billing_code.id)
            console.print(f"  {account_name} / {project_name} (id={project.id})")
    console.print()
    return code_ids


def _create_employees(store: Store) -> list[Employee]:
    console.print("[cyan]Creating employees...[/cyan]")
    employees = []
    for _ in range(NUM_EMPLOYEES):
        with store.atomic():
            employee = store.employees.create(
                Employee(first_name=fake.first_name(), last_name=fake.last_name(), email=fake.email())
            )
        console.print(f"  {employee.full_name} (id={employee.id})")
        employees.append(employee)
    console.print()
    return employees


def _create_entries(entries: EntryService, employees: list[Employee], code_ids: list[int]) -> int:
    console.print("[cyan]Logging time...[/cyan]")
    today = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    count = 0
    for offset in range(DAYS_OF_TIME, 0, -1):
        day = today - timedelta(days=offset)
        if day.weekday() >= 5:
            continue
        for employee in employees:
            start = day + timedelta(hours=9, minutes=random.choice([0, 15, 30]))
            end = start + timedelta(minutes=random.choice([45, 67, 90, 120, 180]))
            entries.create_entry(random.choice(code_ids), employee.id, start, end, random.choice(ENTRY_NOTES))
            count += 1
    console.print(f"[green]{count} entries logged (each with an internal twin).[/green]\n")
    return count


def _settle_first_invoice(invoices: InvoiceService) -> None:
    drafts = invoices.list_drafts()
    if not drafts:
        return
    invoice = drafts[-1]
    console.print(f"[cyan]Approving, sending and paying invoice {invoice.id}...[/cyan]")
    invoices.approve(invoice.id)
    invoices.send(invoice.id)
    invoices.mark_paid(invoice.id)
    console.print("[green]Invoice paid, bills generated.[/green]\n")


def _print_summary(invoices: InvoiceService) -> None:
    table = Table(title="Invoices")
    table.add_column("ID", justify="right")
    table.add_column("Scope")
    table.add_column("State")
    table.add_column("Hours", justify="right")
    table.add_column("Total", justify="right")
    for invoice in invoices.list_by_state(list(InvoiceState)):
        table.add_row(
            str(invoice.id),
            invoice.scope_label,
            invoice.state.value,
            f"{invoice.total_hours}",
            format_usd(invoice.total_amount),
        )
    console.print(table)


def main() -> None:
    initialize_db()
    store = get_store()
    _truncate_all(store)

    year = date.today().year
    rates = RateService(store)
    codes = BillingCodeService(store, rates)
    invoices = InvoiceService(store, get_storage(), billing_codes=codes)
    entries = EntryService(store, invoices, codes)

    rate_ids = _create_rates(rates, year)
    code_ids = _create_catalog(store, codes, rate_ids, year)
    employees = _create_employees(store)
    _create_entries(entries, employees, code_ids)
    _settle_first_invoice(invoices)
    _print_summary(invoices)


if __name__ == "__main__":
    main()
