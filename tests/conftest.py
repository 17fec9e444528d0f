"""Root conftest: in-memory SQLite engine, the full schema and a priced catalog."""

from __future__ import annotations

from datetime import date, datetime
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Connection, create_engine, event, text
from sqlalchemy.engine import Engine

from timebill.models.entry import Entry
from timebill.models.project import Account, Employee, Project
from timebill.repositories.store import Store
from timebill.services.adjustment_service import AdjustmentService
from timebill.services.bill_service import BillService
from timebill.services.billing_code_service import BillingCodeService
from timebill.services.entry_service import EntryService
from timebill.services.invoice_service import InvoiceService
from timebill.services.rate_service import RateService

# Matches Alembic head: 8c41d2e7b905 (bill_id on bill_adjustments)
SCHEMA_DDL = """
CREATE TABLE rates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    name VARCHAR(255) NOT NULL,
    amount INTEGER NOT NULL,
    active_from DATE NOT NULL,
    active_to DATE NOT NULL,
    internal_only TINYINT NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL
);

CREATE TABLE accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    name VARCHAR(255) NOT NULL,
    projects_single_invoice TINYINT NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL
);

CREATE TABLE projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    account_id INTEGER NOT NULL REFERENCES accounts(id),
    name VARCHAR(255) NOT NULL,
    created_at DATETIME NOT NULL
);

CREATE TABLE employees (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    first_name VARCHAR(255) NOT NULL,
    last_name VARCHAR(255) NOT NULL DEFAULT '',
    email VARCHAR(255) NOT NULL DEFAULT '',
    user_id INTEGER,
    created_at DATETIME NOT NULL
);

CREATE TABLE billing_codes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    project_id INTEGER NOT NULL REFERENCES projects(id),
    name VARCHAR(255) NOT NULL DEFAULT '',
    category VARCHAR(255) NOT NULL DEFAULT '',
    code VARCHAR(64) NOT NULL,
    rate_id INTEGER NOT NULL REFERENCES rates(id),
    internal_rate_id INTEGER NOT NULL REFERENCES rates(id),
    rounded_to INTEGER NOT NULL DEFAULT 15,
    active_start DATE NOT NULL,
    active_end DATE NOT NULL,
    created_at DATETIME NOT NULL
);

CREATE TABLE invoices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    project_id INTEGER REFERENCES projects(id),
    account_id INTEGER REFERENCES accounts(id),
    type VARCHAR(8) NOT NULL DEFAULT 'AR',
    state VARCHAR(16) NOT NULL DEFAULT 'draft',
    open_draft_key VARCHAR(64) UNIQUE,
    period_start DATE,
    period_end DATE,
    accepted_at DATETIME,
    sent_at DATETIME,
    due_at DATETIME,
    closed_at DATETIME,
    total_minutes INTEGER NOT NULL DEFAULT 0,
    total_fees INTEGER NOT NULL DEFAULT 0,
    total_adjustments INTEGER NOT NULL DEFAULT 0,
    total_amount INTEGER NOT NULL DEFAULT 0,
    pdf_path TEXT,
    version INTEGER NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
);

CREATE TABLE bills (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    employee_id INTEGER NOT NULL REFERENCES employees(id),
    period_start DATE NOT NULL,
    period_end DATE NOT NULL,
    state VARCHAR(16) NOT NULL DEFAULT 'draft',
    total_minutes INTEGER NOT NULL DEFAULT 0,
    total_fees INTEGER NOT NULL DEFAULT 0,
    total_adjustments INTEGER NOT NULL DEFAULT 0,
    total_amount INTEGER NOT NULL DEFAULT 0,
    pdf_path TEXT,
    closed_at DATETIME,
    version INTEGER NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL
);

CREATE TABLE entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    project_id INTEGER NOT NULL REFERENCES projects(id),
    employee_id INTEGER NOT NULL REFERENCES employees(id),
    billing_code_id INTEGER NOT NULL REFERENCES billing_codes(id),
    start_at DATETIME NOT NULL,
    end_at DATETIME NOT NULL,
    notes TEXT NOT NULL DEFAULT '',
    internal TINYINT NOT NULL DEFAULT 0,
    state VARCHAR(16) NOT NULL DEFAULT 'draft',
    journal VARCHAR(32) NOT NULL,
    linked_entry_id INTEGER REFERENCES entries(id) ON DELETE SET NULL,
    invoice_id INTEGER REFERENCES invoices(id),
    bill_id INTEGER REFERENCES bills(id),
    version INTEGER NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
);

CREATE TABLE adjustments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    invoice_id INTEGER NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
    type VARCHAR(16) NOT NULL,
    amount INTEGER NOT NULL,
    notes TEXT NOT NULL DEFAULT '',
    state VARCHAR(16) NOT NULL DEFAULT 'draft',
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
);

CREATE TABLE bill_adjustments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    bill_id INTEGER NOT NULL REFERENCES bills(id),
    employee_id INTEGER NOT NULL REFERENCES employees(id),
    period_end DATE NOT NULL,
    type VARCHAR(16) NOT NULL,
    amount INTEGER NOT NULL,
    notes TEXT NOT NULL DEFAULT '',
    void TINYINT NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL
);

CREATE TABLE audit_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    event_type VARCHAR(64) NOT NULL,
    actor_id INTEGER,
    source VARCHAR(32) NOT NULL DEFAULT '',
    entity_type VARCHAR(32) NOT NULL DEFAULT '',
    entity_id INTEGER,
    entity_uuid VARCHAR(26) NOT NULL DEFAULT '',
    previous_state TEXT,
    new_state TEXT,
    metadata TEXT,
    created_at DATETIME NOT NULL
);

CREATE TABLE outbox_tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uuid VARCHAR(26) NOT NULL UNIQUE,
    kind VARCHAR(64) NOT NULL,
    payload TEXT,
    status VARCHAR(16) NOT NULL DEFAULT 'pending',
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT NOT NULL DEFAULT '',
    created_at DATETIME NOT NULL,
    processed_at DATETIME
);
"""


@pytest.fixture()
def db_engine() -> Engine:
    engine = create_engine("sqlite:///:memory:")

    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    return engine


@pytest.fixture()
def db_connection(db_engine: Engine) -> Connection:
    conn = db_engine.connect()
    for statement in SCHEMA_DDL.strip().split(";"):
        stmt = statement.strip()
        if stmt:
            conn.execute(text(stmt))
    conn.commit()
    yield conn
    conn.close()


@pytest.fixture()
def store(db_connection: Connection) -> Store:
    return Store(db_connection)


@pytest.fixture()
def mock_storage() -> MagicMock:
    storage = MagicMock()
    storage.save.side_effect = lambda key, data, content_type="application/pdf": f"/artifacts/{key}"
    return storage


@pytest.fixture()
def services(store: Store, mock_storage: MagicMock) -> SimpleNamespace:
    rates = RateService(store)
    codes = BillingCodeService(store, rates)
    bills = BillService(store, mock_storage, billing_codes=codes)
    invoices = InvoiceService(store, mock_storage, billing_codes=codes, bill_service=bills)
    return SimpleNamespace(
        rates=rates,
        codes=codes,
        bills=bills,
        invoices=invoices,
        entries=EntryService(store, invoices, codes),
        adjustments=AdjustmentService(store, invoices),
    )


@pytest.fixture()
def catalog(store: Store, services: SimpleNamespace) -> SimpleNamespace:
    """One account, project and employee with a 2024 billing code at $100/h external, $60/h internal."""
    with store.atomic():
        account = store.accounts.create(Account(name="Northwind Traders"))
        project = store.projects.create(Project(account_id=account.id, name="Warehouse migration"))
        employee = store.employees.create(Employee(first_name="Ada", last_name="Lovelace", email="ada@example.com"))
    external = services.rates.create_rate("Consulting", 10000, date(2024, 1, 1), date(2024, 12, 31))
    internal = services.rates.create_rate(
        "Consulting cost", 6000, date(2024, 1, 1), date(2024, 12, 31), internal_only=True
    )
    code = services.codes.create_code(
        project_id=project.id,
        code="DEV",
        category="Engineering",
        rate_id=external.id,
        internal_rate_id=internal.id,
        active_start=date(2024, 1, 1),
        active_end=date(2024, 12, 31),
    )
    return SimpleNamespace(
        account=account,
        project=project,
        employee=employee,
        external_rate=external,
        internal_rate=internal,
        code=code,
    )


def _sample_entry(**overrides) -> Entry:
    defaults = dict(
        project_id=1,
        employee_id=1,
        billing_code_id=1,
        start=datetime(2024, 3, 4, 9, 0),
        end=datetime(2024, 3, 4, 11, 0),
        notes="Schema review",
    )
    defaults.update(overrides)
    return Entry(**defaults)


@pytest.fixture()
def sample_entry():
    return _sample_entry
