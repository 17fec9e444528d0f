from __future__ import annotations

import json
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta

from sqlalchemy import Connection, text
from sqlalchemy.engine import RowMapping
from sqlalchemy.exc import IntegrityError
from ulid import ULID

from timebill.constants import TZ
from timebill.errors import ConcurrentModificationError
from timebill.models.adjustment import Adjustment, AdjustmentState, AdjustmentType
from timebill.models.audit_log import AuditLog
from timebill.models.bill import Bill, BillAdjustment, BillState
from timebill.models.billing_code import BillingCode
from timebill.models.entry import Entry, EntryState, JournalClass
from timebill.models.invoice import Invoice, InvoiceState, InvoiceTotals, InvoiceType
from timebill.models.outbox import OutboxStatus, OutboxTask
from timebill.models.project import Account, Employee, Project
from timebill.models.rate import Rate
from timebill.repositories.base import (
    AccountRepository,
    AdjustmentRepository,
    AuditLogRepository,
    BillingCodeRepository,
    BillRepository,
    EmployeeRepository,
    EntryRepository,
    InvoiceRepository,
    OutboxRepository,
    ProjectRepository,
    RateRepository,
)


def _now() -> datetime:
    return datetime.now(TZ)


def _in_clause(prefix: str, values: Iterable) -> tuple[str, dict]:
    """Build ``:p0, :p1, ...`` placeholders and their params for an IN list."""
    values = list(values)
    placeholders = ", ".join(f":{prefix}{i}" for i in range(len(values)))
    return placeholders, {f"{prefix}{i}": v for i, v in enumerate(values)}


def _for_update(conn: Connection) -> str:
    # SQLite has no row locks; its single writer lock already serialises us.
    if conn.dialect.name == "sqlite":
        return ""
    return " FOR UPDATE"


class SQLAlchemyRateRepository(RateRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _build_rate(row: RowMapping) -> Rate:
        return Rate(
            id=row["id"],
            uuid=row["uuid"],
            name=row["name"],
            amount=row["amount"],
            active_from=row["active_from"],
            active_to=row["active_to"],
            internal_only=bool(row["internal_only"]),
            created_at=row["created_at"],
        )

    def create(self, rate: Rate) -> Rate:
        result = self.conn.execute(
            text(
                "INSERT INTO rates (uuid, name, amount, active_from, active_to, internal_only, created_at) "
                "VALUES (:uuid, :name, :amount, :active_from, :active_to, :internal_only, :created_at)"
            ),
            {
                "uuid": str(ULID()),
                "name": rate.name,
                "amount": rate.amount,
                "active_from": rate.active_from,
                "active_to": rate.active_to,
                "internal_only": rate.internal_only,
                "created_at": _now(),
            },
        )
        rate_id = result.lastrowid
        created = self.get_by_id(rate_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve rate after create (id={rate_id})")
        return created

    def get_by_id(self, rate_id: int) -> Rate | None:
        row = self.conn.execute(text("SELECT * FROM rates WHERE id = :id"), {"id": rate_id}).mappings().fetchone()
        if row is None:
            return None
        return self._build_rate(row)

    def list_all(self) -> list[Rate]:
        rows = self.conn.execute(text("SELECT * FROM rates ORDER BY name, active_from, id")).mappings().fetchall()
        return [self._build_rate(row) for row in rows]

    def list_by_name(self, name: str) -> list[Rate]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM rates WHERE name = :name ORDER BY id"),
                {"name": name},
            )
            .mappings()
            .fetchall()
        )
        return [self._build_rate(row) for row in rows]

    def update(self, rate: Rate) -> Rate:
        if rate.id is None:  # pragma: no cover
            raise ValueError("Cannot update rate without an id")
        self.conn.execute(
            text(
                "UPDATE rates SET name = :name, amount = :amount, active_from = :active_from, "
                "active_to = :active_to, internal_only = :internal_only WHERE id = :id"
            ),
            {
                "name": rate.name,
                "amount": rate.amount,
                "active_from": rate.active_from,
                "active_to": rate.active_to,
                "internal_only": rate.internal_only,
                "id": rate.id,
            },
        )
        result = self.get_by_id(rate.id)
        if result is None:
            raise RuntimeError(f"Failed to retrieve rate after update (id={rate.id})")
        return result

    def has_posted_entries(self, name: str, start: date, end: date) -> bool:
        """Whether a non-draft entry dated ``start``..``end`` is priced through the ``name`` series."""
        row = self.conn.execute(
            text(
                "SELECT 1 FROM entries e JOIN billing_codes b ON e.billing_code_id = b.id "
                "JOIN rates r ON r.id = b.rate_id OR r.id = b.internal_rate_id "
                "WHERE r.name = :name AND e.state != :draft "
                "AND e.start_at >= :start AND e.start_at < :until LIMIT 1"
            ),
            {
                "name": name,
                "draft": EntryState.DRAFT.value,
                "start": datetime.combine(start, time.min),
                "until": datetime.combine(end + timedelta(days=1), time.min),
            },
        ).fetchone()
        return row is not None


class SQLAlchemyBillingCodeRepository(BillingCodeRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _build_code(row: RowMapping) -> BillingCode:
        return BillingCode(
            id=row["id"],
            uuid=row["uuid"],
            project_id=row["project_id"],
            name=row["name"],
            category=row["category"],
            code=row["code"],
            rate_id=row["rate_id"],
            internal_rate_id=row["internal_rate_id"],
            rounded_to=row["rounded_to"],
            active_start=row["active_start"],
            active_end=row["active_end"],
            created_at=row["created_at"],
        )

    def create(self, code: BillingCode) -> BillingCode:
        result = self.conn.execute(
            text(
                "INSERT INTO billing_codes (uuid, project_id, name, category, code, rate_id, "
                "internal_rate_id, rounded_to, active_start, active_end, created_at) "
                "VALUES (:uuid, :project_id, :name, :category, :code, :rate_id, "
                ":internal_rate_id, :rounded_to, :active_start, :active_end, :created_at)"
            ),
            {
                "uuid": str(ULID()),
                "project_id": code.project_id,
                "name": code.name,
                "category": code.category,
                "code": code.code,
                "rate_id": code.rate_id,
                "internal_rate_id": code.internal_rate_id,
                "rounded_to": code.rounded_to,
                "active_start": code.active_start,
                "active_end": code.active_end,
                "created_at": _now(),
            },
        )
        code_id = result.lastrowid
        created = self.get_by_id(code_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve billing code after create (id={code_id})")
        return created

    def get_by_id(self, code_id: int) -> BillingCode | None:
        row = (
            self.conn.execute(text("SELECT * FROM billing_codes WHERE id = :id"), {"id": code_id})
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._build_code(row)

    def list_all(self) -> list[BillingCode]:
        rows = self.conn.execute(text("SELECT * FROM billing_codes ORDER BY code, id")).mappings().fetchall()
        return [self._build_code(row) for row in rows]

    def list_active(self, on: date) -> list[BillingCode]:
        rows = (
            self.conn.execute(
                text(
                    "SELECT * FROM billing_codes WHERE active_start <= :on AND active_end >= :on "
                    "ORDER BY code, id"
                ),
                {"on": on},
            )
            .mappings()
            .fetchall()
        )
        return [self._build_code(row) for row in rows]

    def list_by_project(self, project_id: int) -> list[BillingCode]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM billing_codes WHERE project_id = :project_id ORDER BY code, id"),
                {"project_id": project_id},
            )
            .mappings()
            .fetchall()
        )
        return [self._build_code(row) for row in rows]

    def update(self, code: BillingCode) -> BillingCode:
        if code.id is None:  # pragma: no cover
            raise ValueError("Cannot update billing code without an id")
        self.conn.execute(
            text(
                "UPDATE billing_codes SET project_id = :project_id, name = :name, category = :category, "
                "code = :code, rate_id = :rate_id, internal_rate_id = :internal_rate_id, "
                "rounded_to = :rounded_to, active_start = :active_start, active_end = :active_end "
                "WHERE id = :id"
            ),
            {
                "project_id": code.project_id,
                "name": code.name,
                "category": code.category,
                "code": code.code,
                "rate_id": code.rate_id,
                "internal_rate_id": code.internal_rate_id,
                "rounded_to": code.rounded_to,
                "active_start": code.active_start,
                "active_end": code.active_end,
                "id": code.id,
            },
        )
        result = self.get_by_id(code.id)
        if result is None:
            raise RuntimeError(f"Failed to retrieve billing code after update (id={code.id})")
        return result


class SQLAlchemyAccountRepository(AccountRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def create(self, account: Account) -> Account:
        result = self.conn.execute(
            text(
                "INSERT INTO accounts (uuid, name, projects_single_invoice, created_at) "
                "VALUES (:uuid, :name, :projects_single_invoice, :created_at)"
            ),
            {
                "uuid": str(ULID()),
                "name": account.name,
                "projects_single_invoice": account.projects_single_invoice,
                "created_at": _now(),
            },
        )
        account_id = result.lastrowid
        created = self.get_by_id(account_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve account after create (id={account_id})")
        return created

    def get_by_id(self, account_id: int) -> Account | None:
        row = self.conn.execute(text("SELECT * FROM accounts WHERE id = :id"), {"id": account_id}).mappings().fetchone()
        if row is None:
            return None
        return Account(
            id=row["id"],
            uuid=row["uuid"],
            name=row["name"],
            projects_single_invoice=bool(row["projects_single_invoice"]),
            created_at=row["created_at"],
        )


class SQLAlchemyProjectRepository(ProjectRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def _row_to_project(self, row: RowMapping) -> Project:
        codes = SQLAlchemyBillingCodeRepository(self.conn).list_by_project(row["id"])
        return Project(
            id=row["id"],
            uuid=row["uuid"],
            account_id=row["account_id"],
            name=row["name"],
            billing_codes=codes,
            created_at=row["created_at"],
        )

    def create(self, project: Project) -> Project:
        result = self.conn.execute(
            text(
                "INSERT INTO projects (uuid, account_id, name, created_at) "
                "VALUES (:uuid, :account_id, :name, :created_at)"
            ),
            {"uuid": str(ULID()), "account_id": project.account_id, "name": project.name, "created_at": _now()},
        )
        project_id = result.lastrowid
        created = self.get_by_id(project_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve project after create (id={project_id})")
        return created

    def get_by_id(self, project_id: int) -> Project | None:
        row = self.conn.execute(text("SELECT * FROM projects WHERE id = :id"), {"id": project_id}).mappings().fetchone()
        if row is None:
            return None
        return self._row_to_project(row)

    def list_by_account(self, account_id: int) -> list[Project]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM projects WHERE account_id = :account_id ORDER BY name, id"),
                {"account_id": account_id},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_project(row) for row in rows]


class SQLAlchemyEmployeeRepository(EmployeeRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _build_employee(row: RowMapping) -> Employee:
        return Employee(
            id=row["id"],
            uuid=row["uuid"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
            user_id=row["user_id"],
            created_at=row["created_at"],
        )

    def create(self, employee: Employee) -> Employee:
        result = self.conn.execute(
            text(
                "INSERT INTO employees (uuid, first_name, last_name, email, user_id, created_at) "
                "VALUES (:uuid, :first_name, :last_name, :email, :user_id, :created_at)"
            ),
            {
                "uuid": str(ULID()),
                "first_name": employee.first_name,
                "last_name": employee.last_name,
                "email": employee.email,
                "user_id": employee.user_id,
                "created_at": _now(),
            },
        )
        employee_id = result.lastrowid
        created = self.get_by_id(employee_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve employee after create (id={employee_id})")
        return created

    def get_by_id(self, employee_id: int) -> Employee | None:
        row = (
            self.conn.execute(text("SELECT * FROM employees WHERE id = :id"), {"id": employee_id})
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._build_employee(row)

    def list_all(self) -> list[Employee]:
        rows = (
            self.conn.execute(text("SELECT * FROM employees ORDER BY last_name, first_name, id")).mappings().fetchall()
        )
        return [self._build_employee(row) for row in rows]


class SQLAlchemyEntryRepository(EntryRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _build_entry(row: RowMapping) -> Entry:
        return Entry(
            id=row["id"],
            uuid=row["uuid"],
            project_id=row["project_id"],
            employee_id=row["employee_id"],
            billing_code_id=row["billing_code_id"],
            start=row["start_at"],
            end=row["end_at"],
            notes=row["notes"],
            internal=bool(row["internal"]),
            state=EntryState(row["state"]),
            journal=JournalClass(row["journal"]),
            linked_entry_id=row["linked_entry_id"],
            invoice_id=row["invoice_id"],
            bill_id=row["bill_id"],
            version=row["version"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _fetch(self, where: str, params: dict) -> list[Entry]:
        rows = (
            self.conn.execute(text(f"SELECT * FROM entries WHERE {where} ORDER BY start_at, id"), params)
            .mappings()
            .fetchall()
        )
        return [self._build_entry(row) for row in rows]

    def create(self, entry: Entry) -> Entry:
        now = _now()
        result = self.conn.execute(
            text(
                "INSERT INTO entries (uuid, project_id, employee_id, billing_code_id, start_at, end_at, "
                "notes, internal, state, journal, linked_entry_id, invoice_id, bill_id, version, "
                "created_at, updated_at) "
                "VALUES (:uuid, :project_id, :employee_id, :billing_code_id, :start_at, :end_at, "
                ":notes, :internal, :state, :journal, :linked_entry_id, :invoice_id, :bill_id, 0, "
                ":created_at, :updated_at)"
            ),
            {
                "uuid": str(ULID()),
                "project_id": entry.project_id,
                "employee_id": entry.employee_id,
                "billing_code_id": entry.billing_code_id,
                "start_at": entry.start,
                "end_at": entry.end,
                "notes": entry.notes,
                "internal": entry.internal,
                "state": entry.state.value,
                "journal": entry.journal.value,
                "linked_entry_id": entry.linked_entry_id,
                "invoice_id": entry.invoice_id,
                "bill_id": entry.bill_id,
                "created_at": now,
                "updated_at": now,
            },
        )
        entry_id = result.lastrowid
        created = self.get_by_id(entry_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve entry after create (id={entry_id})")
        return created

    def get_by_id(self, entry_id: int) -> Entry | None:
        row = self.conn.execute(text("SELECT * FROM entries WHERE id = :id"), {"id": entry_id}).mappings().fetchone()
        if row is None:
            return None
        return self._build_entry(row)

    def list_by_employee(self, employee_id: int, internal: bool = False) -> list[Entry]:
        return self._fetch(
            "employee_id = :employee_id AND internal = :internal",
            {"employee_id": employee_id, "internal": internal},
        )

    def list_by_invoice(self, invoice_id: int, internal: bool | None = False) -> list[Entry]:
        if internal is None:
            return self._fetch("invoice_id = :invoice_id", {"invoice_id": invoice_id})
        return self._fetch(
            "invoice_id = :invoice_id AND internal = :internal",
            {"invoice_id": invoice_id, "internal": internal},
        )

    def list_by_bill(self, bill_id: int) -> list[Entry]:
        return self._fetch("bill_id = :bill_id", {"bill_id": bill_id})

    def list_unassociated(self, project_id: int) -> list[Entry]:
        return self._fetch(
            "project_id = :project_id AND invoice_id IS NULL AND state = :draft",
            {"project_id": project_id, "draft": EntryState.DRAFT.value},
        )

    def has_entries(self, billing_code_id: int, posted_only: bool = False) -> bool:
        sql = "SELECT 1 FROM entries WHERE billing_code_id = :code_id"
        params: dict = {"code_id": billing_code_id}
        if posted_only:
            sql += " AND state != :draft"
            params["draft"] = EntryState.DRAFT.value
        row = self.conn.execute(text(sql + " LIMIT 1"), params).fetchone()
        return row is not None

    def update(self, entry: Entry) -> Entry:
        if entry.id is None:  # pragma: no cover
            raise ValueError("Cannot update entry without an id")
        result = self.conn.execute(
            text(
                "UPDATE entries SET project_id = :project_id, billing_code_id = :billing_code_id, "
                "start_at = :start_at, end_at = :end_at, notes = :notes, updated_at = :updated_at, "
                "version = version + 1 WHERE id = :id AND version = :version"
            ),
            {
                "project_id": entry.project_id,
                "billing_code_id": entry.billing_code_id,
                "start_at": entry.start,
                "end_at": entry.end,
                "notes": entry.notes,
                "updated_at": _now(),
                "id": entry.id,
                "version": entry.version,
            },
        )
        if result.rowcount == 0:
            raise ConcurrentModificationError("Entry", entry.id)
        updated = self.get_by_id(entry.id)
        if updated is None:
            raise RuntimeError(f"Failed to retrieve entry after update (id={entry.id})")
        return updated

    def set_link(self, entry_id: int, linked_entry_id: int | None) -> None:
        self.conn.execute(
            text("UPDATE entries SET linked_entry_id = :linked, version = version + 1 WHERE id = :id"),
            {"linked": linked_entry_id, "id": entry_id},
        )

    def set_invoice(self, entry_ids: Iterable[int], invoice_id: int | None) -> None:
        placeholders, params = _in_clause("id", entry_ids)
        if not params:
            return
        self.conn.execute(
            text(
                "UPDATE entries SET invoice_id = :invoice_id, updated_at = :updated_at, "
                f"version = version + 1 WHERE id IN ({placeholders})"
            ),
            {"invoice_id": invoice_id, "updated_at": _now(), **params},
        )

    def set_bill(self, entry_ids: Iterable[int], bill_id: int | None) -> None:
        placeholders, params = _in_clause("id", entry_ids)
        if not params:
            return
        self.conn.execute(
            text(f"UPDATE entries SET bill_id = :bill_id, version = version + 1 WHERE id IN ({placeholders})"),
            {"bill_id": bill_id, **params},
        )

    def set_state(self, entry_ids: Iterable[int], state: EntryState) -> int:
        placeholders, params = _in_clause("id", entry_ids)
        if not params:
            return 0
        result = self.conn.execute(
            text(
                "UPDATE entries SET state = :state, updated_at = :updated_at, "
                f"version = version + 1 WHERE id IN ({placeholders})"
            ),
            {"state": state.value, "updated_at": _now(), **params},
        )
        return result.rowcount

    def set_state_for_invoice(self, invoice_id: int, from_states: Iterable[EntryState], state: EntryState) -> int:
        placeholders, params = _in_clause("from", [s.value for s in from_states])
        result = self.conn.execute(
            text(
                "UPDATE entries SET state = :state, updated_at = :updated_at, version = version + 1 "
                f"WHERE invoice_id = :invoice_id AND state IN ({placeholders})"
            ),
            {"state": state.value, "updated_at": _now(), "invoice_id": invoice_id, **params},
        )
        return result.rowcount

    def set_state_for_bill(self, bill_id: int, state: EntryState) -> int:
        result = self.conn.execute(
            text(
                "UPDATE entries SET state = :state, updated_at = :updated_at, version = version + 1 "
                "WHERE bill_id = :bill_id"
            ),
            {"state": state.value, "updated_at": _now(), "bill_id": bill_id},
        )
        return result.rowcount

    def delete(self, entry_id: int) -> None:
        # Clear any back-reference first so the twin never points at a missing row.
        self.conn.execute(
            text("UPDATE entries SET linked_entry_id = NULL WHERE linked_entry_id = :id"),
            {"id": entry_id},
        )
        self.conn.execute(text("DELETE FROM entries WHERE id = :id"), {"id": entry_id})


class SQLAlchemyAdjustmentRepository(AdjustmentRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _build_adjustment(row: RowMapping) -> Adjustment:
        return Adjustment(
            id=row["id"],
            uuid=row["uuid"],
            invoice_id=row["invoice_id"],
            type=AdjustmentType(row["type"]),
            amount=row["amount"],
            notes=row["notes"],
            state=AdjustmentState(row["state"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create(self, adjustment: Adjustment) -> Adjustment:
        now = _now()
        result = self.conn.execute(
            text(
                "INSERT INTO adjustments (uuid, invoice_id, type, amount, notes, state, created_at, updated_at) "
                "VALUES (:uuid, :invoice_id, :type, :amount, :notes, :state, :created_at, :updated_at)"
            ),
            {
                "uuid": str(ULID()),
                "invoice_id": adjustment.invoice_id,
                "type": adjustment.type.value,
                "amount": adjustment.amount,
                "notes": adjustment.notes,
                "state": adjustment.state.value,
                "created_at": now,
                "updated_at": now,
            },
        )
        adjustment_id = result.lastrowid
        created = self.get_by_id(adjustment_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve adjustment after create (id={adjustment_id})")
        return created

    def get_by_id(self, adjustment_id: int) -> Adjustment | None:
        row = (
            self.conn.execute(text("SELECT * FROM adjustments WHERE id = :id"), {"id": adjustment_id})
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._build_adjustment(row)

    def list_by_invoice(self, invoice_id: int) -> list[Adjustment]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM adjustments WHERE invoice_id = :invoice_id ORDER BY id"),
                {"invoice_id": invoice_id},
            )
            .mappings()
            .fetchall()
        )
        return [self._build_adjustment(row) for row in rows]

    def update(self, adjustment: Adjustment) -> Adjustment:
        if adjustment.id is None:  # pragma: no cover
            raise ValueError("Cannot update adjustment without an id")
        self.conn.execute(
            text(
                "UPDATE adjustments SET type = :type, amount = :amount, notes = :notes, state = :state, "
                "updated_at = :updated_at WHERE id = :id"
            ),
            {
                "type": adjustment.type.value,
                "amount": adjustment.amount,
                "notes": adjustment.notes,
                "state": adjustment.state.value,
                "updated_at": _now(),
                "id": adjustment.id,
            },
        )
        result = self.get_by_id(adjustment.id)
        if result is None:
            raise RuntimeError(f"Failed to retrieve adjustment after update (id={adjustment.id})")
        return result

    def set_state_for_invoice(
        self, invoice_id: int, from_states: Iterable[AdjustmentState], state: AdjustmentState
    ) -> int:
        placeholders, params = _in_clause("from", [s.value for s in from_states])
        result = self.conn.execute(
            text(
                "UPDATE adjustments SET state = :state, updated_at = :updated_at "
                f"WHERE invoice_id = :invoice_id AND state IN ({placeholders})"
            ),
            {"state": state.value, "updated_at": _now(), "invoice_id": invoice_id, **params},
        )
        return result.rowcount

    def delete(self, adjustment_id: int) -> None:
        self.conn.execute(text("DELETE FROM adjustments WHERE id = :id"), {"id": adjustment_id})


class SQLAlchemyInvoiceRepository(InvoiceRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _build_invoice(row: RowMapping, entries: list[Entry], adjustments: list[Adjustment]) -> Invoice:
        return Invoice(
            id=row["id"],
            uuid=row["uuid"],
            project_id=row["project_id"],
            account_id=row["account_id"],
            type=InvoiceType(row["type"]),
            state=InvoiceState(row["state"]),
            period_start=row["period_start"],
            period_end=row["period_end"],
            accepted_at=row["accepted_at"],
            sent_at=row["sent_at"],
            due_at=row["due_at"],
            closed_at=row["closed_at"],
            total_minutes=row["total_minutes"],
            total_fees=row["total_fees"],
            total_adjustments=row["total_adjustments"],
            total_amount=row["total_amount"],
            pdf_path=row["pdf_path"],
            version=row["version"],
            entries=entries,
            adjustments=adjustments,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_invoice(self, row: RowMapping) -> Invoice:
        entries = SQLAlchemyEntryRepository(self.conn).list_by_invoice(row["id"], internal=False)
        adjustments = SQLAlchemyAdjustmentRepository(self.conn).list_by_invoice(row["id"])
        return self._build_invoice(row, entries, adjustments)

    def _build_invoices_from_rows(self, rows: list[RowMapping]) -> list[Invoice]:
        if not rows:
            return []
        placeholders, params = _in_clause("id", [row["id"] for row in rows])
        entry_rows = (
            self.conn.execute(
                text(
                    f"SELECT * FROM entries WHERE invoice_id IN ({placeholders}) AND internal = :internal "
                    "ORDER BY start_at, id"
                ),
                {"internal": False, **params},
            )
            .mappings()
            .fetchall()
        )
        adjustment_rows = (
            self.conn.execute(
                text(f"SELECT * FROM adjustments WHERE invoice_id IN ({placeholders}) ORDER BY id"),
                params,
            )
            .mappings()
            .fetchall()
        )
        entries_by_invoice: dict[int, list[Entry]] = {}
        for entry_row in entry_rows:
            entries_by_invoice.setdefault(entry_row["invoice_id"], []).append(
                SQLAlchemyEntryRepository._build_entry(entry_row)
            )
        adjustments_by_invoice: dict[int, list[Adjustment]] = {}
        for adjustment_row in adjustment_rows:
            adjustments_by_invoice.setdefault(adjustment_row["invoice_id"], []).append(
                SQLAlchemyAdjustmentRepository._build_adjustment(adjustment_row)
            )
        return [
            self._build_invoice(row, entries_by_invoice.get(row["id"], []), adjustments_by_invoice.get(row["id"], []))
            for row in rows
        ]

    def create_draft(self, invoice: Invoice, draft_key: str) -> Invoice | None:
        now = _now()
        params = {
            "uuid": str(ULID()),
            "project_id": invoice.project_id,
            "account_id": invoice.account_id,
            "type": invoice.type.value,
            "state": InvoiceState.DRAFT.value,
            "open_draft_key": draft_key,
            "created_at": now,
            "updated_at": now,
        }
        statement = text(
            "INSERT INTO invoices (uuid, project_id, account_id, type, state, open_draft_key, "
            "total_minutes, total_fees, total_adjustments, total_amount, version, created_at, updated_at) "
            "VALUES (:uuid, :project_id, :account_id, :type, :state, :open_draft_key, "
            "0, 0, 0, 0, 0, :created_at, :updated_at)"
        )
        try:
            if self.conn.dialect.name == "sqlite":
                result = self.conn.execute(statement, params)
            else:
                # A failed INSERT aborts the whole transaction on server databases.
                with self.conn.begin_nested():
                    result = self.conn.execute(statement, params)
        except IntegrityError:
            return None
        invoice_id = result.lastrowid
        created = self.get_by_id(invoice_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve invoice after create (id={invoice_id})")
        return created

    def get_by_id(self, invoice_id: int) -> Invoice | None:
        row = self.conn.execute(text("SELECT * FROM invoices WHERE id = :id"), {"id": invoice_id}).mappings().fetchone()
        if row is None:
            return None
        return self._row_to_invoice(row)

    def get_by_uuid(self, uuid: str) -> Invoice | None:
        row = self.conn.execute(text("SELECT * FROM invoices WHERE uuid = :uuid"), {"uuid": uuid}).mappings().fetchone()
        if row is None:
            return None
        return self._row_to_invoice(row)

    def lock(self, invoice_id: int) -> Invoice | None:
        row = (
            self.conn.execute(
                text(f"SELECT * FROM invoices WHERE id = :id{_for_update(self.conn)}"),
                {"id": invoice_id},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_invoice(row)

    def find_open_draft(self, draft_key: str) -> Invoice | None:
        row = (
            self.conn.execute(
                text(f"SELECT * FROM invoices WHERE open_draft_key = :key{_for_update(self.conn)}"),
                {"key": draft_key},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._row_to_invoice(row)

    def list_by_state(
        self, states: Iterable[InvoiceState], invoice_type: InvoiceType = InvoiceType.AR
    ) -> list[Invoice]:
        placeholders, params = _in_clause("state", [s.value for s in states])
        rows = (
            self.conn.execute(
                text(
                    f"SELECT * FROM invoices WHERE state IN ({placeholders}) AND type = :type "
                    "ORDER BY created_at DESC, id DESC"
                ),
                {"type": invoice_type.value, **params},
            )
            .mappings()
            .fetchall()
        )
        return self._build_invoices_from_rows(list(rows))

    def update_state(self, invoice: Invoice) -> Invoice:
        if invoice.id is None:  # pragma: no cover
            raise ValueError("Cannot update invoice without an id")
        result = self.conn.execute(
            text(
                "UPDATE invoices SET state = :state, open_draft_key = :open_draft_key, "
                "accepted_at = :accepted_at, sent_at = :sent_at, due_at = :due_at, closed_at = :closed_at, "
                "updated_at = :updated_at, version = version + 1 WHERE id = :id AND version = :version"
            ),
            {
                "state": invoice.state.value,
                # Only drafts hold the key, so at most one open draft exists per scope.
                "open_draft_key": None,
                "accepted_at": invoice.accepted_at,
                "sent_at": invoice.sent_at,
                "due_at": invoice.due_at,
                "closed_at": invoice.closed_at,
                "updated_at": _now(),
                "id": invoice.id,
                "version": invoice.version,
            },
        )
        if result.rowcount == 0:
            raise ConcurrentModificationError("Invoice", invoice.id)
        updated = self.get_by_id(invoice.id)
        if updated is None:
            raise RuntimeError(f"Failed to retrieve invoice after update (id={invoice.id})")
        return updated

    def update_totals(self, invoice_id: int, totals: InvoiceTotals) -> None:
        self.conn.execute(
            text(
                "UPDATE invoices SET total_minutes = :total_minutes, total_fees = :total_fees, "
                "total_adjustments = :total_adjustments, total_amount = :total_amount, "
                "period_start = :period_start, period_end = :period_end, updated_at = :updated_at "
                "WHERE id = :id"
            ),
            {
                "total_minutes": totals.total_minutes,
                "total_fees": totals.total_fees,
                "total_adjustments": totals.total_adjustments,
                "total_amount": totals.total_amount,
                "period_start": totals.period_start,
                "period_end": totals.period_end,
                "updated_at": _now(),
                "id": invoice_id,
            },
        )

    def update_pdf_path(self, invoice_id: int, pdf_path: str) -> None:
        self.conn.execute(
            text("UPDATE invoices SET pdf_path = :pdf_path WHERE id = :id"),
            {"pdf_path": pdf_path, "id": invoice_id},
        )


class SQLAlchemyBillRepository(BillRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _build_bill(row: RowMapping) -> Bill:
        return Bill(
            id=row["id"],
            uuid=row["uuid"],
            employee_id=row["employee_id"],
            period_start=row["period_start"],
            period_end=row["period_end"],
            state=BillState(row["state"]),
            total_minutes=row["total_minutes"],
            total_fees=row["total_fees"],
            total_adjustments=row["total_adjustments"],
            total_amount=row["total_amount"],
            pdf_path=row["pdf_path"],
            closed_at=row["closed_at"],
            version=row["version"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _build_adjustment(row: RowMapping) -> BillAdjustment:
        return BillAdjustment(
            id=row["id"],
            uuid=row["uuid"],
            bill_id=row["bill_id"],
            employee_id=row["employee_id"],
            period_end=row["period_end"],
            type=AdjustmentType(row["type"]),
            amount=row["amount"],
            notes=row["notes"],
            void=bool(row["void"]),
            created_at=row["created_at"],
        )

    def create(self, bill: Bill) -> Bill:
        result = self.conn.execute(
            text(
                "INSERT INTO bills (uuid, employee_id, period_start, period_end, state, total_minutes, "
                "total_fees, total_adjustments, total_amount, version, created_at) "
                "VALUES (:uuid, :employee_id, :period_start, :period_end, :state, :total_minutes, "
                ":total_fees, :total_adjustments, :total_amount, 0, :created_at)"
            ),
            {
                "uuid": str(ULID()),
                "employee_id": bill.employee_id,
                "period_start": bill.period_start,
                "period_end": bill.period_end,
                "state": bill.state.value,
                "total_minutes": bill.total_minutes,
                "total_fees": bill.total_fees,
                "total_adjustments": bill.total_adjustments,
                "total_amount": bill.total_amount,
                "created_at": _now(),
            },
        )
        bill_id = result.lastrowid
        created = self.get_by_id(bill_id)
        if created is None:
            raise RuntimeError(f"Failed to retrieve bill after create (id={bill_id})")
        return created

    def get_by_id(self, bill_id: int) -> Bill | None:
        row = self.conn.execute(text("SELECT * FROM bills WHERE id = :id"), {"id": bill_id}).mappings().fetchone()
        if row is None:
            return None
        return self._build_bill(row)

    def get_by_uuid(self, uuid: str) -> Bill | None:
        row = self.conn.execute(text("SELECT * FROM bills WHERE uuid = :uuid"), {"uuid": uuid}).mappings().fetchone()
        if row is None:
            return None
        return self._build_bill(row)

    def lock(self, bill_id: int) -> Bill | None:
        row = (
            self.conn.execute(text(f"SELECT * FROM bills WHERE id = :id{_for_update(self.conn)}"), {"id": bill_id})
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._build_bill(row)

    def find_open(self, employee_id: int, period_end: date) -> Bill | None:
        row = (
            self.conn.execute(
                text(
                    "SELECT * FROM bills WHERE employee_id = :employee_id AND period_end = :period_end "
                    f"AND state = :draft ORDER BY id DESC LIMIT 1{_for_update(self.conn)}"
                ),
                {"employee_id": employee_id, "period_end": period_end, "draft": BillState.DRAFT.value},
            )
            .mappings()
            .fetchone()
        )
        if row is None:
            return None
        return self._build_bill(row)

    def list_all(self) -> list[Bill]:
        rows = self.conn.execute(text("SELECT * FROM bills ORDER BY period_end DESC, id DESC")).mappings().fetchall()
        return [self._build_bill(row) for row in rows]

    def list_by_employee(self, employee_id: int) -> list[Bill]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM bills WHERE employee_id = :employee_id ORDER BY period_end DESC, id DESC"),
                {"employee_id": employee_id},
            )
            .mappings()
            .fetchall()
        )
        return [self._build_bill(row) for row in rows]

    def update(self, bill: Bill) -> Bill:
        if bill.id is None:  # pragma: no cover
            raise ValueError("Cannot update bill without an id")
        result = self.conn.execute(
            text(
                "UPDATE bills SET state = :state, total_minutes = :total_minutes, total_fees = :total_fees, "
                "total_adjustments = :total_adjustments, total_amount = :total_amount, closed_at = :closed_at, "
                "version = version + 1 WHERE id = :id AND version = :version"
            ),
            {
                "state": bill.state.value,
                "total_minutes": bill.total_minutes,
                "total_fees": bill.total_fees,
                "total_adjustments": bill.total_adjustments,
                "total_amount": bill.total_amount,
                "closed_at": bill.closed_at,
                "id": bill.id,
                "version": bill.version,
            },
        )
        if result.rowcount == 0:
            raise ConcurrentModificationError("Bill", bill.id)
        updated = self.get_by_id(bill.id)
        if updated is None:
            raise RuntimeError(f"Failed to retrieve bill after update (id={bill.id})")
        return updated

    def update_pdf_path(self, bill_id: int, pdf_path: str) -> None:
        self.conn.execute(
            text("UPDATE bills SET pdf_path = :pdf_path WHERE id = :id"),
            {"pdf_path": pdf_path, "id": bill_id},
        )

    def create_adjustment(self, adjustment: BillAdjustment) -> BillAdjustment:
        result = self.conn.execute(
            text(
                "INSERT INTO bill_adjustments (uuid, bill_id, employee_id, period_end, type, amount, notes, "
                "void, created_at) VALUES (:uuid, :bill_id, :employee_id, :period_end, :type, :amount, :notes, "
                ":void, :created_at)"
            ),
            {
                "uuid": str(ULID()),
                "bill_id": adjustment.bill_id,
                "employee_id": adjustment.employee_id,
                "period_end": adjustment.period_end,
                "type": adjustment.type.value,
                "amount": adjustment.amount,
                "notes": adjustment.notes,
                "void": adjustment.void,
                "created_at": _now(),
            },
        )
        row = (
            self.conn.execute(text("SELECT * FROM bill_adjustments WHERE id = :id"), {"id": result.lastrowid})
            .mappings()
            .fetchone()
        )
        if row is None:
            raise RuntimeError(f"Failed to retrieve bill adjustment after create (id={result.lastrowid})")
        return self._build_adjustment(row)

    def list_adjustments(self, bill_id: int) -> list[BillAdjustment]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM bill_adjustments WHERE bill_id = :bill_id ORDER BY id"),
                {"bill_id": bill_id},
            )
            .mappings()
            .fetchall()
        )
        return [self._build_adjustment(row) for row in rows]

    def void_adjustments(self, bill_id: int) -> int:
        result = self.conn.execute(
            text("UPDATE bill_adjustments SET void = :void WHERE bill_id = :bill_id"),
            {"void": True, "bill_id": bill_id},
        )
        return result.rowcount


class SQLAlchemyAuditLogRepository(AuditLogRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _row_to_audit_log(row: RowMapping) -> AuditLog:
        previous_state = row["previous_state"]
        if isinstance(previous_state, str):
            previous_state = json.loads(previous_state)
        new_state = row["new_state"]
        if isinstance(new_state, str):
            new_state = json.loads(new_state)
        metadata = row["metadata"]
        if isinstance(metadata, str):
            metadata = json.loads(metadata)

        return AuditLog(
            id=row["id"],
            uuid=row["uuid"],
            event_type=row["event_type"],
            actor_id=row["actor_id"],
            source=row["source"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            entity_uuid=row["entity_uuid"],
            previous_state=previous_state,
            new_state=new_state,
            metadata=metadata,
            created_at=row["created_at"],
        )

    def create(self, audit_log: AuditLog) -> AuditLog:
        result = self.conn.execute(
            text(
                "INSERT INTO audit_logs (uuid, event_type, actor_id, source, entity_type, entity_id, "
                "entity_uuid, previous_state, new_state, metadata, created_at) "
                "VALUES (:uuid, :event_type, :actor_id, :source, :entity_type, :entity_id, "
                ":entity_uuid, :previous_state, :new_state, :metadata, :created_at)"
            ),
            {
                "uuid": str(ULID()),
                "event_type": audit_log.event_type,
                "actor_id": audit_log.actor_id,
                "source": audit_log.source,
                "entity_type": audit_log.entity_type,
                "entity_id": audit_log.entity_id,
                "entity_uuid": audit_log.entity_uuid,
                "previous_state": json.dumps(audit_log.previous_state)
                if audit_log.previous_state is not None
                else None,
                "new_state": json.dumps(audit_log.new_state) if audit_log.new_state is not None else None,
                "metadata": json.dumps(audit_log.metadata),
                "created_at": _now(),
            },
        )
        row = (
            self.conn.execute(text("SELECT * FROM audit_logs WHERE id = :id"), {"id": result.lastrowid})
            .mappings()
            .fetchone()
        )
        if row is None:
            raise RuntimeError(f"Failed to retrieve audit log after create (id={result.lastrowid})")
        return self._row_to_audit_log(row)

    def list_by_entity(self, entity_type: str, entity_id: int) -> list[AuditLog]:
        rows = (
            self.conn.execute(
                text(
                    "SELECT * FROM audit_logs WHERE entity_type = :entity_type AND entity_id = :entity_id "
                    "ORDER BY id DESC"
                ),
                {"entity_type": entity_type, "entity_id": entity_id},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_audit_log(row) for row in rows]

    def list_by_actor(self, actor_id: int, limit: int = 50) -> list[AuditLog]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM audit_logs WHERE actor_id = :actor_id ORDER BY id DESC LIMIT :limit"),
                {"actor_id": actor_id, "limit": limit},
            )
            .mappings()
            .fetchall()
        )
        return [self._row_to_audit_log(row) for row in rows]

    def list_recent(self, limit: int = 50) -> list[AuditLog]:
        rows = (
            self.conn.execute(text("SELECT * FROM audit_logs ORDER BY id DESC LIMIT :limit"), {"limit": limit})
            .mappings()
            .fetchall()
        )
        return [self._row_to_audit_log(row) for row in rows]


class SQLAlchemyOutboxRepository(OutboxRepository):
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    @staticmethod
    def _build_task(row: RowMapping) -> OutboxTask:
        payload = row["payload"]
        if isinstance(payload, str):
            payload = json.loads(payload)
        return OutboxTask(
            id=row["id"],
            uuid=row["uuid"],
            kind=row["kind"],
            payload=payload,
            status=OutboxStatus(row["status"]),
            attempts=row["attempts"],
            last_error=row["last_error"],
            created_at=row["created_at"],
            processed_at=row["processed_at"],
        )

    def enqueue(self, task: OutboxTask) -> OutboxTask:
        result = self.conn.execute(
            text(
                "INSERT INTO outbox_tasks (uuid, kind, payload, status, attempts, last_error, created_at) "
                "VALUES (:uuid, :kind, :payload, :status, 0, '', :created_at)"
            ),
            {
                "uuid": str(ULID()),
                "kind": task.kind,
                "payload": json.dumps(task.payload),
                "status": OutboxStatus.PENDING.value,
                "created_at": _now(),
            },
        )
        row = (
            self.conn.execute(text("SELECT * FROM outbox_tasks WHERE id = :id"), {"id": result.lastrowid})
            .mappings()
            .fetchone()
        )
        if row is None:
            raise RuntimeError(f"Failed to retrieve outbox task after create (id={result.lastrowid})")
        return self._build_task(row)

    def list_pending(self, limit: int = 100) -> list[OutboxTask]:
        rows = (
            self.conn.execute(
                text("SELECT * FROM outbox_tasks WHERE status = :status ORDER BY id LIMIT :limit"),
                {"status": OutboxStatus.PENDING.value, "limit": limit},
            )
            .mappings()
            .fetchall()
        )
        return [self._build_task(row) for row in rows]

    def mark_done(self, task_id: int, processed_at: datetime) -> None:
        self.conn.execute(
            text("UPDATE outbox_tasks SET status = :status, processed_at = :processed_at WHERE id = :id"),
            {"status": OutboxStatus.DONE.value, "processed_at": processed_at, "id": task_id},
        )

    def record_failure(self, task_id: int, attempts: int, error: str, failed: bool) -> None:
        status = OutboxStatus.FAILED if failed else OutboxStatus.PENDING
        self.conn.execute(
            text(
                "UPDATE outbox_tasks SET status = :status, attempts = :attempts, last_error = :last_error "
                "WHERE id = :id"
            ),
            {"status": status.value, "attempts": attempts, "last_error": error[:500], "id": task_id},
        )
