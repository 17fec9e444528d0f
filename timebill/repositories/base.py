from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import date, datetime

from timebill.models.adjustment import Adjustment, AdjustmentState
from timebill.models.audit_log import AuditLog
from timebill.models.bill import Bill, BillAdjustment, BillState
from timebill.models.billing_code import BillingCode
from timebill.models.entry import Entry, EntryState
from timebill.models.invoice import Invoice, InvoiceState, InvoiceTotals, InvoiceType
from timebill.models.outbox import OutboxTask
from timebill.models.project import Account, Employee, Project
from timebill.models.rate import Rate


class RateRepository(ABC):
    @abstractmethod
    def create(self, rate: Rate) -> Rate: ...

    @abstractmethod
    def get_by_id(self, rate_id: int) -> Rate | None: ...

    @abstractmethod
    def list_all(self) -> list[Rate]: ...

    @abstractmethod
    def list_by_name(self, name: str) -> list[Rate]: ...

    @abstractmethod
    def update(self, rate: Rate) -> Rate: ...

    @abstractmethod
    def has_posted_entries(self, name: str, start: date, end: date) -> bool: ...


class BillingCodeRepository(ABC):
    @abstractmethod
    def create(self, code: BillingCode) -> BillingCode: ...

    @abstractmethod
    def get_by_id(self, code_id: int) -> BillingCode | None: ...

    @abstractmethod
    def list_all(self) -> list[BillingCode]: ...

    @abstractmethod
    def list_active(self, on: date) -> list[BillingCode]: ...

    @abstractmethod
    def list_by_project(self, project_id: int) -> list[BillingCode]: ...

    @abstractmethod
    def update(self, code: BillingCode) -> BillingCode: ...


class AccountRepository(ABC):
    @abstractmethod
    def create(self, account: Account) -> Account: ...

    @abstractmethod
    def get_by_id(self, account_id: int) -> Account | None: ...


class ProjectRepository(ABC):
    @abstractmethod
    def create(self, project: Project) -> Project: ...

    @abstractmethod
    def get_by_id(self, project_id: int) -> Project | None: ...

    @abstractmethod
    def list_by_account(self, account_id: int) -> list[Project]: ...


class EmployeeRepository(ABC):
    @abstractmethod
    def create(self, employee: Employee) -> Employee: ...

    @abstractmethod
    def get_by_id(self, employee_id: int) -> Employee | None: ...

    @abstractmethod
    def list_all(self) -> list[Employee]: ...


class EntryRepository(ABC):
    @abstractmethod
    def create(self, entry: Entry) -> Entry: ...

    @abstractmethod
    def get_by_id(self, entry_id: int) -> Entry | None: ...

    @abstractmethod
    def list_by_employee(self, employee_id: int, internal: bool = False) -> list[Entry]: ...

    @abstractmethod
    def list_by_invoice(self, invoice_id: int, internal: bool | None = False) -> list[Entry]: ...

    @abstractmethod
    def list_by_bill(self, bill_id: int) -> list[Entry]: ...

    @abstractmethod
    def list_unassociated(self, project_id: int) -> list[Entry]: ...

    @abstractmethod
    def has_entries(self, billing_code_id: int, posted_only: bool = False) -> bool: ...

    @abstractmethod
    def update(self, entry: Entry) -> Entry: ...

    @abstractmethod
    def set_link(self, entry_id: int, linked_entry_id: int | None) -> None: ...

    @abstractmethod
    def set_invoice(self, entry_ids: Iterable[int], invoice_id: int | None) -> None: ...

    @abstractmethod
    def set_bill(self, entry_ids: Iterable[int], bill_id: int | None) -> None: ...

    @abstractmethod
    def set_state(self, entry_ids: Iterable[int], state: EntryState) -> int: ...

    @abstractmethod
    def set_state_for_invoice(
        self, invoice_id: int, from_states: Iterable[EntryState], state: EntryState
    ) -> int: ...

    @abstractmethod
    def set_state_for_bill(self, bill_id: int, state: EntryState) -> int: ...

    @abstractmethod
    def delete(self, entry_id: int) -> None: ...


class AdjustmentRepository(ABC):
    @abstractmethod
    def create(self, adjustment: Adjustment) -> Adjustment: ...

    @abstractmethod
    def get_by_id(self, adjustment_id: int) -> Adjustment | None: ...

    @abstractmethod
    def list_by_invoice(self, invoice_id: int) -> list[Adjustment]: ...

    @abstractmethod
    def update(self, adjustment: Adjustment) -> Adjustment: ...

    @abstractmethod
    def set_state_for_invoice(
        self, invoice_id: int, from_states: Iterable[AdjustmentState], state: AdjustmentState
    ) -> int: ...

    @abstractmethod
    def delete(self, adjustment_id: int) -> None: ...


class InvoiceRepository(ABC):
    @abstractmethod
    def create_draft(self, invoice: Invoice, draft_key: str) -> Invoice | None:
        """Insert a draft; return ``None`` if another draft already holds ``draft_key``."""
        ...

    @abstractmethod
    def get_by_id(self, invoice_id: int) -> Invoice | None: ...

    @abstractmethod
    def get_by_uuid(self, uuid: str) -> Invoice | None: ...

    @abstractmethod
    def lock(self, invoice_id: int) -> Invoice | None:
        """Fetch the invoice and hold a row lock on it until the transaction ends."""
        ...

    @abstractmethod
    def find_open_draft(self, draft_key: str) -> Invoice | None: ...

    @abstractmethod
    def list_by_state(
        self, states: Iterable[InvoiceState], invoice_type: InvoiceType = InvoiceType.AR
    ) -> list[Invoice]: ...

    @abstractmethod
    def update_state(self, invoice: Invoice) -> Invoice: ...

    @abstractmethod
    def update_totals(self, invoice_id: int, totals: InvoiceTotals) -> None: ...

    @abstractmethod
    def update_pdf_path(self, invoice_id: int, pdf_path: str) -> None: ...


class BillRepository(ABC):
    @abstractmethod
    def create(self, bill: Bill) -> Bill: ...

    @abstractmethod
    def get_by_id(self, bill_id: int) -> Bill | None: ...

    @abstractmethod
    def get_by_uuid(self, uuid: str) -> Bill | None: ...

    @abstractmethod
    def lock(self, bill_id: int) -> Bill | None: ...

    @abstractmethod
    def find_open(self, employee_id: int, period_end: date) -> Bill | None: ...

    @abstractmethod
    def list_all(self) -> list[Bill]: ...

    @abstractmethod
    def list_by_employee(self, employee_id: int) -> list[Bill]: ...

    @abstractmethod
    def update(self, bill: Bill) -> Bill: ...

    @abstractmethod
    def update_pdf_path(self, bill_id: int, pdf_path: str) -> None: ...

    @abstractmethod
    def create_adjustment(self, adjustment: BillAdjustment) -> BillAdjustment: ...

    @abstractmethod
    def list_adjustments(self, bill_id: int) -> list[BillAdjustment]: ...

    @abstractmethod
    def void_adjustments(self, bill_id: int) -> int: ...


class AuditLogRepository(ABC):
    @abstractmethod
    def create(self, audit_log: AuditLog) -> AuditLog: ...

    @abstractmethod
    def list_by_entity(self, entity_type: str, entity_id: int) -> list[AuditLog]: ...

    @abstractmethod
    def list_by_actor(self, actor_id: int, limit: int = 50) -> list[AuditLog]: ...

    @abstractmethod
    def list_recent(self, limit: int = 50) -> list[AuditLog]: ...


class OutboxRepository(ABC):
    @abstractmethod
    def enqueue(self, task: OutboxTask) -> OutboxTask: ...

    @abstractmethod
    def list_pending(self, limit: int = 100) -> list[OutboxTask]: ...

    @abstractmethod
    def mark_done(self, task_id: int, processed_at: datetime) -> None: ...

    @abstractmethod
    def record_failure(self, task_id: int, attempts: int, error: str, failed: bool) -> None: ...
