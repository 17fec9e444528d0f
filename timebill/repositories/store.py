from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Connection

from timebill.db import atomic
from timebill.repositories.sqlalchemy import (
    SQLAlchemyAccountRepository,
    SQLAlchemyAdjustmentRepository,
    SQLAlchemyAuditLogRepository,
    SQLAlchemyBillingCodeRepository,
    SQLAlchemyBillRepository,
    SQLAlchemyEmployeeRepository,
    SQLAlchemyEntryRepository,
    SQLAlchemyInvoiceRepository,
    SQLAlchemyOutboxRepository,
    SQLAlchemyProjectRepository,
    SQLAlchemyRateRepository,
)


class Store:
    """Every repository bound to one connection, so services share a transaction."""

    def __init__(self, conn: Connection) -> None:
        self.conn = conn
        self.rates = SQLAlchemyRateRepository(conn)
        self.billing_codes = SQLAlchemyBillingCodeRepository(conn)
        self.accounts = SQLAlchemyAccountRepository(conn)
        self.projects = SQLAlchemyProjectRepository(conn)
        self.employees = SQLAlchemyEmployeeRepository(conn)
        self.entries = SQLAlchemyEntryRepository(conn)
        self.adjustments = SQLAlchemyAdjustmentRepository(conn)
        self.invoices = SQLAlchemyInvoiceRepository(conn)
        self.bills = SQLAlchemyBillRepository(conn)
        self.audit_logs = SQLAlchemyAuditLogRepository(conn)
        self.outbox = SQLAlchemyOutboxRepository(conn)

    @contextmanager
    def atomic(self) -> Iterator[Store]:
        with atomic(self.conn):
            yield self
