from timebill.repositories.base import AuditLogRepository
from timebill.repositories.store import Store


def get_store() -> Store:
    from timebill.db import get_connection

    return Store(get_connection())


def get_audit_log_repository() -> AuditLogRepository:
    from timebill.db import get_connection
    from timebill.repositories.sqlalchemy import SQLAlchemyAuditLogRepository

    return SQLAlchemyAuditLogRepository(get_connection())
