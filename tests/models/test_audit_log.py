from timebill.models.audit_log import AuditEventType, AuditLog
from timebill.models.outbox import OutboxStatus, OutboxTask
from timebill.models.project import Employee


class TestAuditLog:
    def test_defaults(self):
        log = AuditLog(event_type=AuditEventType.INVOICE_APPROVE)
        assert log.actor_id is None
        assert log.previous_state is None
        assert log.new_state is None
        assert log.metadata == {}

    def test_event_types_are_namespaced(self):
        assert AuditEventType.ENTRY_CREATE == "entry.create"
        assert AuditEventType.BILL_VOID == "bill.void"


class TestOutboxTask:
    def test_defaults(self):
        task = OutboxTask(kind="journal.post")
        assert task.status == OutboxStatus.PENDING
        assert task.attempts == 0
        assert task.last_error == ""


class TestEmployee:
    def test_full_name(self):
        assert Employee(first_name="Ada", last_name="Lovelace").full_name == "Ada Lovelace"
        assert Employee(first_name="Ada").full_name == "Ada"
