from zoneinfo import ZoneInfo

from timebill.models.adjustment import AdjustmentType
from timebill.models.bill import BillState
from timebill.models.entry import EntryState
from timebill.models.invoice import InvoiceState
from timebill.settings import settings

TZ = ZoneInfo(settings.timezone)

ENTRY_STATE_LABELS = {
    EntryState.DRAFT: "Draft",
    EntryState.APPROVED: "Approved",
    EntryState.SENT: "Sent",
    EntryState.PAID: "Paid",
    EntryState.VOID: "Void",
}

INVOICE_STATE_LABELS = {
    InvoiceState.DRAFT: "Draft",
    InvoiceState.APPROVED: "Approved",
    InvoiceState.SENT: "Sent",
    InvoiceState.PAID: "Paid",
    InvoiceState.VOID: "Void",
}

BILL_STATE_LABELS = {BillState.DRAFT: "Open", BillState.PAID: "Paid", BillState.VOID: "Void"}

ADJUSTMENT_TYPE_LABELS = {AdjustmentType.FEE: "Fee", AdjustmentType.CREDIT: "Credit"}

OUTBOX_JOURNAL_POST = "journal.post"
OUTBOX_COMMISSION_COMPUTE = "commission.compute"


def format_period(start, end) -> str:
    if start is None or end is None:
        return ""
    return f"{start:%b %d, %Y} - {end:%b %d, %Y}"
