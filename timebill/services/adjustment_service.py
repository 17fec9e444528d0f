from __future__ import annotations

import logging

from timebill.errors import (
    ImmutableStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from timebill.models.adjustment import Adjustment, AdjustmentState, AdjustmentType
from timebill.models.audit_log import AuditEventType
from timebill.models.invoice import Invoice, InvoiceState
from timebill.repositories.store import Store
from timebill.services.audit_serializers import serialize_adjustment
from timebill.services.audit_service import AuditService
from timebill.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)

ADJUSTMENT_TRANSITIONS: dict[AdjustmentState, frozenset[AdjustmentState]] = {
    AdjustmentState.DRAFT: frozenset({AdjustmentState.APPROVED, AdjustmentState.VOID}),
    AdjustmentState.APPROVED: frozenset({AdjustmentState.SENT, AdjustmentState.VOID, AdjustmentState.DRAFT}),
    AdjustmentState.SENT: frozenset({AdjustmentState.VOID, AdjustmentState.DRAFT}),
    AdjustmentState.VOID: frozenset({AdjustmentState.DRAFT}),
}


class AdjustmentService:
    def __init__(self, store: Store, invoice_service: InvoiceService | None = None) -> None:
        self.store = store
        self.invoices = invoice_service or InvoiceService(store)
        self.audit = AuditService(store.audit_logs)

    def get_adjustment(self, adjustment_id: int) -> Adjustment:
        adjustment = self.store.adjustments.get_by_id(adjustment_id)
        if adjustment is None:
            raise NotFoundError("Adjustment", adjustment_id)
        return adjustment

    def list_for_invoice(self, invoice_id: int) -> list[Adjustment]:
        return self.store.adjustments.list_by_invoice(invoice_id)

    def _lock_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.store.invoices.lock(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    @staticmethod
    def _require_editable(adjustment: Adjustment, invoice: Invoice) -> None:
        if adjustment.state != AdjustmentState.DRAFT:
            raise ImmutableStateError("Adjustment", adjustment.id, adjustment.state.value)
        if invoice.state != InvoiceState.DRAFT:
            raise ImmutableStateError(
                "Adjustment", adjustment.id, adjustment.state.value, f"invoice {invoice.id} is {invoice.state.value}"
            )

    def create_adjustment(
        self,
        invoice_id: int,
        adjustment_type: AdjustmentType,
        amount: int,
        notes: str = "",
        actor_id: int | None = None,
    ) -> Adjustment:
        if amount <= 0:
            raise ValidationError("Adjustment amount must be positive; use a credit to reduce the total")
        with self.store.atomic():
            invoice = self._lock_invoice(invoice_id)
            if invoice.state != InvoiceState.DRAFT:
                raise ImmutableStateError("Invoice", invoice_id, invoice.state.value)
            adjustment = self.store.adjustments.create(
                Adjustment(invoice_id=invoice_id, type=adjustment_type, amount=amount, notes=notes)
            )
            self.invoices.recompute_totals(invoice_id)
            self.audit.record(AuditEventType.ADJUSTMENT_CREATE, adjustment, actor=actor_id)
        logger.info(
            "Adjustment created: id=%s invoice=%s %s %d", adjustment.id, invoice_id, adjustment_type.value, amount
        )
        return adjustment

    def edit_adjustment(
        self,
        adjustment_id: int,
        adjustment_type: AdjustmentType | None = None,
        amount: int | None = None,
        notes: str | None = None,
        actor_id: int | None = None,
    ) -> Adjustment:
        if amount is not None and amount <= 0:
            raise ValidationError("Adjustment amount must be positive")
        with self.store.atomic():
            adjustment = self.get_adjustment(adjustment_id)
            self._require_editable(adjustment, self._lock_invoice(adjustment.invoice_id))
            before = serialize_adjustment(adjustment)
            adjustment = self.store.adjustments.update(
                adjustment.model_copy(
                    update={
                        "type": adjustment_type or adjustment.type,
                        "amount": adjustment.amount if amount is None else amount,
                        "notes": adjustment.notes if notes is None else notes,
                    }
                )
            )
            self.invoices.recompute_totals(adjustment.invoice_id)
            self.audit.record(AuditEventType.ADJUSTMENT_UPDATE, adjustment, actor=actor_id, before=before)
        logger.info("Adjustment updated: id=%s", adjustment_id)
        return adjustment

    def transition_adjustment(
        self, adjustment_id: int, target: AdjustmentState, actor_id: int | None = None
    ) -> Adjustment:
        with self.store.atomic():
            adjustment = self.get_adjustment(adjustment_id)
            if target not in ADJUSTMENT_TRANSITIONS[adjustment.state]:
                logger.warning(
                    "Rejected adjustment transition: id=%s %s -> %s",
                    adjustment_id,
                    adjustment.state.value,
                    target.value,
                )
                raise InvalidTransitionError("Adjustment", adjustment_id, adjustment.state.value, target.value)
            invoice = self._lock_invoice(adjustment.invoice_id)
            closed = invoice.state in (InvoiceState.PAID, InvoiceState.VOID)
            if closed or (target == AdjustmentState.DRAFT and invoice.state != InvoiceState.DRAFT):
                reason = f"invoice {invoice.id} is {invoice.state.value}"
                raise ImmutableStateError("Adjustment", adjustment_id, adjustment.state.value, reason)
            before = serialize_adjustment(adjustment)
            adjustment = self.store.adjustments.update(adjustment.model_copy(update={"state": target}))
            self.invoices.recompute_totals(adjustment.invoice_id)
            self.audit.record(AuditEventType.ADJUSTMENT_TRANSITION, adjustment, actor=actor_id, before=before)
        logger.info("Adjustment transitioned: id=%s %s -> %s", adjustment_id, before["state"], target.value)
        return adjustment

    def delete_adjustment(self, adjustment_id: int, actor_id: int | None = None) -> None:
        with self.store.atomic():
            adjustment = self.get_adjustment(adjustment_id)
            self._require_editable(adjustment, self._lock_invoice(adjustment.invoice_id))
            self.store.adjustments.delete(adjustment_id)
            self.invoices.recompute_totals(adjustment.invoice_id)
            self.audit.record(AuditEventType.ADJUSTMENT_DELETE, adjustment, actor=actor_id, removed=True)
        logger.info("Adjustment deleted: id=%s invoice=%s", adjustment_id, adjustment.invoice_id)
