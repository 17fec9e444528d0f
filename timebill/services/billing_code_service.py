from __future__ import annotations

import logging
from datetime import date, datetime

from timebill.constants import TZ
from timebill.errors import ImmutableStateError, NotFoundError, ValidationError
from timebill.models.audit_log import AuditEventType
from timebill.models.billing_code import BillingCode
from timebill.models.rate import Rate
from timebill.repositories.store import Store
from timebill.services.audit_service import AuditService
from timebill.services.rate_service import RateService

logger = logging.getLogger(__name__)

# Fields that reprice entries; frozen once an entry using the code is posted.
_PRICING_FIELDS = ("rate_id", "internal_rate_id", "rounded_to")


class BillingCodeService:
    def __init__(self, store: Store, rate_service: RateService | None = None) -> None:
        self.store = store
        self.rates = rate_service or RateService(store)
        self.audit = AuditService(store.audit_logs)

    def resolve(self, code_id: int) -> BillingCode:
        code = self.store.billing_codes.get_by_id(code_id)
        if code is None:
            raise NotFoundError("BillingCode", code_id)
        return code

    def effective_external_rate(self, code: BillingCode, on: date) -> Rate:
        return self.rates.resolve_rate(code.rate_id, on)

    def effective_internal_rate(self, code: BillingCode, on: date) -> Rate:
        return self.rates.resolve_rate(code.internal_rate_id, on)

    def list_active(self, on: date | None = None) -> list[BillingCode]:
        return self.store.billing_codes.list_active(on or datetime.now(TZ).date())

    def list_codes(self) -> list[BillingCode]:
        return self.store.billing_codes.list_all()

    def _validate(self, code: BillingCode) -> None:
        if not code.code.strip():
            raise ValidationError("Billing code is required")
        if code.active_start > code.active_end:
            raise ValidationError(f"Billing code window {code.active_start} - {code.active_end} is empty")
        if code.rounded_to < 0:
            raise ValidationError("Rounding increment must not be negative")
        if self.store.projects.get_by_id(code.project_id) is None:
            raise NotFoundError("Project", code.project_id)
        self.rates.get_rate(code.rate_id)
        self.rates.get_rate(code.internal_rate_id)

    def create_code(
        self,
        project_id: int,
        code: str,
        rate_id: int,
        internal_rate_id: int,
        active_start: date,
        active_end: date,
        category: str = "",
        name: str = "",
        rounded_to: int = 15,
        actor_id: int | None = None,
    ) -> BillingCode:
        billing_code = BillingCode(
            project_id=project_id,
            name=name,
            category=category,
            code=code,
            rate_id=rate_id,
            internal_rate_id=internal_rate_id,
            rounded_to=rounded_to,
            active_start=active_start,
            active_end=active_end,
        )
        with self.store.atomic():
            self._validate(billing_code)
            billing_code = self.store.billing_codes.create(billing_code)
            self.audit.record(AuditEventType.BILLING_CODE_CREATE, billing_code, actor=actor_id)
        logger.info("Billing code created: id=%s code=%s project=%s", billing_code.id, code, project_id)
        return billing_code

    def update_code(self, code_id: int, actor_id: int | None = None, **fields) -> BillingCode:
        unknown = set(fields) - (set(BillingCode.model_fields) - {"id", "uuid", "created_at"})
        if unknown:
            raise ValidationError(f"Cannot update billing code fields: {sorted(unknown)}")
        with self.store.atomic():
            current = self.resolve(code_id)
            changed = {k: v for k, v in fields.items() if getattr(current, k) != v}
            frozen = [k for k in changed if k in _PRICING_FIELDS]
            if "project_id" in changed and self.store.entries.has_entries(code_id):
                raise ImmutableStateError("BillingCode", code_id, "in use", "entries already reference it")
            if frozen and self.store.entries.has_entries(code_id, posted_only=True):
                raise ImmutableStateError(
                    "BillingCode", code_id, "in use", f"{', '.join(frozen)} cannot change once entries are posted"
                )
            updated = current.model_copy(update=changed)
            self._validate(updated)
            updated = self.store.billing_codes.update(updated)
            self.audit.record(AuditEventType.BILLING_CODE_UPDATE, updated, actor=actor_id, before=current)
        logger.info("Billing code updated: id=%s fields=%s", code_id, sorted(changed))
        return updated

    def assign_to_project(self, code_id: int, project_id: int, actor_id: int | None = None) -> BillingCode:
        """Move a billing code onto a project; it then appears in that project's code list."""
        with self.store.atomic():
            current = self.resolve(code_id)
            if self.store.projects.get_by_id(project_id) is None:
                raise NotFoundError("Project", project_id)
            if current.project_id == project_id:
                return current
            if self.store.entries.has_entries(code_id):
                raise ImmutableStateError("BillingCode", code_id, "in use", "entries already reference it")
            updated = self.store.billing_codes.update(current.model_copy(update={"project_id": project_id}))
            self.audit.record(AuditEventType.BILLING_CODE_ASSIGN, updated, actor=actor_id, before=current)
        logger.info("Billing code assigned: id=%s project=%s -> %s", code_id, current.project_id, project_id)
        return updated
