from __future__ import annotations

import logging
from datetime import date, timedelta

from timebill.errors import ImmutableStateError, NotFoundError, ValidationError
from timebill.models.audit_log import AuditEventType
from timebill.models.rate import Rate
from timebill.repositories.store import Store
from timebill.services.audit_service import AuditService
from timebill.settings import settings

logger = logging.getLogger(__name__)


class RateService:
    def __init__(self, store: Store) -> None:
        self.store = store
        self.audit = AuditService(store.audit_logs)

    def get_rate(self, rate_id: int) -> Rate:
        rate = self.store.rates.get_by_id(rate_id)
        if rate is None:
            raise NotFoundError("Rate", rate_id)
        return rate

    def list_rates(self) -> list[Rate]:
        return self.store.rates.list_all()

    def resolve_rate(self, rate_id: int, on: date) -> Rate:
        """Return the member of ``rate_id``'s series that is effective on ``on``.

        When windows overlap the most recently created rate wins.
        """
        reference = self.get_rate(rate_id)
        effective = [r for r in self.store.rates.list_by_name(reference.name) if r.is_effective(on)]
        if not effective:
            raise NotFoundError("Rate", f"{reference.name}@{on.isoformat()}")
        if len(effective) > 1:
            logger.debug("Overlapping rates for %s on %s, picking latest", reference.name, on)
        return max(effective, key=lambda r: r.id or 0)

    @staticmethod
    def _validate(amount: int, active_from: date, active_to: date) -> None:
        if amount < 0:
            raise ValidationError("Rate amount must not be negative")
        if active_from > active_to:
            raise ValidationError(f"Rate window {active_from} - {active_to} is empty")

    def _prices_posted_entries(self, rate: Rate) -> bool:
        return self.store.rates.has_posted_entries(rate.name, rate.active_from, rate.active_to)

    def _check_overlap(self, rate: Rate, exclude_id: int | None = None) -> None:
        clashing = [
            r for r in self.store.rates.list_by_name(rate.name) if r.id != exclude_id and r.overlaps(rate)
        ]
        if not clashing:
            return
        if settings.reject_overlapping_rates:
            logger.warning("Rejected overlapping rate %s (clashes with %s)", rate.name, [r.id for r in clashing])
            raise ValidationError(f"Rate {rate.name} overlaps existing rate ids {[r.id for r in clashing]}")
        logger.warning("Rate %s overlaps existing rate ids %s", rate.name, [r.id for r in clashing])

    def create_rate(
        self,
        name: str,
        amount: int,
        active_from: date,
        active_to: date,
        internal_only: bool = False,
        actor_id: int | None = None,
    ) -> Rate:
        if not name.strip():
            raise ValidationError("Rate name is required")
        self._validate(amount, active_from, active_to)
        rate = Rate(
            name=name.strip(),
            amount=amount,
            active_from=active_from,
            active_to=active_to,
            internal_only=internal_only,
        )
        with self.store.atomic():
            self._check_overlap(rate)
            rate = self.store.rates.create(rate)
            self.audit.record(AuditEventType.RATE_CREATE, rate, actor=actor_id)
        logger.info("Rate created: id=%s name=%s amount=%d", rate.id, rate.name, rate.amount)
        return rate

    def update_rate(
        self,
        rate_id: int,
        amount: int | None = None,
        active_from: date | None = None,
        active_to: date | None = None,
        actor_id: int | None = None,
    ) -> Rate:
        with self.store.atomic():
            rate = self.get_rate(rate_id)
            updated = rate.model_copy(
                update={
                    "amount": rate.amount if amount is None else amount,
                    "active_from": active_from or rate.active_from,
                    "active_to": active_to or rate.active_to,
                }
            )
            self._validate(updated.amount, updated.active_from, updated.active_to)
            # both windows: the old one priced posted entries, the new one could reprice them
            if self._prices_posted_entries(rate) or self._prices_posted_entries(updated):
                logger.warning("Rejected update of rate %s: posted entries fall in its window", rate_id)
                raise ImmutableStateError("Rate", rate_id, "in use", "create a new rate version instead")
            self._check_overlap(updated, exclude_id=rate_id)
            updated = self.store.rates.update(updated)
            self.audit.record(AuditEventType.RATE_UPDATE, updated, actor=actor_id, before=rate)
        logger.info("Rate updated: id=%s", rate_id)
        return updated

    def supersede_rate(
        self,
        rate_id: int,
        amount: int,
        active_from: date,
        actor_id: int | None = None,
    ) -> Rate:
        """Start a new version of ``rate_id``'s series on ``active_from``.

        The current version is closed the day before. Posted entries dated from
        ``active_from`` on were priced by the current version, so their presence
        rejects the change.
        """
        with self.store.atomic():
            current = self.get_rate(rate_id)
            if not current.active_from < active_from <= current.active_to:
                raise ValidationError(
                    f"New version must start inside {current.active_from} - {current.active_to}, after its start"
                )
            self._validate(amount, active_from, current.active_to)
            if self.store.rates.has_posted_entries(current.name, active_from, current.active_to):
                logger.warning("Rejected supersede of rate %s from %s: posted entries", rate_id, active_from)
                raise ImmutableStateError(
                    "Rate", rate_id, "in use", f"posted entries from {active_from} on are priced by it"
                )
            successor = self.store.rates.create(
                Rate(
                    name=current.name,
                    amount=amount,
                    active_from=active_from,
                    active_to=current.active_to,
                    internal_only=current.internal_only,
                )
            )
            closed = self.store.rates.update(
                current.model_copy(update={"active_to": active_from - timedelta(days=1)})
            )
            self.audit.record(
                AuditEventType.RATE_UPDATE,
                closed,
                actor=actor_id,
                before=current,
                metadata={"superseded_by": successor.id},
            )
            self.audit.record(AuditEventType.RATE_CREATE, successor, actor=actor_id)
        logger.info("Rate superseded: id=%s -> id=%s from %s", rate_id, successor.id, active_from)
        return successor
