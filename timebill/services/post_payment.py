"""Post-payment side effects (journal posting, commissions).

``InvoiceService.mark_paid`` only enqueues outbox rows in its own
transaction. ``PostPaymentWorker`` drains them later and hands each one to a
``PostPaymentSink``; sink failures are recorded on the task and retried on the
next run, and never touch the invoice.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime

from timebill.constants import TZ
from timebill.models.outbox import OutboxTask
from timebill.repositories.store import Store
from timebill.settings import settings

logger = logging.getLogger(__name__)


class PostPaymentSink(ABC):
    @abstractmethod
    def handle(self, task: OutboxTask) -> None:
        """Deliver one task. Raise to have it retried."""
        ...


class LoggingSink(PostPaymentSink):
    def handle(self, task: OutboxTask) -> None:
        logger.info("Post-payment task %s: kind=%s payload=%s", task.uuid, task.kind, task.payload)


class PostPaymentWorker:
    def __init__(self, store: Store, sink: PostPaymentSink | None = None, max_attempts: int | None = None) -> None:
        self.store = store
        self.sink = sink or LoggingSink()
        self.max_attempts = max_attempts or settings.outbox_max_attempts

    def run_pending(self, limit: int = 100) -> int:
        """Process pending tasks once. Returns how many were delivered."""
        delivered = 0
        for task in self.store.outbox.list_pending(limit):
            if task.id is None:  # pragma: no cover
                continue
            try:
                self.sink.handle(task)
            except Exception as exc:
                attempts = task.attempts + 1
                failed = attempts >= self.max_attempts
                logger.exception("Post-payment task %s failed (attempt %d/%d)", task.uuid, attempts, self.max_attempts)
                with self.store.atomic():
                    self.store.outbox.record_failure(task.id, attempts, str(exc), failed)
                continue
            with self.store.atomic():
                self.store.outbox.mark_done(task.id, datetime.now(TZ))
            delivered += 1
        if delivered:
            logger.info("Post-payment tasks delivered: %d", delivered)
        return delivered
