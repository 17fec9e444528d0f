from __future__ import annotations

import logging
from typing import Any

from timebill.identity import Actor
from timebill.models.audit_log import AuditLog
from timebill.repositories.base import AuditLogRepository
from timebill.services.audit_serializers import entity_type_of, serialize

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "service"


def _actor_fields(actor: Actor | int | None) -> tuple[int | None, str]:
    """Return (employee id, source) for an actor or a bare employee id."""
    if isinstance(actor, Actor):
        return actor.employee_id, actor.source
    return actor, DEFAULT_SOURCE


class AuditService:
    """Append-only audit trail written inside the caller's transaction.

    A failed write raises, which rolls the mutation back with it.
    """

    def __init__(self, repo: AuditLogRepository) -> None:
        self.repo = repo

    def record(
        self,
        event_type: str,
        entity: Any,
        *,
        actor: Actor | int | None = None,
        before: Any = None,
        after: dict | None = None,
        removed: bool = False,
        metadata: dict | None = None,
    ) -> AuditLog:
        """Audit a change to a timebill model.

        The entity type, id, uuid and new state come from ``entity``.
        ``before`` may be a model or an already serialized dict. ``after``
        replaces the entity's own state, for events that change something
        hanging off it. A ``removed`` entity is recorded with its last state
        as the previous one and no new state.
        """
        if isinstance(before, dict) or before is None:
            previous_state = before
        else:
            previous_state = serialize(before)
        new_state = after if after is not None else serialize(entity)
        if removed:
            previous_state, new_state = previous_state or new_state, None
        actor_id, source = _actor_fields(actor)
        return self.log(
            event_type,
            actor_id=actor_id,
            source=source,
            entity_type=entity_type_of(entity),
            entity_id=entity.id,
            entity_uuid=entity.uuid,
            previous_state=previous_state,
            new_state=new_state,
            metadata=metadata,
        )

    def log(
        self,
        event_type: str,
        *,
        actor_id: int | None = None,
        source: str = DEFAULT_SOURCE,
        entity_type: str = "",
        entity_id: int | None = None,
        entity_uuid: str = "",
        previous_state: dict | None = None,
        new_state: dict | None = None,
        metadata: dict | None = None,
    ) -> AuditLog:
        """Create a raw audit log entry. Raises on failure."""
        audit_log = AuditLog(
            event_type=event_type,
            actor_id=actor_id,
            source=source,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_uuid=entity_uuid,
            previous_state=previous_state,
            new_state=new_state,
            metadata=metadata or {},
        )
        result = self.repo.create(audit_log)
        logger.debug(
            "Audit logged: event=%s actor=%s/%s entity=%s/%s", event_type, source, actor_id, entity_type, entity_id
        )
        return result

    def trail(self, entity: Any) -> list[AuditLog]:
        """Audit history of a timebill model, newest first."""
        return self.repo.list_by_entity(entity_type_of(entity), entity.id)

    def list_by_entity(self, entity_type: str, entity_id: int) -> list[AuditLog]:
        return self.repo.list_by_entity(entity_type, entity_id)

    def list_by_actor(self, actor: Actor | int, limit: int = 50) -> list[AuditLog]:
        actor_id, _ = _actor_fields(actor)
        return self.repo.list_by_actor(actor_id, limit)

    def list_recent(self, limit: int = 50) -> list[AuditLog]:
        return self.repo.list_recent(limit)
