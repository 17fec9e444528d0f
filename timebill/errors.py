"""Typed errors raised by the billing core.

Every error carries a machine-readable ``code`` so callers can map it to a
response without parsing messages. None of these are retried by the core.
"""

from __future__ import annotations


class TimebillError(Exception):
    code = "timebill_error"


class NotFoundError(TimebillError):
    code = "not_found"

    def __init__(self, entity: str, identifier: object) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class ImmutableStateError(TimebillError):
    code = "immutable_state"

    def __init__(self, entity: str, identifier: object, state: str, reason: str = "") -> None:
        self.entity = entity
        self.identifier = identifier
        self.state = state
        message = f"{entity} {identifier} is {state} and cannot be modified"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidTransitionError(TimebillError):
    code = "invalid_transition"

    def __init__(self, entity: str, identifier: object, current: str, target: str) -> None:
        self.entity = entity
        self.identifier = identifier
        self.current = current
        self.target = target
        super().__init__(f"{entity} {identifier}: illegal transition {current} -> {target}")


class ValidationError(TimebillError):
    code = "validation_error"


class PersistenceError(TimebillError):
    code = "persistence_error"


class ConcurrentModificationError(PersistenceError):
    code = "concurrent_modification"

    def __init__(self, entity: str, identifier: object) -> None:
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} was modified concurrently")
