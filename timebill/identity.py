"""Identity collaborator.

The core trusts the employee id it is handed; this module only turns the
claims supplied by an outer authentication layer into an ``Actor``. Auth
configuration is an explicit object passed in at construction.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEVELOPMENT = "development"


class AuthConfig(BaseModel):
    signing_key: str
    environment: str = "production"
    dev_employee_id: int | None = None

    @property
    def dev_bypass_enabled(self) -> bool:
        return self.environment == DEVELOPMENT and self.dev_employee_id is not None


class Actor(BaseModel):
    employee_id: int
    user_id: int | None = None
    source: str = "service"


class IdentityResolver:
    def __init__(self, config: AuthConfig) -> None:
        self.config = config

    def resolve(self, claims: dict | None, source: str = "service") -> Actor | None:
        """Return the acting employee for already-verified ``claims``.

        Falls back to the configured development employee only when the
        environment is ``development``.
        """
        if claims and claims.get("employee_id") is not None:
            return Actor(
                employee_id=int(claims["employee_id"]),
                user_id=claims.get("user_id"),
                source=source,
            )
        if self.config.dev_bypass_enabled:
            logger.warning("Using development identity bypass (employee=%s)", self.config.dev_employee_id)
            return Actor(employee_id=self.config.dev_employee_id, source=source)
        logger.debug("No identity in claims")
        return None
