"""
Acting user of a request.
"""

from dataclasses import dataclass

from campusdesk.config import ADMIN_ROLES
from campusdesk.core.exceptions import AuthorizationException


@dataclass(frozen=True)
class Actor:
    """The user performing an operation."""
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def require_admin(actor: Actor) -> Actor:
    """Raise unless the actor holds the admin or super-admin role."""
    if not actor.is_admin:
        raise AuthorizationException(
            "Only admins and super admins can perform this action",
            details={"role": actor.role}
        )
    return actor
