"""Actors and booking-scoped roles."""

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from rentflow.core.exceptions import Forbidden
from rentflow.domain.booking_state import ADMIN, OWNER, RENTER, SYSTEM


class UserRole(str, Enum):
    """Role claim issued by the identity provider."""

    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller of a booking operation."""

    id: UUID | None
    role: UserRole = UserRole.USER
    is_system: bool = field(default=False)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def booking_roles(self, renter_id: UUID, owner_id: UUID) -> set[str]:
        """Roles this actor holds on a particular booking."""
        roles: set[str] = set()
        if self.is_system:
            roles.add(SYSTEM)
        if self.is_admin:
            roles.add(ADMIN)
        if self.id is not None and self.id == renter_id:
            roles.add(RENTER)
        if self.id is not None and self.id == owner_id:
            roles.add(OWNER)
        return roles


SYSTEM_ACTOR = Actor(id=None, is_system=True)


def require_booking_role(
    actor: Actor,
    renter_id: UUID,
    owner_id: UUID,
    allowed: frozenset[str] | set[str],
    action: str,
) -> str:
    """Return the first role that permits the action, or raise Forbidden."""
    roles = actor.booking_roles(renter_id, owner_id)
    for role in (SYSTEM, ADMIN, RENTER, OWNER):
        if role in roles and role in allowed:
            return role
    required = " or ".join(sorted(allowed))
    raise Forbidden(f"Only {required} can {action.replace('_', ' ')}", required_role=required)
