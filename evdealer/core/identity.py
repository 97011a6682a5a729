"""
Acting principal for a workflow call.

The HTTP layer builds an Identity from the bearer token; services resolve
it against the stored user so a stale role claim never grants access.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from evdealer.database.models.user import UserRole


@dataclass(frozen=True)
class Identity:
    """Identifier and role of the caller. ``user_id`` is None when anonymous."""

    user_id: Optional[UUID]
    role: Optional[UserRole] = None

    @classmethod
    def anonymous(cls) -> "Identity":
        return cls(user_id=None, role=None)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_staff(self) -> bool:
        return self.role is not None and self.role.is_staff

    @property
    def is_customer(self) -> bool:
        return self.role == UserRole.CUSTOMER
