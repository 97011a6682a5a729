"""
User model for customers and dealership staff.

Credential issuance is handled outside this service; ``password_hash`` is
stored opaquely and never read by the workflows.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from evdealer.database.base import AuditedModel, create_table_args, enum_type


class UserRole(str, Enum):
    """
    Role of a user account.

    Attributes:
        CUSTOMER: Buys vehicles, requests deliveries, leaves feedback
        DEALER_STAFF: Processes orders and schedules deliveries
        DEALER_MANAGER: Staff capabilities plus feedback resolution
    """

    CUSTOMER = "customer"
    DEALER_STAFF = "dealer_staff"
    DEALER_MANAGER = "dealer_manager"

    @classmethod
    def from_string(cls, value: str) -> "UserRole":
        """
        Create UserRole from string value.

        Raises:
            ValueError: If value is not a valid role
        """
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Invalid user role: {value}")

    @property
    def is_staff(self) -> bool:
        """Staff and managers share dealership capabilities."""
        return self in (UserRole.DEALER_STAFF, UserRole.DEALER_MANAGER)


class User(AuditedModel):
    """
    Dealership user account.

    Attributes:
        email: Unique login email
        full_name: Display name
        phone_number: Optional contact number
        password_hash: Opaque credential hash
        role: Account role
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="User email address",
    )

    full_name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="User full name",
    )

    phone_number: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        comment="Contact phone number",
    )

    password_hash: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Opaque password hash",
    )

    role: Mapped[UserRole] = mapped_column(
        enum_type(UserRole, "user_role"),
        nullable=False,
        default=UserRole.CUSTOMER,
        comment="Account role",
    )

    __table_args__ = create_table_args(
        Index("ix_users_role", "role"),
        comment="Customer and dealership staff accounts",
    )

    @property
    def is_staff(self) -> bool:
        return self.role.is_staff
