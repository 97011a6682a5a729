"""
Delivery model.

A delivery is created only by a customer request after the order is
confirmed, then scheduled and progressed by staff.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from evdealer.database.base import AuditedModel, UTCDateTime, create_table_args, enum_type

if TYPE_CHECKING:
    from evdealer.database.models.order import Order


class DeliveryStatus(str, Enum):
    """
    Delivery status enumeration.

    Valid transitions:
    - PENDING -> SCHEDULED, CANCELLED
    - SCHEDULED -> IN_TRANSIT, CANCELLED
    - IN_TRANSIT -> DELIVERED
    - DELIVERED, CANCELLED -> (terminal)
    """

    PENDING = "pending"
    SCHEDULED = "scheduled"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "DeliveryStatus":
        try:
            return cls(value.lower())
        except ValueError:
            raise ValueError(f"Invalid delivery status: {value}")

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED)

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").title()


class Delivery(AuditedModel):
    """
    Delivery of a confirmed order.

    Attributes:
        order_id: Delivered order (one live delivery per order)
        status: Delivery status
        planned_date: Date scheduled by staff
        actual_date: Date the vehicle was handed over
        shipping_address: Address supplied by the customer
        notes: Customer notes
        staff_notes: Staff notes
    """

    __tablename__ = "deliveries"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[DeliveryStatus] = mapped_column(
        enum_type(DeliveryStatus, "delivery_status"),
        nullable=False,
        default=DeliveryStatus.PENDING,
        index=True,
    )

    planned_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    actual_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    shipping_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    staff_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    order: Mapped["Order"] = relationship(back_populates="delivery")

    __table_args__ = create_table_args(
        Index("ix_deliveries_created_at", "created_at"),
        # One live delivery per order; soft-deleted rows do not count
        Index(
            "uq_deliveries_order_id_active",
            "order_id",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
        comment="Deliveries requested by customers",
    )
