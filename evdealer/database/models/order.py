"""
Order and OrderItem models.

An order is created Pending with exactly one item and one invoice. It is
Confirmed once its payment succeeds and is Cancelled only before payment.
There is no later order status; delivery and feedback track progress
after confirmation.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from evdealer.database.base import AuditedModel, UTCDateTime, create_table_args, enum_type

if TYPE_CHECKING:
    from evdealer.database.models.delivery import Delivery
    from evdealer.database.models.feedback import Feedback
    from evdealer.database.models.invoice import Invoice
    from evdealer.database.models.user import User
    from evdealer.database.models.vehicle import Vehicle


class OrderStatus(str, Enum):
    """
    Order status enumeration.

    Attributes:
        PENDING: Order created, stock reserved, awaiting payment
        CONFIRMED: Payment received; permanent
        CANCELLED: Cancelled before payment; stock restored
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """
        Create OrderStatus from string value.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join(s.value for s in cls)
            raise ValueError(
                f"Invalid order status: {value}. Valid values are: {valid_values}"
            )

    @property
    def is_terminal(self) -> bool:
        return self == OrderStatus.CANCELLED


class Order(AuditedModel):
    """
    Customer order for a single vehicle.

    Attributes:
        customer_id: Customer who placed the order
        staff_id: Staff member assigned to the order
        order_number: Human readable number, ORD-yyyyMMdd-NNNN
        status: Current order status
        total_amount: Sum of item unit prices frozen at creation
        notes: Append-only, newline separated notes
        confirmed_at: When the order was confirmed by a successful payment
    """

    __tablename__ = "orders"

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Customer who placed the order",
    )

    staff_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Assigned dealership staff member",
    )

    order_number: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Human readable order number",
    )

    status: Mapped[OrderStatus] = mapped_column(
        enum_type(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
        comment="Current order status",
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Order total frozen at creation",
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="Timestamp of payment confirmation",
    )

    customer: Mapped["User"] = relationship(foreign_keys=[customer_id])
    staff: Mapped[Optional["User"]] = relationship(foreign_keys=[staff_id])

    items: Mapped[list["OrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )

    invoices: Mapped[list["Invoice"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="Invoice.created_at",
    )

    delivery: Mapped[Optional["Delivery"]] = relationship(
        back_populates="order",
        uselist=False,
        primaryjoin="and_(Order.id == Delivery.order_id, Delivery.deleted_at.is_(None))",
    )

    feedbacks: Mapped[list["Feedback"]] = relationship(back_populates="order")

    __table_args__ = create_table_args(
        CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
        Index("ix_orders_created_at", "created_at"),
        Index("ix_orders_customer_status", "customer_id", "status"),
        comment="Customer orders",
    )

    def append_note(self, note: Optional[str]) -> None:
        """Append a line to the notes log; blank notes are ignored."""
        if not note or not note.strip():
            return
        self.notes = f"{self.notes}\n{note}" if self.notes else note

    @property
    def has_paid_payment(self) -> bool:
        """True when any payment under any invoice is Paid. Requires loaded payments."""
        return any(invoice.has_paid_payment for invoice in self.invoices)


class OrderItem(AuditedModel):
    """
    Line item of an order.

    ``unit_price`` is a snapshot of the vehicle price at order time and is
    never recomputed.
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    vehicle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("vehicles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Vehicle price captured at order time",
    )

    order: Mapped["Order"] = relationship(back_populates="items")
    vehicle: Mapped["Vehicle"] = relationship()

    __table_args__ = create_table_args(
        CheckConstraint("unit_price >= 0", name="ck_order_items_unit_price_non_negative"),
        comment="Order line items",
    )
