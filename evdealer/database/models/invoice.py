"""
Invoice and Payment models.

One invoice is issued per order at creation time. Payments are created
lazily when a processor confirmation arrives, never at checkout time.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from evdealer.database.base import AuditedModel, UTCDateTime, create_table_args, enum_type

if TYPE_CHECKING:
    from evdealer.database.models.order import Order
    from evdealer.database.models.user import User


class InvoiceStatus(str, Enum):
    """Invoice status enumeration."""

    PENDING = "pending"
    UNPAID = "unpaid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELED = "canceled"


class PaymentStatus(str, Enum):
    """Payment status enumeration."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class Invoice(AuditedModel):
    """
    Invoice issued for an order.

    Attributes:
        order_id: Invoiced order
        customer_id: Redundant customer reference for querying
        invoice_number: Human readable number, INV-yyyyMMdd-NNNN
        total_amount: Mirrors the order total at creation
        status: Invoice status
        notes: Free text notes
    """

    __tablename__ = "invoices"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    invoice_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        enum_type(InvoiceStatus, "invoice_status"),
        nullable=False,
        default=InvoiceStatus.PENDING,
        index=True,
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    order: Mapped["Order"] = relationship(back_populates="invoices")
    customer: Mapped["User"] = relationship()
    payments: Mapped[list["Payment"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Payment.created_at",
    )

    __table_args__ = create_table_args(
        CheckConstraint("total_amount >= 0", name="ck_invoices_total_non_negative"),
        Index("ix_invoices_status_created_at", "status", "created_at"),
        comment="Invoices issued per order",
    )

    @property
    def has_paid_payment(self) -> bool:
        return any(
            payment.status == PaymentStatus.PAID and not payment.is_deleted
            for payment in self.payments
        )

    def has_payment_for_intent(self, payment_intent_id: str) -> bool:
        return any(p.payment_intent_id == payment_intent_id for p in self.payments)


class Payment(AuditedModel):
    """
    Payment recorded against an invoice.

    At most one payment row exists per processor payment intent.
    """

    __tablename__ = "payments"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        enum_type(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )

    payment_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Processor payment intent identifier",
    )

    transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    payment_method: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    invoice: Mapped["Invoice"] = relationship(back_populates="payments")

    __table_args__ = create_table_args(
        CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
        comment="Payments reconciled from the payment processor",
    )
