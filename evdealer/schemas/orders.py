"""
Order Pydantic schemas for API request/response validation.

``OrderResponse.from_order`` builds the read-model projection from a
fully loaded order graph: customer, staff, items with vehicles, invoices
with payments, and the delivery. Payment and delivery highlights are
flattened onto the order for convenience.
"""

from datetime import datetime
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from evdealer.database.models import (
    Delivery,
    DeliveryStatus,
    Invoice,
    InvoiceStatus,
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    User,
    UserRole,
)

ItemT = TypeVar("ItemT")


class PagedResponse(BaseModel, Generic[ItemT]):
    """Single page of a listing."""

    items: List[ItemT]
    total_count: int
    page: int
    page_size: int

    @computed_field
    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size


class UserSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    full_name: str
    email: str
    phone_number: Optional[str] = None
    role: UserRole


class VehicleSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    model_name: str
    trim_name: str
    model_year: Optional[int] = None
    base_price: Decimal
    image_url: Optional[str] = None
    stock: int
    is_active: bool


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    vehicle_id: UUID
    unit_price: Decimal
    vehicle: Optional[VehicleSummary] = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_id: UUID
    amount: Decimal
    status: PaymentStatus
    payment_date: Optional[datetime] = None
    payment_intent_id: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_method: Optional[str] = None
    created_at: datetime


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    customer_id: UUID
    invoice_number: str
    total_amount: Decimal
    status: InvoiceStatus
    notes: Optional[str] = None
    created_at: datetime
    payments: List[PaymentResponse] = Field(default_factory=list)

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "InvoiceResponse":
        return cls(
            id=invoice.id,
            order_id=invoice.order_id,
            customer_id=invoice.customer_id,
            invoice_number=invoice.invoice_number,
            total_amount=invoice.total_amount,
            status=invoice.status,
            notes=invoice.notes,
            created_at=invoice.created_at,
            payments=[
                PaymentResponse.model_validate(p)
                for p in invoice.payments
                if not p.is_deleted
            ],
        )


class DeliverySummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: DeliveryStatus
    planned_date: Optional[datetime] = None
    actual_date: Optional[datetime] = None
    shipping_address: Optional[str] = None
    notes: Optional[str] = None
    staff_notes: Optional[str] = None
    created_at: datetime


class OrderResponse(BaseModel):
    """Order projection returned by order reads and payment confirmation."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    status: OrderStatus
    total_amount: Decimal
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    customer_id: UUID
    customer: Optional[UserSummary] = None
    staff_id: Optional[UUID] = None
    staff: Optional[UserSummary] = None

    items: List[OrderItemResponse] = Field(default_factory=list)
    invoice: Optional[InvoiceResponse] = None
    payment: Optional[PaymentResponse] = None
    delivery: Optional[DeliverySummary] = None

    # Flattened highlights
    payment_status: Optional[PaymentStatus] = None
    payment_date: Optional[datetime] = None
    delivery_status: Optional[DeliveryStatus] = None
    delivery_planned_date: Optional[datetime] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        """
        Project a loaded order graph.

        The payment shown is the Paid one when present, otherwise the most
        recent attempt. Soft-deleted rows are left out.
        """
        invoices = [i for i in order.invoices if not i.is_deleted]
        invoice = invoices[0] if invoices else None
        payment = _select_payment(invoice) if invoice is not None else None
        delivery: Optional[Delivery] = order.delivery
        if delivery is not None and delivery.is_deleted:
            delivery = None

        return cls(
            id=order.id,
            order_number=order.order_number,
            status=order.status,
            total_amount=order.total_amount,
            notes=order.notes,
            created_at=order.created_at,
            updated_at=order.updated_at,
            confirmed_at=order.confirmed_at,
            customer_id=order.customer_id,
            customer=_user_summary(order.customer),
            staff_id=order.staff_id,
            staff=_user_summary(order.staff),
            items=[
                OrderItemResponse.model_validate(item)
                for item in order.items
                if not item.is_deleted
            ],
            invoice=InvoiceResponse.from_invoice(invoice) if invoice else None,
            payment=PaymentResponse.model_validate(payment) if payment else None,
            delivery=DeliverySummary.model_validate(delivery) if delivery else None,
            payment_status=payment.status if payment else None,
            payment_date=payment.payment_date if payment else None,
            delivery_status=delivery.status if delivery else None,
            delivery_planned_date=delivery.planned_date if delivery else None,
        )


def _user_summary(user: Optional[User]) -> Optional[UserSummary]:
    return UserSummary.model_validate(user) if user is not None else None


def _select_payment(invoice: Invoice) -> Optional[Payment]:
    payments = [p for p in invoice.payments if not p.is_deleted]
    for payment in payments:
        if payment.status == PaymentStatus.PAID:
            return payment
    return payments[-1] if payments else None


class OrderCreateRequest(BaseModel):
    """Order placement request."""

    model_config = ConfigDict(str_strip_whitespace=True)

    vehicle_id: UUID = Field(..., description="Vehicle to order")
    notes: Optional[str] = Field(None, max_length=2000, description="Order notes")


class OrderCreatedResponse(BaseModel):
    order_id: UUID


class OrderCancelRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    reason: str = Field(..., min_length=1, max_length=1000)


class OrderStatusUpdateRequest(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v):
        if isinstance(v, str):
            return OrderStatus.from_string(v)
        return v


class AssignStaffRequest(BaseModel):
    staff_id: UUID


class OrderFilter(BaseModel):
    """Filters for the staff order listing."""

    customer_id: Optional[UUID] = None
    staff_id: Optional[UUID] = None
    status: Optional[OrderStatus] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    search_term: Optional[str] = Field(None, max_length=200)
