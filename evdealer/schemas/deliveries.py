"""
Delivery Pydantic schemas.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from evdealer.database.models import Delivery, DeliveryStatus
from evdealer.schemas.orders import UserSummary


class DeliveryResponse(BaseModel):
    """Delivery projection with its order and customer."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_id: UUID
    order_number: Optional[str] = None
    customer: Optional[UserSummary] = None
    status: DeliveryStatus
    planned_date: Optional[datetime] = None
    actual_date: Optional[datetime] = None
    shipping_address: Optional[str] = None
    notes: Optional[str] = None
    staff_notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_delivery(cls, delivery: Delivery) -> "DeliveryResponse":
        order = delivery.order
        return cls(
            id=delivery.id,
            order_id=delivery.order_id,
            order_number=order.order_number if order else None,
            customer=(
                UserSummary.model_validate(order.customer)
                if order is not None and order.customer is not None
                else None
            ),
            status=delivery.status,
            planned_date=delivery.planned_date,
            actual_date=delivery.actual_date,
            shipping_address=delivery.shipping_address,
            notes=delivery.notes,
            staff_notes=delivery.staff_notes,
            created_at=delivery.created_at,
            updated_at=delivery.updated_at,
        )


class DeliveryCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    order_id: UUID
    shipping_address: str = Field(..., min_length=5, max_length=500)
    notes: Optional[str] = Field(None, max_length=2000)


class ConfirmDeliveryRequest(BaseModel):
    planned_date: datetime
    staff_notes: Optional[str] = Field(None, max_length=2000)


class DeliveryStatusUpdateRequest(BaseModel):
    status: DeliveryStatus
    planned_date: Optional[datetime] = None
    actual_date: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v):
        if isinstance(v, str):
            return DeliveryStatus.from_string(v)
        return v


class DeliveryFilter(BaseModel):
    status: Optional[DeliveryStatus] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    search_term: Optional[str] = Field(None, max_length=200)
