"""
Feedback Pydantic schemas.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from evdealer.database.models import Feedback


class FeedbackResponse(BaseModel):
    """Feedback with its customer, order and resolver."""

    id: UUID
    customer_id: UUID
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    order_id: Optional[UUID] = None
    order_number: Optional[str] = None
    content: str
    is_resolved: bool
    resolved_by: Optional[UUID] = None
    resolver_name: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_feedback(cls, feedback: Feedback) -> "FeedbackResponse":
        customer = feedback.customer
        order = feedback.order
        resolver = feedback.resolver
        return cls(
            id=feedback.id,
            customer_id=feedback.customer_id,
            customer_name=customer.full_name if customer else None,
            customer_email=customer.email if customer else None,
            order_id=feedback.order_id,
            order_number=order.order_number if order else None,
            content=feedback.content,
            is_resolved=feedback.is_resolved,
            resolved_by=feedback.resolved_by,
            resolver_name=resolver.full_name if resolver else None,
            created_at=feedback.created_at,
            updated_at=feedback.updated_at,
        )


class FeedbackCreateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    content: str = Field(..., min_length=10, max_length=2000)
    order_id: Optional[UUID] = None


class FeedbackFilter(BaseModel):
    search_term: Optional[str] = Field(None, max_length=200)
    is_resolved: Optional[bool] = None
    customer_id: Optional[UUID] = None
    order_id: Optional[UUID] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
