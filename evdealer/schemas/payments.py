"""
Payment Pydantic schemas for checkout and reconciliation endpoints.
"""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CheckoutSessionRequest(BaseModel):
    order_id: UUID = Field(..., description="Order to pay for")


class CheckoutSessionResponse(BaseModel):
    """Hosted checkout page the customer is redirected to."""

    order_id: UUID
    session_id: str
    checkout_url: str


class ConfirmPaymentRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    payment_intent_id: str = Field(..., min_length=3, max_length=255)


class ConfirmCheckoutSessionRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    session_id: str = Field(..., min_length=3, max_length=255)
