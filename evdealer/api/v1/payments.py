"""
Payment API endpoints.

Hosted checkout creation and reconciliation of Stripe payments against
invoices. Checkout and confirmation are rate limited per client.
"""

from uuid import UUID

from fastapi import APIRouter, Request

from evdealer.api.deps import AuthenticatedIdentity, CurrentIdentity, PaymentServiceDep
from evdealer.core.config import get_settings
from evdealer.core.logging import get_logger
from evdealer.core.rate_limit import limiter
from evdealer.schemas.orders import OrderResponse, PaymentResponse
from evdealer.schemas.payments import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    ConfirmCheckoutSessionRequest,
    ConfirmPaymentRequest,
)

logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/checkout-session",
    response_model=CheckoutSessionResponse,
    summary="Create a Stripe checkout session",
    description="Start hosted checkout for the unpaid invoice of an order",
)
@limiter.limit(settings.checkout_rate_limit)
async def create_checkout_session(
    request: Request,
    body: CheckoutSessionRequest,
    identity: CurrentIdentity,
    service: PaymentServiceDep,
) -> CheckoutSessionResponse:
    logger.info("Creating checkout session", order_id=str(body.order_id))
    return await service.create_checkout_session(identity, body.order_id)


@router.post(
    "/confirm",
    response_model=OrderResponse,
    summary="Confirm a payment",
    description="Reconcile a Stripe payment intent with its invoice and order",
)
@limiter.limit(settings.checkout_rate_limit)
async def confirm_payment(
    request: Request,
    body: ConfirmPaymentRequest,
    identity: AuthenticatedIdentity,
    service: PaymentServiceDep,
) -> OrderResponse:
    logger.info("Confirming payment", payment_intent_id=body.payment_intent_id)
    return await service.confirm_payment(body.payment_intent_id)


@router.post(
    "/checkout-session/confirm",
    response_model=OrderResponse,
    summary="Confirm a completed checkout session",
)
@limiter.limit(settings.checkout_rate_limit)
async def confirm_checkout_session(
    request: Request,
    body: ConfirmCheckoutSessionRequest,
    identity: AuthenticatedIdentity,
    service: PaymentServiceDep,
) -> OrderResponse:
    logger.info("Confirming checkout session", session_id=body.session_id)
    return await service.confirm_checkout_session(body.session_id)


@router.get(
    "/orders/{order_id}",
    response_model=PaymentResponse,
    summary="Get the payment of an order",
)
async def get_payment_for_order(
    order_id: UUID,
    identity: CurrentIdentity,
    service: PaymentServiceDep,
) -> PaymentResponse:
    return await service.get_payment_for_order(identity, order_id)
