"""
Payment service for checkout and payment reconciliation.

This module implements the PaymentService class. Checkout creates a hosted
Stripe Checkout Session for an order's invoice without recording anything
locally. Confirmation retrieves the authoritative payment intent from
Stripe and reconciles the local Payment, Invoice and Order: a succeeded
intent confirms the order, any other status records the failure, cancels
the order and restores its stock before the failure is reported.
"""

import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional
from urllib.parse import urlparse

from sqlalchemy.ext.asyncio import AsyncSession

from evdealer.core.clock import Clock, SystemClock
from evdealer.core.config import Settings, get_settings
from evdealer.core.exceptions import InvalidStateError, NotFoundError, PaymentGatewayError
from evdealer.core.identity import Identity
from evdealer.core.logging import get_logger
from evdealer.database.models import (
    Invoice,
    InvoiceStatus,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentStatus,
)
from evdealer.schemas.orders import OrderResponse, PaymentResponse
from evdealer.schemas.payments import CheckoutSessionResponse
from evdealer.services.access_policy import Action, check_access, resolve_actor
from evdealer.services.orders.service import OrderService
from evdealer.services.payments.stripe_client import StripeClient, get_stripe_client
from evdealer.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

INTENT_SUCCEEDED = "succeeded"
PAYMENT_METHOD_CARD = "card"
MAX_IMAGE_URL_LENGTH = 2000


def to_minor_units(amount: Decimal) -> int:
    """Convert a currency amount to integer cents, rounding half up."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def is_valid_image_url(url: Optional[str]) -> bool:
    """True for absolute http(s) URLs short enough to send to Stripe."""
    if not url or len(url) > MAX_IMAGE_URL_LENGTH:
        return False
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def build_line_item(item: OrderItem, currency: str) -> dict[str, Any]:
    """Build one checkout line item with inline price data."""
    vehicle = item.vehicle
    model_name = vehicle.model_name if vehicle else "Vehicle"
    trim_name = vehicle.trim_name if vehicle else ""

    product_data: dict[str, Any] = {"name": f"{model_name} - {trim_name}"}
    if vehicle is not None and vehicle.model_year:
        product_data["description"] = f"{vehicle.model_year} Model"
    if vehicle is not None and is_valid_image_url(vehicle.image_url):
        product_data["images"] = [vehicle.image_url]

    return {
        "price_data": {
            "currency": currency,
            "unit_amount": to_minor_units(item.unit_price),
            "product_data": product_data,
        },
        "quantity": 1,
    }


def _parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if value is None or value == "":
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _metadata_value(stripe_object: Any, key: str) -> Optional[str]:
    metadata = getattr(stripe_object, "metadata", None) or {}
    return metadata.get(key)


class PaymentService:
    """
    Checkout and payment reconciliation.

    Attributes:
        uow: Unit of work shared by all repositories
        stripe_client: Stripe API wrapper
        clock: Time source
        settings: Application settings
    """

    def __init__(
        self,
        session: AsyncSession,
        stripe_client: Optional[StripeClient] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize payment service.

        Args:
            session: Async database session
            stripe_client: Stripe client, the shared client by default
            clock: Time source, system clock by default
            settings: Application settings, process settings by default
        """
        self.uow = UnitOfWork(session)
        self.stripe_client = stripe_client or get_stripe_client()
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.order_service = OrderService(session, clock=self.clock, settings=self.settings)

    async def create_checkout_session(
        self, identity: Identity, order_id: uuid.UUID
    ) -> CheckoutSessionResponse:
        """
        Create a hosted checkout session for an order's invoice.

        No Payment row is created here; it is recorded when the payment
        is confirmed.

        Args:
            identity: Acting customer
            order_id: Order to pay for

        Returns:
            Checkout session id and hosted checkout URL

        Raises:
            NotFoundError: If the order does not exist
            ForbiddenError: If the order belongs to someone else
            InvalidStateError: If the order is cancelled, has no single
                invoice, or is already paid
            PaymentGatewayError: If Stripe fails
        """
        actor = await resolve_actor(self.uow.users, identity)
        order = await self.uow.orders.get_with_details(order_id, refresh=True)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))

        check_access(actor, Action.CREATE_CHECKOUT, owner_id=order.customer_id)

        if order.status == OrderStatus.CANCELLED:
            raise InvalidStateError(
                "Cannot create payment for cancelled order", order_id=str(order_id)
            )

        invoices = [i for i in order.invoices if not i.is_deleted]
        if not invoices:
            raise InvalidStateError(
                "Invoice not found for this order", order_id=str(order_id)
            )
        if len(invoices) > 1:
            raise InvalidStateError(
                "Order has more than one invoice",
                order_id=str(order_id),
                invoice_count=len(invoices),
            )
        invoice = invoices[0]

        if invoice.has_paid_payment:
            raise InvalidStateError(
                "This order has already been paid", order_id=str(order_id)
            )

        currency = self.settings.payment_currency
        line_items = [
            build_line_item(item, currency) for item in order.items if not item.is_deleted
        ]
        base_url = self.settings.app_base_url
        metadata = {"order_id": str(order.id), "invoice_id": str(invoice.id)}

        logger.info(
            "Creating checkout session",
            order_id=str(order.id),
            invoice_id=str(invoice.id),
            amount=str(invoice.total_amount),
            currency=currency,
        )

        checkout = await self.stripe_client.create_checkout_session(
            line_items=line_items,
            success_url=f"{base_url}/orders/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/orders/{order.id}",
            client_reference_id=str(order.id),
            metadata=metadata,
            customer_email=order.customer.email if order.customer else None,
            idempotency_key=f"invoice_{invoice.id}_checkout",
        )

        if not getattr(checkout, "url", None):
            logger.error("Checkout session has no URL", session_id=checkout.id)
            raise PaymentGatewayError(
                "Failed to create checkout session", order_id=str(order.id)
            )

        logger.info(
            "Checkout session ready",
            order_id=str(order.id),
            session_id=checkout.id,
        )
        return CheckoutSessionResponse(
            order_id=order.id, session_id=checkout.id, checkout_url=checkout.url
        )

    async def confirm_checkout_session(self, session_id: str) -> OrderResponse:
        """
        Reconcile the payment behind a completed checkout session.

        Raises:
            NotFoundError: If the session does not exist
            InvalidStateError: If the session carries no order or has no
                payment intent yet, or the payment failed
        """
        checkout = await self.stripe_client.retrieve_checkout_session(session_id)

        order_id = _metadata_value(checkout, "order_id")
        if not order_id:
            raise InvalidStateError(
                "Checkout session is not linked to an order", session_id=session_id
            )

        payment_intent = getattr(checkout, "payment_intent", None)
        if not payment_intent:
            logger.warning(
                "Checkout session has no payment intent",
                session_id=session_id,
                order_id=order_id,
            )
            raise InvalidStateError("Payment not completed", session_id=session_id)

        payment_intent_id = (
            payment_intent if isinstance(payment_intent, str) else payment_intent.id
        )
        invoice_id = _parse_uuid(_metadata_value(checkout, "invoice_id"))
        return await self.confirm_payment(payment_intent_id, invoice_id=invoice_id)

    async def confirm_payment(
        self, payment_intent_id: str, invoice_id: Optional[uuid.UUID] = None
    ) -> OrderResponse:
        """
        Reconcile a payment intent against its invoice.

        The intent status from Stripe is authoritative. A Payment row is
        recorded at most once per intent: a repeated confirmation returns
        the recorded outcome instead of creating another row.

        Args:
            payment_intent_id: Stripe payment intent identifier
            invoice_id: Invoice named by the checkout session; the intent's
                own metadata takes precedence

        Returns:
            Projection of the confirmed order

        Raises:
            NotFoundError: If Stripe does not know the intent
            InvalidStateError: If no unpaid invoice matches, the intent amount
                differs from the invoice total, or the payment did not
                succeed (the failure is committed first)
            PaymentGatewayError: If Stripe fails
        """
        logger.info("Confirming payment", payment_intent_id=payment_intent_id)

        intent = await self.stripe_client.retrieve_payment_intent(payment_intent_id)

        existing = await self.uow.payments.get_by_intent(payment_intent_id)
        if existing is not None:
            return await self._recorded_outcome(existing, intent.status)

        invoice = await self._locate_invoice(intent, payment_intent_id, invoice_id)
        self._check_amount(intent, invoice)
        order = invoice.order

        if invoice.status == InvoiceStatus.PAID or invoice.has_paid_payment:
            raise InvalidStateError(
                "This order has already been paid",
                invoice_id=str(invoice.id),
                payment_intent_id=payment_intent_id,
            )
        succeeded = intent.status == INTENT_SUCCEEDED
        if succeeded and order.status == OrderStatus.CANCELLED:
            raise InvalidStateError(
                "Cannot confirm payment for a cancelled order",
                order_id=str(order.id),
                payment_intent_id=payment_intent_id,
            )

        now = self.clock.now()
        payment = Payment(
            invoice_id=invoice.id,
            amount=invoice.total_amount,
            status=PaymentStatus.PENDING,
            payment_intent_id=payment_intent_id,
            transaction_id=self._transaction_id(intent),
            payment_method=PAYMENT_METHOD_CARD,
        )
        invoice.payments.append(payment)
        self.uow.payments.add(payment, now)

        if succeeded:
            payment.status = PaymentStatus.PAID
            payment.payment_date = now
            self.uow.invoices.update(invoice, now, status=InvoiceStatus.PAID)
            self.uow.orders.update(
                order, now, status=OrderStatus.CONFIRMED, confirmed_at=now
            )
            await self.uow.save_changes()

            logger.info(
                "Payment confirmed",
                payment_id=str(payment.id),
                invoice_id=str(invoice.id),
                order_id=str(order.id),
                amount=str(payment.amount),
            )
            return await self._project(order.id)

        await self._record_failure(payment, invoice, order, intent.status, now)
        raise InvalidStateError(
            f"Payment failed with status: {intent.status}",
            payment_intent_id=payment_intent_id,
            order_id=str(order.id),
        )

    async def get_payment_for_order(
        self, identity: Identity, order_id: uuid.UUID
    ) -> PaymentResponse:
        """
        Get the payment of an order: the Paid one, otherwise the latest.

        Raises:
            NotFoundError: If the order does not exist or has no payment
            ForbiddenError: If a customer asks about someone else's order
        """
        actor = await resolve_actor(self.uow.users, identity)
        order = await self.uow.orders.get_with_details(order_id, refresh=True)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))
        check_access(actor, Action.VIEW_ORDER, owner_id=order.customer_id)

        projection = OrderResponse.from_order(order)
        if projection.payment is None:
            raise NotFoundError("No payment found for this order", order_id=str(order_id))
        return projection.payment

    async def _locate_invoice(
        self,
        intent: Any,
        payment_intent_id: str,
        invoice_id: Optional[uuid.UUID],
    ) -> Invoice:
        # Intent metadata wins over the caller's hint
        invoice_id = _parse_uuid(_metadata_value(intent, "invoice_id")) or invoice_id

        if invoice_id is not None:
            invoice = await self.uow.invoices.get_for_reconciliation(invoice_id)
            if invoice is not None:
                return invoice
            logger.warning(
                "Invoice referenced by payment intent not found",
                payment_intent_id=payment_intent_id,
                invoice_id=str(invoice_id),
            )
        else:
            candidates = await self.uow.invoices.recent_unpaid(
                self.settings.invoice_match_window
            )
            for candidate in candidates:
                if candidate.has_payment_for_intent(payment_intent_id):
                    continue
                if to_minor_units(candidate.total_amount) != getattr(intent, "amount", None):
                    continue
                logger.info(
                    "Matched payment intent to recent unpaid invoice",
                    payment_intent_id=payment_intent_id,
                    invoice_id=str(candidate.id),
                )
                return candidate

        raise InvalidStateError(
            f"No unpaid invoice found for payment intent {payment_intent_id}",
            payment_intent_id=payment_intent_id,
        )

    @staticmethod
    def _check_amount(intent: Any, invoice: Invoice) -> None:
        expected = to_minor_units(invoice.total_amount)
        received = getattr(intent, "amount", None)
        if received != expected:
            logger.warning(
                "Payment intent amount does not match invoice total",
                payment_intent_id=intent.id,
                invoice_id=str(invoice.id),
                expected_amount=expected,
                intent_amount=received,
            )
            raise InvalidStateError(
                "Payment amount does not match the invoice total",
                payment_intent_id=intent.id,
                invoice_id=str(invoice.id),
            )

    async def _record_failure(
        self,
        payment: Payment,
        invoice: Invoice,
        order: Order,
        intent_status: str,
        now: datetime,
    ) -> None:
        payment.status = PaymentStatus.FAILED
        self.uow.invoices.update(invoice, now, status=InvoiceStatus.CANCELED)

        if order.status != OrderStatus.CANCELLED:
            self.uow.orders.update(order, now, status=OrderStatus.CANCELLED)
            order.append_note(f"Cancelled: payment {intent_status}")
            await self.order_service.restore_stock(order)

        await self.uow.save_changes()

        logger.warning(
            "Payment failed; order cancelled",
            payment_id=str(payment.id),
            invoice_id=str(invoice.id),
            order_id=str(order.id),
            intent_status=intent_status,
        )

    async def _recorded_outcome(self, payment: Payment, intent_status: str) -> OrderResponse:
        logger.info(
            "Payment intent already reconciled",
            payment_intent_id=payment.payment_intent_id,
            payment_status=payment.status.value,
        )
        if payment.status == PaymentStatus.PAID:
            return await self._project(payment.invoice.order_id)
        if payment.status == PaymentStatus.FAILED:
            raise InvalidStateError(
                f"Payment failed with status: {intent_status}",
                payment_intent_id=payment.payment_intent_id,
            )
        raise InvalidStateError(
            "Payment is still being processed",
            payment_intent_id=payment.payment_intent_id,
        )

    @staticmethod
    def _transaction_id(intent: Any) -> str:
        charge = getattr(intent, "latest_charge", None)
        if charge is not None and not isinstance(charge, str):
            charge = getattr(charge, "id", None)
        return charge or intent.id

    async def _project(self, order_id: uuid.UUID) -> OrderResponse:
        order = await self.uow.orders.get_with_details(order_id, refresh=True)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))
        return OrderResponse.from_order(order)
