"""
Tests for the Stripe client wrapper: retry policy and error translation.
"""

from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from evdealer.core.exceptions import NotFoundError, PaymentGatewayTimeoutError
from evdealer.services.payments.stripe_client import (
    StripeAuthenticationError,
    StripeClient,
    StripeClientError,
    StripeConnectionError,
    StripePaymentError,
    StripeRateLimitError,
)


@pytest.fixture
def client() -> StripeClient:
    return StripeClient(api_key="sk_test_client", timeout_seconds=5, max_retries=2)


@pytest.fixture
def no_sleep():
    with patch("evdealer.services.payments.stripe_client.time.sleep") as sleep:
        yield sleep


def intent(status: str = "succeeded") -> SimpleNamespace:
    return SimpleNamespace(id="pi_test_123", status=status)


class TestBackoff:
    def test_exponential_and_capped(self):
        client = StripeClient(
            api_key="sk_test_client",
            max_retries=5,
            initial_backoff=0.5,
            max_backoff=3.0,
            backoff_multiplier=2.0,
        )

        assert [client._calculate_backoff(n) for n in range(4)] == [0.5, 1.0, 2.0, 3.0]

    def test_zero_retries_is_respected(self):
        client = StripeClient(api_key="sk_test_client", max_retries=0)

        assert client.max_retries == 0


class TestRetrievePaymentIntent:
    async def test_success(self, client):
        with patch.object(stripe.PaymentIntent, "retrieve", return_value=intent()) as retrieve:
            result = await client.retrieve_payment_intent("pi_test_123")

        assert result.status == "succeeded"
        retrieve.assert_called_once_with("pi_test_123")

    async def test_retries_connection_errors(self, client, no_sleep):
        side_effect = [
            stripe.APIConnectionError("connection reset"),
            stripe.APIConnectionError("connection reset"),
            intent(),
        ]
        with patch.object(stripe.PaymentIntent, "retrieve", side_effect=side_effect) as retrieve:
            result = await client.retrieve_payment_intent("pi_test_123")

        assert result.id == "pi_test_123"
        assert retrieve.call_count == 3
        assert [c.args[0] for c in no_sleep.call_args_list] == [0.5, 1.0]

    async def test_connection_failure_after_retries(self, client, no_sleep):
        with patch.object(
            stripe.PaymentIntent,
            "retrieve",
            side_effect=stripe.APIConnectionError("timed out"),
        ) as retrieve:
            with pytest.raises(StripeConnectionError) as exc_info:
                await client.retrieve_payment_intent("pi_test_123")

        assert retrieve.call_count == 3
        assert isinstance(exc_info.value, PaymentGatewayTimeoutError)
        assert exc_info.value.retriable is True

    async def test_rate_limit_after_retries(self, client, no_sleep):
        with patch.object(
            stripe.PaymentIntent, "retrieve", side_effect=stripe.RateLimitError("slow down")
        ):
            with pytest.raises(StripeRateLimitError):
                await client.retrieve_payment_intent("pi_test_123")

        assert no_sleep.call_count == 2

    async def test_server_error_is_retried(self, client, no_sleep):
        side_effect = [stripe.APIError("internal error"), intent("processing")]
        with patch.object(stripe.PaymentIntent, "retrieve", side_effect=side_effect):
            result = await client.retrieve_payment_intent("pi_test_123")

        assert result.status == "processing"

    async def test_missing_intent_is_not_found(self, client, no_sleep):
        error = stripe.InvalidRequestError(
            "No such payment_intent: 'pi_missing'", "intent", code="resource_missing"
        )
        with patch.object(stripe.PaymentIntent, "retrieve", side_effect=error) as retrieve:
            with pytest.raises(NotFoundError, match="Payment record not found"):
                await client.retrieve_payment_intent("pi_missing")

        assert retrieve.call_count == 1
        no_sleep.assert_not_called()

    async def test_invalid_request_is_not_retried(self, client, no_sleep):
        error = stripe.InvalidRequestError("Invalid id", "intent", code="parameter_invalid")
        with patch.object(stripe.PaymentIntent, "retrieve", side_effect=error):
            with pytest.raises(StripeClientError) as exc_info:
                await client.retrieve_payment_intent("bad id")

        assert exc_info.value.code == "parameter_invalid"
        assert exc_info.value.stripe_error is error
        no_sleep.assert_not_called()

    async def test_authentication_error(self, client):
        with patch.object(
            stripe.PaymentIntent,
            "retrieve",
            side_effect=stripe.AuthenticationError("Invalid API key"),
        ):
            with pytest.raises(StripeAuthenticationError):
                await client.retrieve_payment_intent("pi_test_123")

    async def test_card_error(self, client):
        error = stripe.CardError("Your card was declined", "card", "card_declined")
        with patch.object(stripe.PaymentIntent, "retrieve", side_effect=error):
            with pytest.raises(StripePaymentError, match="Card error"):
                await client.retrieve_payment_intent("pi_test_123")


class TestCheckoutSessions:
    async def test_create_passes_metadata_to_intent(self, client):
        session = SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.com/x")
        metadata = {"order_id": "o-1", "invoice_id": "i-1"}
        with patch.object(stripe.checkout.Session, "create", return_value=session) as create:
            result = await client.create_checkout_session(
                line_items=[{"quantity": 1}],
                success_url="https://shop.example.com/ok",
                cancel_url="https://shop.example.com/cancel",
                client_reference_id="o-1",
                metadata=metadata,
                customer_email="casey@example.com",
                idempotency_key="invoice_i-1_checkout",
            )

        assert result is session
        kwargs = create.call_args.kwargs
        assert kwargs["mode"] == "payment"
        assert kwargs["payment_method_types"] == ["card"]
        assert kwargs["metadata"] == metadata
        assert kwargs["payment_intent_data"] == {"metadata": metadata}
        assert kwargs["customer_email"] == "casey@example.com"
        assert kwargs["idempotency_key"] == "invoice_i-1_checkout"

    async def test_create_omits_empty_optional_params(self, client):
        session = SimpleNamespace(id="cs_test_456", url="https://checkout.stripe.com/y")
        with patch.object(stripe.checkout.Session, "create", return_value=session) as create:
            await client.create_checkout_session(
                line_items=[],
                success_url="https://shop.example.com/ok",
                cancel_url="https://shop.example.com/cancel",
                client_reference_id="o-2",
                metadata={},
            )

        kwargs = create.call_args.kwargs
        assert "customer_email" not in kwargs
        assert "idempotency_key" not in kwargs

    async def test_retrieve_expands_payment_intent(self, client):
        session = SimpleNamespace(id="cs_test_123", payment_intent=None)
        with patch.object(stripe.checkout.Session, "retrieve", return_value=session) as retrieve:
            await client.retrieve_checkout_session("cs_test_123")

        retrieve.assert_called_once_with("cs_test_123", expand=["payment_intent"])
