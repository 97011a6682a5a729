"""
Stripe API client wrapper with error handling and retry logic.

The Stripe SDK is synchronous. Each public coroutine runs the SDK call in
a worker thread with a bounded request timeout and retries transient
failures (connection problems, rate limits, server errors) with
exponential backoff. Failures surface as payment gateway errors from
``evdealer.core.exceptions`` so the HTTP layer can map them without
knowing about Stripe.
"""

import asyncio
import time
from functools import lru_cache
from typing import Any, Optional

import stripe

from evdealer.core.config import get_settings
from evdealer.core.exceptions import (
    NotFoundError,
    PaymentGatewayError,
    PaymentGatewayTimeoutError,
)
from evdealer.core.logging import get_logger

logger = get_logger(__name__)


class StripeClientError(PaymentGatewayError):
    """Base exception for Stripe client errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        stripe_error: Optional[stripe.StripeError] = None,
        **context: Any,
    ):
        super().__init__(message, code=code, **context)
        self.code = code
        self.stripe_error = stripe_error


class StripePaymentError(StripeClientError):
    """Exception for card and payment processing errors."""

    pass


class StripeAuthenticationError(StripeClientError):
    """Exception for authentication errors."""

    pass


class StripeRateLimitError(StripeClientError):
    """Exception for rate limit errors."""

    retriable = True


class StripeConnectionError(StripeClientError, PaymentGatewayTimeoutError):
    """Exception for timeouts and connection errors."""

    pass


class StripeClient:
    """
    Stripe API client for hosted checkout and payment intent lookups.

    Attributes:
        api_key: Stripe secret API key
        timeout_seconds: Per-request timeout
        max_retries: Retries for transient failures
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        initial_backoff: float = 0.5,
        max_backoff: float = 8.0,
        backoff_multiplier: float = 2.0,
    ):
        """
        Initialize Stripe client with configuration.

        Args:
            api_key: Stripe secret API key (defaults to settings)
            api_base: Alternative API base URL, e.g. for stripe-mock
            timeout_seconds: Request timeout (defaults to settings)
            max_retries: Maximum number of retry attempts (defaults to settings)
            initial_backoff: Initial backoff delay in seconds
            max_backoff: Maximum backoff delay in seconds
            backoff_multiplier: Backoff multiplier for exponential backoff
        """
        settings = get_settings()
        self.api_key = api_key or settings.stripe_secret_key
        self.timeout_seconds = timeout_seconds or settings.stripe_timeout_seconds
        self.max_retries = (
            max_retries if max_retries is not None else settings.stripe_max_retries
        )
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier

        stripe.api_key = self.api_key
        stripe.max_network_retries = 0
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout_seconds)
        api_base = api_base or settings.stripe_api_base
        if api_base:
            stripe.api_base = api_base

        logger.info(
            "Stripe client initialized",
            max_retries=self.max_retries,
            timeout_seconds=self.timeout_seconds,
        )

    def _calculate_backoff(self, attempt: int) -> float:
        return min(
            self.initial_backoff * (self.backoff_multiplier**attempt),
            self.max_backoff,
        )

    def _should_retry(self, error: stripe.StripeError, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return isinstance(
            error, (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError)
        )

    def _execute_with_retry(
        self,
        operation: str,
        func: Any,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Execute a Stripe API call with exponential backoff retry logic.

        Args:
            operation: Operation name for logging
            func: Stripe API function to execute
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result from Stripe API call

        Raises:
            NotFoundError: If Stripe reports the resource as missing
            StripeConnectionError: On timeouts or network failures after retries
            StripeClientError: For any other Stripe failure
        """
        last_error: Optional[stripe.StripeError] = None

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(
                    "Executing Stripe operation",
                    operation=operation,
                    attempt=attempt,
                )
                result = func(*args, **kwargs)
                if attempt > 0:
                    logger.info(
                        "Stripe operation succeeded after retry",
                        operation=operation,
                        attempt=attempt,
                    )
                return result

            except stripe.AuthenticationError as e:
                logger.error(
                    "Stripe authentication error", operation=operation, code=e.code
                )
                raise StripeAuthenticationError(
                    "Payment processor authentication failed",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except stripe.CardError as e:
                logger.warning(
                    "Stripe card error",
                    operation=operation,
                    code=e.code,
                    decline_code=getattr(e, "decline_code", None),
                )
                raise StripePaymentError(
                    f"Card error: {e.user_message or 'the card was declined'}",
                    code=e.code,
                    stripe_error=e,
                ) from e

            except stripe.InvalidRequestError as e:
                if e.code == "resource_missing":
                    logger.info(
                        "Stripe resource not found", operation=operation, param=e.param
                    )
                    raise NotFoundError(
                        "Payment record not found", operation=operation
                    ) from e
                logger.error(
                    "Stripe invalid request",
                    operation=operation,
                    error=str(e),
                    code=e.code,
                    param=e.param,
                )
                raise StripeClientError(
                    "Payment processor rejected the request",
                    code=e.code,
                    stripe_error=e,
                    param=e.param,
                ) from e

            except stripe.RateLimitError as e:
                last_error = e
                if not self._should_retry(e, attempt):
                    logger.error(
                        "Stripe rate limit exceeded", operation=operation, attempt=attempt
                    )
                    raise StripeRateLimitError(
                        "Payment processor rate limit exceeded",
                        code=e.code,
                        stripe_error=e,
                    ) from e
                self._wait_before_retry(operation, attempt, "rate_limit")

            except stripe.APIConnectionError as e:
                last_error = e
                if not self._should_retry(e, attempt):
                    logger.error(
                        "Stripe connection error",
                        operation=operation,
                        error=str(e),
                        attempt=attempt,
                    )
                    raise StripeConnectionError(
                        "Payment processor did not respond in time",
                        code=e.code,
                        stripe_error=e,
                    ) from e
                self._wait_before_retry(operation, attempt, "connection")

            except stripe.APIError as e:
                last_error = e
                if not self._should_retry(e, attempt):
                    logger.error(
                        "Stripe API error",
                        operation=operation,
                        error=str(e),
                        code=e.code,
                        attempt=attempt,
                    )
                    raise StripeClientError(
                        "Payment processor error",
                        code=e.code,
                        stripe_error=e,
                    ) from e
                self._wait_before_retry(operation, attempt, "api")

            except stripe.StripeError as e:
                logger.error(
                    "Unexpected Stripe error",
                    operation=operation,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise StripeClientError(
                    "Payment processor error",
                    code=getattr(e, "code", None),
                    stripe_error=e,
                ) from e

        logger.error(
            "Stripe operation failed after all retries",
            operation=operation,
            max_retries=self.max_retries,
            last_error=str(last_error),
        )
        raise StripeClientError(
            f"Operation failed after {self.max_retries} retries",
            stripe_error=last_error,
        )

    def _wait_before_retry(self, operation: str, attempt: int, reason: str) -> None:
        backoff = self._calculate_backoff(attempt)
        logger.warning(
            "Transient Stripe error, retrying",
            operation=operation,
            reason=reason,
            attempt=attempt,
            backoff_seconds=backoff,
        )
        time.sleep(backoff)

    async def _call(self, operation: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        return await asyncio.to_thread(
            self._execute_with_retry, operation, func, *args, **kwargs
        )

    async def create_checkout_session(
        self,
        line_items: list[dict[str, Any]],
        success_url: str,
        cancel_url: str,
        client_reference_id: str,
        metadata: dict[str, str],
        customer_email: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> stripe.checkout.Session:
        """
        Create a hosted checkout session for a one-off card payment.

        Args:
            line_items: Checkout line items with inline price data
            success_url: Redirect after payment; may contain {CHECKOUT_SESSION_ID}
            cancel_url: Redirect when the customer abandons checkout
            client_reference_id: Order identifier
            metadata: Copied onto the session and its payment intent
            customer_email: Prefills the checkout email field
            idempotency_key: Idempotency key for safe retries

        Returns:
            Stripe checkout Session object
        """
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": client_reference_id,
            "metadata": metadata,
            "payment_intent_data": {"metadata": dict(metadata)},
        }
        if customer_email:
            params["customer_email"] = customer_email
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        logger.info(
            "Creating checkout session",
            client_reference_id=client_reference_id,
            line_items=len(line_items),
        )

        session = await self._call(
            "create_checkout_session", stripe.checkout.Session.create, **params
        )

        logger.info(
            "Checkout session created",
            session_id=session.id,
            client_reference_id=client_reference_id,
        )
        return session

    async def retrieve_checkout_session(self, session_id: str) -> stripe.checkout.Session:
        """Retrieve a checkout session with its payment intent expanded."""
        return await self._call(
            "retrieve_checkout_session",
            stripe.checkout.Session.retrieve,
            session_id,
            expand=["payment_intent"],
        )

    async def retrieve_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        """
        Retrieve a payment intent by ID.

        Raises:
            NotFoundError: If the intent does not exist
            StripeClientError: If retrieval fails
        """
        payment_intent = await self._call(
            "retrieve_payment_intent",
            stripe.PaymentIntent.retrieve,
            payment_intent_id,
        )
        logger.debug(
            "Payment intent retrieved",
            payment_intent_id=payment_intent.id,
            status=payment_intent.status,
        )
        return payment_intent


@lru_cache
def get_stripe_client() -> StripeClient:
    """
    Get the configured Stripe client instance.

    Returns:
        Shared StripeClient instance
    """
    return StripeClient()
