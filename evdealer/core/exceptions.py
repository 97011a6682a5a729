"""
Domain error taxonomy.

Every workflow error carries a human readable message plus structured
context used for logging. The HTTP layer maps each class onto a status
code in ``evdealer.main``; services never build HTTP responses.
"""

from typing import Any


class EVDealerError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(EVDealerError):
    """Raised when an entity is absent or soft-deleted."""

    pass


class UnauthorizedError(EVDealerError):
    """Raised when no authenticated identity is available."""

    pass


class ForbiddenError(EVDealerError):
    """Raised when the actor's role or ownership does not allow the action."""

    pass


class InvalidStateError(EVDealerError):
    """Raised when a business rule rejects the requested operation."""

    pass


class PersistenceError(EVDealerError):
    """Raised when the unit of work fails to commit and was rolled back."""

    pass


class ExternalServiceError(EVDealerError):
    """Raised when an outbound call to a third party fails."""

    retriable: bool = False


class PaymentGatewayError(ExternalServiceError):
    """Raised when the payment processor rejects or fails a request."""

    pass


class PaymentGatewayTimeoutError(PaymentGatewayError):
    """Raised on processor timeouts and network failures; safe to retry."""

    retriable = True
