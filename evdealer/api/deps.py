"""
FastAPI dependencies for authentication and service construction.

The bearer token is decoded into an Identity only; services resolve the
identity against the stored user, so role and account checks live there.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from evdealer.core.clock import Clock, get_clock
from evdealer.core.config import Settings, get_settings
from evdealer.core.exceptions import UnauthorizedError
from evdealer.core.identity import Identity
from evdealer.core.logging import get_logger, set_user_id
from evdealer.database.connection import get_db
from evdealer.database.models.user import UserRole
from evdealer.services.analytics.service import AnalyticsService
from evdealer.services.deliveries.service import DeliveryService
from evdealer.services.feedback.service import FeedbackService
from evdealer.services.orders.service import OrderService
from evdealer.services.payments.service import PaymentService
from evdealer.services.payments.stripe_client import StripeClient, get_stripe_client

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)

DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
AppClock = Annotated[Clock, Depends(get_clock)]


async def get_identity(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    settings: AppSettings,
) -> Identity:
    """
    Decode the bearer token into the caller's identity.

    A request without credentials is anonymous; workflows that need an
    authenticated caller reject it themselves.

    Raises:
        UnauthorizedError: If a token is present but invalid
    """
    if credentials is None:
        return Identity.anonymous()

    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        logger.warning(
            "Authentication failed: JWT validation error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise UnauthorizedError("Could not validate credentials")

    subject = payload.get("sub")
    if subject is None:
        logger.warning("Authentication failed: Token missing 'sub' claim")
        raise UnauthorizedError("Could not validate credentials")

    try:
        user_id = UUID(str(subject))
    except ValueError:
        logger.warning("Authentication failed: Invalid user ID format", user_id=subject)
        raise UnauthorizedError("Could not validate credentials")

    role: Optional[UserRole] = None
    role_claim = payload.get("role")
    if role_claim:
        try:
            role = UserRole.from_string(str(role_claim))
        except ValueError:
            logger.warning("Ignoring unknown role claim", role=role_claim)

    set_user_id(str(user_id))
    return Identity(user_id=user_id, role=role)


CurrentIdentity = Annotated[Identity, Depends(get_identity)]


async def require_authenticated(identity: CurrentIdentity) -> Identity:
    """
    Reject anonymous callers.

    Raises:
        UnauthorizedError: If no valid token was presented
    """
    if not identity.is_authenticated:
        raise UnauthorizedError("Authentication required")
    return identity


AuthenticatedIdentity = Annotated[Identity, Depends(require_authenticated)]
StripeClientDep = Annotated[StripeClient, Depends(get_stripe_client)]


def get_order_service(db: DatabaseSession, clock: AppClock, settings: AppSettings) -> OrderService:
    return OrderService(db, clock=clock, settings=settings)


def get_payment_service(
    db: DatabaseSession,
    stripe_client: StripeClientDep,
    clock: AppClock,
    settings: AppSettings,
) -> PaymentService:
    return PaymentService(db, stripe_client=stripe_client, clock=clock, settings=settings)


def get_delivery_service(
    db: DatabaseSession, clock: AppClock, settings: AppSettings
) -> DeliveryService:
    return DeliveryService(db, clock=clock, settings=settings)


def get_feedback_service(
    db: DatabaseSession, clock: AppClock, settings: AppSettings
) -> FeedbackService:
    return FeedbackService(db, clock=clock, settings=settings)


def get_analytics_service(
    db: DatabaseSession, clock: AppClock, settings: AppSettings
) -> AnalyticsService:
    return AnalyticsService(db, clock=clock, settings=settings)


OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
DeliveryServiceDep = Annotated[DeliveryService, Depends(get_delivery_service)]
FeedbackServiceDep = Annotated[FeedbackService, Depends(get_feedback_service)]
AnalyticsServiceDep = Annotated[AnalyticsService, Depends(get_analytics_service)]
