"""
Unit of work over the dealership repositories.

All repositories share one AsyncSession. A workflow stages its changes
through the repositories and calls ``save_changes`` exactly once, so
stock changes and entity status changes are committed or rolled back
together.
"""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from evdealer.core.exceptions import PersistenceError
from evdealer.core.logging import get_logger
from evdealer.database.models import OrderItem, TestDrive, User
from evdealer.database.repository import GenericRepository
from evdealer.services.deliveries.repository import DeliveryRepository
from evdealer.services.feedback.repository import FeedbackRepository
from evdealer.services.orders.repository import OrderRepository, VehicleRepository
from evdealer.services.payments.repository import InvoiceRepository, PaymentRepository

logger = get_logger(__name__)


class UnitOfWork:
    """
    Cross-entity persistence gateway.

    Attributes:
        session: Shared async session
        users, vehicles, orders, order_items, invoices, payments,
        deliveries, feedbacks, test_drives: Per-entity repositories
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.users: GenericRepository[User] = GenericRepository(session, User)
        self.vehicles = VehicleRepository(session)
        self.orders = OrderRepository(session)
        self.order_items: GenericRepository[OrderItem] = GenericRepository(session, OrderItem)
        self.invoices = InvoiceRepository(session)
        self.payments = PaymentRepository(session)
        self.deliveries = DeliveryRepository(session)
        self.feedbacks = FeedbackRepository(session)
        self.test_drives: GenericRepository[TestDrive] = GenericRepository(session, TestDrive)

    async def save_changes(self) -> int:
        """
        Commit all staged changes atomically.

        Returns:
            Number of entities inserted, updated or deleted

        Raises:
            PersistenceError: If the commit fails; the transaction is rolled back
        """
        affected = len(self.session.new) + len(self.session.dirty) + len(self.session.deleted)
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Unit of work commit failed and was rolled back",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError("Failed to save changes") from e

        logger.debug("Unit of work committed", affected=affected)
        return affected

    async def rollback(self) -> None:
        await self.session.rollback()
        logger.info("Unit of work rolled back")
