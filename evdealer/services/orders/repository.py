"""
Order and inventory data access.

This module implements the OrderRepository with eager-loading queries for
order projections and per-day document numbering, and the
VehicleRepository that owns the conditional stock updates used to reserve
and restore inventory.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import InstrumentedAttribute

from evdealer.core.exceptions import PersistenceError
from evdealer.core.logging import get_logger
from evdealer.database.models import (
    Invoice,
    Order,
    OrderItem,
    OrderStatus,
    User,
    Vehicle,
)
from evdealer.database.repository import GenericRepository

logger = get_logger(__name__)

ORDER_NUMBER_PREFIX = "ORD"

ORDER_DETAIL_OPTIONS = (
    selectinload(Order.customer),
    selectinload(Order.staff),
    selectinload(Order.items).selectinload(OrderItem.vehicle),
    selectinload(Order.invoices).selectinload(Invoice.payments),
    selectinload(Order.delivery),
)


async def next_document_number(
    session: AsyncSession,
    column: InstrumentedAttribute,
    prefix: str,
    day: datetime,
) -> str:
    """
    Generate the next human readable number for a calendar day.

    The sequence is the count of existing numbers sharing the
    ``{prefix}-{yyyyMMdd}-`` stem plus one, so it restarts every day.
    Soft-deleted rows still count so that numbers are never reused.

    Args:
        session: Async database session
        column: Number column to scan, e.g. Order.order_number
        prefix: Document prefix such as "ORD" or "INV"
        day: Date the number is issued for

    Returns:
        Number formatted as ``{prefix}-{yyyyMMdd}-{NNNN}``
    """
    stem = f"{prefix}-{day:%Y%m%d}-"
    result = await session.execute(
        select(func.count()).where(column.like(f"{stem}%"))
    )
    sequence = int(result.scalar_one()) + 1
    return f"{stem}{sequence:04d}"


class OrderRepository(GenericRepository[Order]):
    """
    Repository for orders.

    Provides the fully loaded order graph used for response projections
    and the filtered listing used by staff.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, Order)

    async def get_with_details(
        self, order_id: uuid.UUID, refresh: bool = False
    ) -> Optional[Order]:
        """
        Load an order with customer, staff, items, invoices and delivery.

        Args:
            order_id: Order identifier
            refresh: Reload state already present in the session

        Returns:
            Order or None when absent or soft-deleted
        """
        return await self.get_by_id(order_id, *ORDER_DETAIL_OPTIONS, refresh=refresh)

    async def next_order_number(self, day: datetime) -> str:
        return await next_document_number(
            self.session, Order.order_number, ORDER_NUMBER_PREFIX, day
        )

    def filtered(
        self,
        customer_id: Optional[uuid.UUID] = None,
        staff_id: Optional[uuid.UUID] = None,
        status: Optional[OrderStatus] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        search_term: Optional[str] = None,
    ) -> Select:
        """
        Build the order listing statement, newest first.

        Args:
            customer_id: Only orders of this customer
            staff_id: Only orders assigned to this staff member
            status: Only orders in this status
            from_date: Created at or after
            to_date: Created at or before
            search_term: Case-insensitive match on order number, customer
                name or customer email

        Returns:
            Statement without loader options, suitable for pagination
        """
        statement = self.query()

        if customer_id is not None:
            statement = statement.where(Order.customer_id == customer_id)
        if staff_id is not None:
            statement = statement.where(Order.staff_id == staff_id)
        if status is not None:
            statement = statement.where(Order.status == status)
        if from_date is not None:
            statement = statement.where(Order.created_at >= from_date)
        if to_date is not None:
            statement = statement.where(Order.created_at <= to_date)
        if search_term and search_term.strip():
            pattern = f"%{search_term.strip()}%"
            statement = statement.join(User, Order.customer_id == User.id).where(
                or_(
                    Order.order_number.ilike(pattern),
                    User.full_name.ilike(pattern),
                    User.email.ilike(pattern),
                )
            )

        return statement.order_by(Order.created_at.desc(), Order.order_number.desc())


class VehicleRepository(GenericRepository[Vehicle]):
    """
    Repository for vehicles and their stock counters.

    Stock is only ever changed by a single conditional UPDATE so that
    concurrent orders cannot oversell a vehicle.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, Vehicle)

    async def reserve_unit(self, vehicle: Vehicle) -> bool:
        """
        Decrement stock by one if the vehicle is still purchasable.

        Args:
            vehicle: Vehicle loaded in the current session

        Returns:
            True if a unit was reserved, False if the vehicle is out of
            stock, inactive or deleted at the time of the update
        """
        statement = (
            update(Vehicle)
            .where(
                Vehicle.id == vehicle.id,
                Vehicle.stock > 0,
                Vehicle.is_active.is_(True),
                Vehicle.deleted_at.is_(None),
            )
            .values(stock=Vehicle.stock - 1)
            .execution_options(synchronize_session=False)
        )
        return await self._apply_stock_change(vehicle, statement, delta=-1)

    async def release_unit(self, vehicle: Vehicle) -> bool:
        """
        Increment stock by one for a restoration event.

        Returns:
            True if the vehicle row was updated, False if it no longer
            exists or was soft-deleted
        """
        statement = (
            update(Vehicle)
            .where(Vehicle.id == vehicle.id, Vehicle.deleted_at.is_(None))
            .values(stock=Vehicle.stock + 1)
            .execution_options(synchronize_session=False)
        )
        return await self._apply_stock_change(vehicle, statement, delta=1)

    async def _apply_stock_change(self, vehicle: Vehicle, statement, delta: int) -> bool:
        try:
            result = await self.session.execute(statement)
        except SQLAlchemyError as e:
            logger.error(
                "Stock update failed",
                vehicle_id=str(vehicle.id),
                delta=delta,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError(
                "Failed to update vehicle stock", vehicle_id=str(vehicle.id)
            ) from e

        if result.rowcount != 1:
            return False

        await self.session.refresh(vehicle, attribute_names=["stock"])
        logger.debug(
            "Vehicle stock changed",
            vehicle_id=str(vehicle.id),
            delta=delta,
            stock=vehicle.stock,
        )
        return True
