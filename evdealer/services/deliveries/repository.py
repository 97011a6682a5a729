"""
Delivery data access.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from evdealer.database.models import Delivery, DeliveryStatus, Order, User
from evdealer.database.repository import GenericRepository

DELIVERY_DETAIL_OPTIONS = (
    selectinload(Delivery.order).selectinload(Order.customer),
)


class DeliveryRepository(GenericRepository[Delivery]):
    """Repository for deliveries."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Delivery)

    async def get_with_order(
        self, delivery_id: uuid.UUID, refresh: bool = False
    ) -> Optional[Delivery]:
        return await self.get_by_id(delivery_id, *DELIVERY_DETAIL_OPTIONS, refresh=refresh)

    async def get_by_order(
        self, order_id: uuid.UUID, refresh: bool = False
    ) -> Optional[Delivery]:
        """Return the active delivery of an order, if any."""
        statement = self.query(*DELIVERY_DETAIL_OPTIONS).where(
            Delivery.order_id == order_id
        )
        if refresh:
            statement = statement.execution_options(populate_existing=True)
        return await self.first(statement)

    def filtered(
        self,
        status: Optional[DeliveryStatus] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        search_term: Optional[str] = None,
    ) -> Select:
        """
        Build the delivery listing statement, newest first.

        ``search_term`` matches the order number, customer name, customer
        email or shipping address case-insensitively.
        """
        statement = self.query()

        if status is not None:
            statement = statement.where(Delivery.status == status)
        if from_date is not None:
            statement = statement.where(Delivery.created_at >= from_date)
        if to_date is not None:
            statement = statement.where(Delivery.created_at <= to_date)
        if search_term and search_term.strip():
            pattern = f"%{search_term.strip()}%"
            statement = (
                statement.join(Order, Delivery.order_id == Order.id)
                .join(User, Order.customer_id == User.id)
                .where(
                    or_(
                        Order.order_number.ilike(pattern),
                        User.full_name.ilike(pattern),
                        User.email.ilike(pattern),
                        Delivery.shipping_address.ilike(pattern),
                    )
                )
            )

        return statement.order_by(Delivery.created_at.desc())
