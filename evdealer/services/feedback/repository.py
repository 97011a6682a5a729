"""
Feedback data access.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from evdealer.database.models import Feedback, Order, User
from evdealer.database.repository import GenericRepository

FEEDBACK_DETAIL_OPTIONS = (
    selectinload(Feedback.customer),
    selectinload(Feedback.resolver),
    selectinload(Feedback.order),
)


class FeedbackRepository(GenericRepository[Feedback]):
    """Repository for customer feedback."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Feedback)

    async def get_with_details(
        self, feedback_id: uuid.UUID, refresh: bool = False
    ) -> Optional[Feedback]:
        return await self.get_by_id(feedback_id, *FEEDBACK_DETAIL_OPTIONS, refresh=refresh)

    def filtered(
        self,
        customer_id: Optional[uuid.UUID] = None,
        order_id: Optional[uuid.UUID] = None,
        is_resolved: Optional[bool] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        search_term: Optional[str] = None,
    ) -> Select:
        """
        Build the feedback listing statement, newest first.

        ``search_term`` matches the content, customer name or customer
        email case-insensitively.
        """
        statement = self.query()

        if customer_id is not None:
            statement = statement.where(Feedback.customer_id == customer_id)
        if order_id is not None:
            statement = statement.where(Feedback.order_id == order_id)
        if is_resolved is True:
            statement = statement.where(Feedback.resolved_by.is_not(None))
        elif is_resolved is False:
            statement = statement.where(Feedback.resolved_by.is_(None))
        if from_date is not None:
            statement = statement.where(Feedback.created_at >= from_date)
        if to_date is not None:
            statement = statement.where(Feedback.created_at <= to_date)
        if search_term and search_term.strip():
            pattern = f"%{search_term.strip()}%"
            statement = (
                statement.join(User, Feedback.customer_id == User.id)
                .outerjoin(Order, Feedback.order_id == Order.id)
                .where(
                    or_(
                        Feedback.content.ilike(pattern),
                        User.full_name.ilike(pattern),
                        User.email.ilike(pattern),
                        Order.order_number.ilike(pattern),
                    )
                )
            )

        return statement.order_by(Feedback.created_at.desc())
