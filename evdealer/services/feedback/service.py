"""
Feedback service.

Customers leave feedback, optionally about one of their confirmed orders.
Managers resolve it. Customers may delete their own feedback and managers
may delete any; deletion is a soft delete.
"""

import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from evdealer.core.clock import Clock, SystemClock
from evdealer.core.config import Settings, get_settings
from evdealer.core.exceptions import InvalidStateError, NotFoundError
from evdealer.core.identity import Identity
from evdealer.core.logging import get_logger
from evdealer.database.models import Feedback, OrderStatus
from evdealer.schemas.feedback import FeedbackFilter, FeedbackResponse
from evdealer.schemas.orders import PagedResponse
from evdealer.services.access_policy import Action, check_access, resolve_actor
from evdealer.services.feedback.repository import FEEDBACK_DETAIL_OPTIONS
from evdealer.services.pagination import normalize_page
from evdealer.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)


class FeedbackService:
    """Customer feedback handling."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.uow = UnitOfWork(session)
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()

    async def create_feedback(
        self,
        identity: Identity,
        content: str,
        order_id: Optional[uuid.UUID] = None,
    ) -> FeedbackResponse:
        """
        Record feedback from a customer.

        Args:
            identity: Acting customer
            content: Feedback text
            order_id: Optional order the feedback is about

        Raises:
            ForbiddenError: If the actor is not a customer or the order
                belongs to someone else
            NotFoundError: If the referenced order does not exist
            InvalidStateError: If the referenced order is not confirmed
        """
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.CREATE_FEEDBACK)

        if order_id is not None:
            order = await self.uow.orders.get_by_id(order_id, refresh=True)
            if order is None:
                raise NotFoundError("Order not found", order_id=str(order_id))
            check_access(actor, Action.VIEW_ORDER, owner_id=order.customer_id)
            if order.status != OrderStatus.CONFIRMED:
                raise InvalidStateError(
                    "You can only give feedback for confirmed orders",
                    order_id=str(order_id),
                )

        feedback = Feedback(
            customer_id=actor.user_id,
            order_id=order_id,
            content=content.strip(),
        )
        self.uow.feedbacks.add(feedback, self.clock.now(), actor.user_id)
        await self.uow.save_changes()

        logger.info(
            "Feedback created",
            feedback_id=str(feedback.id),
            customer_id=str(actor.user_id),
            order_id=str(order_id) if order_id else None,
        )
        return await self._project(feedback.id)

    async def get_feedback(self, identity: Identity, feedback_id: uuid.UUID) -> FeedbackResponse:
        actor = await resolve_actor(self.uow.users, identity)
        feedback = await self._load(feedback_id)
        check_access(actor, Action.VIEW_FEEDBACK, owner_id=feedback.customer_id)
        return FeedbackResponse.from_feedback(feedback)

    async def get_my_feedbacks(
        self, identity: Identity, page: int = 1, page_size: int = 10
    ) -> PagedResponse[FeedbackResponse]:
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.LIST_OWN_FEEDBACK)
        statement = self.uow.feedbacks.filtered(customer_id=actor.user_id)
        return await self._page(statement, page, page_size)

    async def get_all_feedbacks(
        self,
        identity: Identity,
        page: int = 1,
        page_size: int = 10,
        filters: Optional[FeedbackFilter] = None,
    ) -> PagedResponse[FeedbackResponse]:
        """List all feedback for staff, newest first."""
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.LIST_ALL_FEEDBACK)

        filters = filters or FeedbackFilter()
        statement = self.uow.feedbacks.filtered(
            customer_id=filters.customer_id,
            order_id=filters.order_id,
            is_resolved=filters.is_resolved,
            from_date=filters.from_date,
            to_date=filters.to_date,
            search_term=filters.search_term,
        )
        return await self._page(statement, page, page_size)

    async def resolve_feedback(
        self, identity: Identity, feedback_id: uuid.UUID
    ) -> FeedbackResponse:
        """
        Mark feedback as resolved by the acting manager.

        Raises:
            ForbiddenError: If the actor is not a manager
            NotFoundError: If the feedback does not exist
            InvalidStateError: If it is already resolved
        """
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.RESOLVE_FEEDBACK)

        feedback = await self._load(feedback_id)
        if feedback.is_resolved:
            raise InvalidStateError(
                "This feedback has already been resolved",
                feedback_id=str(feedback_id),
            )

        self.uow.feedbacks.update(
            feedback, self.clock.now(), actor.user_id, resolved_by=actor.user_id
        )
        await self.uow.save_changes()

        logger.info(
            "Feedback resolved",
            feedback_id=str(feedback.id),
            manager_id=str(actor.user_id),
        )
        return await self._project(feedback.id)

    async def delete_feedback(self, identity: Identity, feedback_id: uuid.UUID) -> None:
        """
        Soft delete feedback.

        Raises:
            ForbiddenError: If the actor is neither the owner nor a manager
            NotFoundError: If the feedback does not exist
        """
        actor = await resolve_actor(self.uow.users, identity)
        feedback = await self._load(feedback_id)
        check_access(actor, Action.DELETE_FEEDBACK, owner_id=feedback.customer_id)

        self.uow.feedbacks.soft_remove(feedback, self.clock.now(), actor.user_id)
        await self.uow.save_changes()

        logger.info(
            "Feedback deleted",
            feedback_id=str(feedback.id),
            deleted_by=str(actor.user_id),
        )

    async def _page(self, statement, page: int, page_size: int) -> PagedResponse[FeedbackResponse]:
        page, page_size = normalize_page(page, page_size, self.settings)
        feedbacks, total = await self.uow.feedbacks.paginate(
            statement.execution_options(populate_existing=True),
            page,
            page_size,
            *FEEDBACK_DETAIL_OPTIONS,
        )
        return PagedResponse[FeedbackResponse](
            items=[FeedbackResponse.from_feedback(f) for f in feedbacks],
            total_count=total,
            page=page,
            page_size=page_size,
        )

    async def _load(self, feedback_id: uuid.UUID) -> Feedback:
        feedback = await self.uow.feedbacks.get_with_details(feedback_id, refresh=True)
        if feedback is None:
            raise NotFoundError("Feedback not found", feedback_id=str(feedback_id))
        return feedback

    async def _project(self, feedback_id: uuid.UUID) -> FeedbackResponse:
        return FeedbackResponse.from_feedback(await self._load(feedback_id))
