"""
Delivery service for post-confirmation delivery workflow.

Customers request a delivery for a confirmed, paid order within a window
after confirmation. Staff schedule it, move it through transit and mark
it delivered. Cancellation rules depend on who cancels.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from evdealer.core.clock import Clock, SystemClock, ensure_utc
from evdealer.core.config import Settings, get_settings
from evdealer.core.exceptions import InvalidStateError, NotFoundError
from evdealer.core.identity import Identity
from evdealer.core.logging import get_logger
from evdealer.database.models import Delivery, DeliveryStatus, OrderStatus
from evdealer.schemas.deliveries import DeliveryFilter, DeliveryResponse
from evdealer.schemas.orders import PagedResponse
from evdealer.services.access_policy import Action, check_access, resolve_actor
from evdealer.services.deliveries.repository import DELIVERY_DETAIL_OPTIONS
from evdealer.services.deliveries.state_machine import DeliveryStateMachine
from evdealer.services.pagination import normalize_page
from evdealer.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)


class DeliveryService:
    """
    Delivery workflow.

    Attributes:
        uow: Unit of work shared by all repositories
        clock: Time source for the request window and stamps
        state_machine: Delivery status validation
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.uow = UnitOfWork(session)
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.state_machine = DeliveryStateMachine()

    async def request_delivery(
        self,
        identity: Identity,
        order_id: uuid.UUID,
        shipping_address: str,
        notes: Optional[str] = None,
    ) -> DeliveryResponse:
        """
        Request delivery of a confirmed order.

        Args:
            identity: Customer owning the order
            order_id: Confirmed and paid order
            shipping_address: Where the vehicle is delivered
            notes: Customer notes

        Returns:
            The new pending delivery

        Raises:
            NotFoundError: If the order does not exist
            ForbiddenError: If the actor is not the owning customer
            InvalidStateError: If the order is unpaid, not confirmed,
                confirmed too long ago, or already has a delivery
        """
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.REQUEST_DELIVERY)

        order = await self.uow.orders.get_with_details(order_id, refresh=True)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))
        check_access(actor, Action.REQUEST_DELIVERY, owner_id=order.customer_id)

        if not order.has_paid_payment:
            raise InvalidStateError(
                "Cannot request delivery for unpaid order", order_id=str(order_id)
            )
        if order.status != OrderStatus.CONFIRMED:
            raise InvalidStateError(
                "Can only request delivery for confirmed orders",
                order_id=str(order_id),
                status=order.status.value,
            )

        now = self.clock.now()
        window_hours = self.settings.delivery_request_window_hours
        confirmed_at = ensure_utc(order.confirmed_at or order.updated_at)
        if confirmed_at is not None and now - confirmed_at > timedelta(hours=window_hours):
            logger.info(
                "Delivery request window expired",
                order_id=str(order_id),
                confirmed_at=confirmed_at.isoformat(),
            )
            raise InvalidStateError(
                f"Delivery request must be made within {window_hours} hours "
                "after order confirmation",
                order_id=str(order_id),
            )

        existing = await self.uow.deliveries.get_by_order(order_id)
        if existing is not None:
            raise InvalidStateError(
                "Delivery request already exists for this order",
                order_id=str(order_id),
                delivery_id=str(existing.id),
            )

        delivery = Delivery(
            order=order,
            status=DeliveryStatus.PENDING,
            shipping_address=shipping_address.strip(),
            notes=notes.strip() if notes and notes.strip() else None,
        )
        self.uow.deliveries.add(delivery, now, actor.user_id)
        await self.uow.save_changes()

        logger.info(
            "Delivery requested",
            delivery_id=str(delivery.id),
            order_id=str(order_id),
            customer_id=str(actor.user_id),
        )
        return await self._project(delivery.id)

    async def confirm_delivery(
        self,
        identity: Identity,
        delivery_id: uuid.UUID,
        planned_date: datetime,
        staff_notes: Optional[str] = None,
    ) -> DeliveryResponse:
        """
        Schedule a pending delivery.

        Raises:
            NotFoundError: If the delivery does not exist
            ForbiddenError: If the actor is not staff
            InvalidStateError: If the delivery is not pending
        """
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.CONFIRM_DELIVERY)

        delivery = await self._load(delivery_id)
        self.state_machine.validate_confirmation(delivery)

        values = {
            "status": DeliveryStatus.SCHEDULED,
            "planned_date": ensure_utc(planned_date),
        }
        if staff_notes is not None:
            values["staff_notes"] = staff_notes
        self.uow.deliveries.update(delivery, self.clock.now(), actor.user_id, **values)
        await self.uow.save_changes()

        logger.info(
            "Delivery scheduled",
            delivery_id=str(delivery.id),
            planned_date=planned_date.isoformat(),
            staff_id=str(actor.user_id),
        )
        return await self._project(delivery.id)

    async def update_delivery_status(
        self,
        identity: Identity,
        delivery_id: uuid.UUID,
        new_status: DeliveryStatus,
        planned_date: Optional[datetime] = None,
        actual_date: Optional[datetime] = None,
    ) -> DeliveryResponse:
        """
        Move a delivery forward.

        Delivered also stamps the actual date, defaulting to now.

        Raises:
            NotFoundError: If the delivery does not exist
            ForbiddenError: If the actor is not staff
            InvalidStateError: If the delivery is terminal or the new
                status skips a step
        """
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.UPDATE_DELIVERY_STATUS)

        delivery = await self._load(delivery_id)
        self.state_machine.validate_status_update(delivery, new_status)
        previous_status = delivery.status

        now = self.clock.now()
        values = {"status": new_status}
        if planned_date is not None:
            values["planned_date"] = ensure_utc(planned_date)
        if new_status == DeliveryStatus.DELIVERED:
            values["actual_date"] = ensure_utc(actual_date) or now
        self.uow.deliveries.update(delivery, now, actor.user_id, **values)
        await self.uow.save_changes()

        logger.info(
            "Delivery status updated",
            delivery_id=str(delivery.id),
            from_status=previous_status.value,
            to_status=new_status.value,
            staff_id=str(actor.user_id),
        )
        return await self._project(delivery.id)

    async def cancel_delivery(self, identity: Identity, delivery_id: uuid.UUID) -> DeliveryResponse:
        """
        Cancel a delivery.

        Customers may cancel their own pending request; staff may cancel a
        pending or scheduled delivery.

        Raises:
            NotFoundError: If the delivery does not exist
            ForbiddenError: If a customer cancels someone else's delivery
            InvalidStateError: If the status does not allow cancellation
        """
        actor = await resolve_actor(self.uow.users, identity)
        delivery = await self._load(delivery_id)
        check_access(actor, Action.CANCEL_DELIVERY, owner_id=delivery.order.customer_id)
        self.state_machine.validate_cancellation(delivery, actor.role)

        self.uow.deliveries.update(
            delivery, self.clock.now(), actor.user_id, status=DeliveryStatus.CANCELLED
        )
        await self.uow.save_changes()

        logger.info(
            "Delivery cancelled",
            delivery_id=str(delivery.id),
            cancelled_by=str(actor.user_id),
            role=actor.role.value,
        )
        return await self._project(delivery.id)

    async def get_delivery(self, identity: Identity, delivery_id: uuid.UUID) -> DeliveryResponse:
        actor = await resolve_actor(self.uow.users, identity)
        delivery = await self._load(delivery_id)
        check_access(actor, Action.VIEW_DELIVERY, owner_id=delivery.order.customer_id)
        return DeliveryResponse.from_delivery(delivery)

    async def get_delivery_by_order(
        self, identity: Identity, order_id: uuid.UUID
    ) -> DeliveryResponse:
        """
        Get the delivery of an order.

        Raises:
            NotFoundError: If the order has no delivery
        """
        actor = await resolve_actor(self.uow.users, identity)
        delivery = await self.uow.deliveries.get_by_order(order_id, refresh=True)
        if delivery is None:
            raise NotFoundError("No delivery found for this order", order_id=str(order_id))
        check_access(actor, Action.VIEW_DELIVERY, owner_id=delivery.order.customer_id)
        return DeliveryResponse.from_delivery(delivery)

    async def get_all_deliveries(
        self,
        identity: Identity,
        page: int = 1,
        page_size: int = 10,
        filters: Optional[DeliveryFilter] = None,
    ) -> PagedResponse[DeliveryResponse]:
        """List deliveries for staff, newest first."""
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.LIST_DELIVERIES)

        filters = filters or DeliveryFilter()
        page, page_size = normalize_page(page, page_size, self.settings)
        statement = self.uow.deliveries.filtered(
            status=filters.status,
            from_date=filters.from_date,
            to_date=filters.to_date,
            search_term=filters.search_term,
        )
        deliveries, total = await self.uow.deliveries.paginate(
            statement.execution_options(populate_existing=True),
            page,
            page_size,
            *DELIVERY_DETAIL_OPTIONS,
        )
        return PagedResponse[DeliveryResponse](
            items=[DeliveryResponse.from_delivery(d) for d in deliveries],
            total_count=total,
            page=page,
            page_size=page_size,
        )

    async def _load(self, delivery_id: uuid.UUID) -> Delivery:
        delivery = await self.uow.deliveries.get_with_order(delivery_id, refresh=True)
        if delivery is None:
            raise NotFoundError("Delivery not found", delivery_id=str(delivery_id))
        return delivery

    async def _project(self, delivery_id: uuid.UUID) -> DeliveryResponse:
        return DeliveryResponse.from_delivery(await self._load(delivery_id))
