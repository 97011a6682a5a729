"""
Order service orchestrating the order workflow.

This module implements the OrderService class: order placement with
immediate stock reservation and invoice issue, cancellation with stock
restoration, staff status updates guarded by the order state machine,
staff assignment, and the order read projections. Every mutating
operation stages its changes through the unit of work and commits once.
"""

import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from evdealer.core.clock import Clock, SystemClock
from evdealer.core.config import Settings, get_settings
from evdealer.core.exceptions import InvalidStateError, NotFoundError
from evdealer.core.identity import Identity
from evdealer.core.logging import get_logger
from evdealer.database.models import (
    Invoice,
    InvoiceStatus,
    Order,
    OrderItem,
    OrderStatus,
)
from evdealer.schemas.orders import OrderFilter, OrderResponse, PagedResponse
from evdealer.services.access_policy import Action, check_access, resolve_actor
from evdealer.services.orders.repository import ORDER_DETAIL_OPTIONS
from evdealer.services.orders.state_machine import OrderStateMachine
from evdealer.services.pagination import normalize_page
from evdealer.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

INVOICE_AWAITING_PAYMENT_NOTE = "Awaiting payment"


class OrderService:
    """
    Order workflow engine.

    Attributes:
        uow: Unit of work shared by all repositories
        clock: Time source for numbering and audit stamps
        state_machine: Order status validation
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize order service.

        Args:
            session: Async database session
            clock: Time source, system clock by default
            settings: Application settings, process settings by default
        """
        self.uow = UnitOfWork(session)
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()
        self.state_machine = OrderStateMachine()

    async def create_order(
        self,
        identity: Identity,
        vehicle_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> uuid.UUID:
        """
        Place an order for one vehicle.

        Reserves one unit of stock, creates the order with its single item
        and issues the invoice, all in one commit. The unit price and the
        order total are frozen at the vehicle's current base price.

        Args:
            identity: Acting customer
            vehicle_id: Vehicle being ordered
            notes: Optional order notes

        Returns:
            Identifier of the new order

        Raises:
            UnauthorizedError: If the identity is anonymous
            ForbiddenError: If the actor is not a customer
            NotFoundError: If the customer or the vehicle does not exist
            InvalidStateError: If the vehicle is inactive or out of stock
        """
        actor = await resolve_actor(
            self.uow.users, identity, missing_user_message="Customer not found"
        )
        check_access(actor, Action.CREATE_ORDER)

        logger.info(
            "Creating order",
            customer_id=str(actor.user_id),
            vehicle_id=str(vehicle_id),
        )

        vehicle = await self.uow.vehicles.get_by_id(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle not found", vehicle_id=str(vehicle_id))
        if not vehicle.is_active:
            raise InvalidStateError(
                "This vehicle is not available for purchase",
                vehicle_id=str(vehicle_id),
            )
        if vehicle.stock <= 0:
            raise InvalidStateError(
                "This vehicle is out of stock", vehicle_id=str(vehicle_id)
            )

        now = self.clock.now()
        order_number = await self.uow.orders.next_order_number(now)
        invoice_number = await self.uow.invoices.next_invoice_number(now)

        if not await self.uow.vehicles.reserve_unit(vehicle):
            logger.warning(
                "Stock reservation lost to a concurrent order",
                vehicle_id=str(vehicle_id),
            )
            raise InvalidStateError(
                "This vehicle is out of stock", vehicle_id=str(vehicle_id)
            )

        price = vehicle.base_price
        order = Order(
            id=uuid.uuid4(),
            customer_id=actor.user_id,
            order_number=order_number,
            status=OrderStatus.PENDING,
            total_amount=price,
            notes=notes.strip() if notes and notes.strip() else None,
        )
        item = OrderItem(vehicle_id=vehicle.id, unit_price=price)
        invoice = Invoice(
            customer_id=actor.user_id,
            invoice_number=invoice_number,
            total_amount=price,
            status=InvoiceStatus.PENDING,
            notes=INVOICE_AWAITING_PAYMENT_NOTE,
        )
        order.items.append(item)
        order.invoices.append(invoice)

        self.uow.orders.add(order, now, actor.user_id)
        self.uow.order_items.add(item, now, actor.user_id)
        self.uow.invoices.add(invoice, now, actor.user_id)

        await self.uow.save_changes()

        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order_number,
            invoice_number=invoice_number,
            total_amount=str(price),
            remaining_stock=vehicle.stock,
        )
        return order.id

    async def cancel_order(
        self, identity: Identity, order_id: uuid.UUID, reason: str
    ) -> None:
        """
        Cancel an unpaid order and give its stock back.

        Args:
            identity: Owning customer or any staff member
            order_id: Order to cancel
            reason: Recorded in the order notes as "Cancelled: {reason}"

        Raises:
            NotFoundError: If the order does not exist
            ForbiddenError: If a customer cancels someone else's order
            InvalidStateError: If the order is already cancelled, is paid,
                or a vehicle to restock no longer exists
        """
        actor = await resolve_actor(self.uow.users, identity)
        order = await self.uow.orders.get_with_details(order_id, refresh=True)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))

        check_access(actor, Action.CANCEL_ORDER, owner_id=order.customer_id)
        self.state_machine.validate_cancellation(order)

        now = self.clock.now()
        self.uow.orders.update(order, now, actor.user_id, status=OrderStatus.CANCELLED)
        order.append_note(f"Cancelled: {reason}")
        await self.restore_stock(order)

        await self.uow.save_changes()

        logger.info(
            "Order cancelled",
            order_id=str(order.id),
            order_number=order.order_number,
            cancelled_by=str(actor.user_id),
        )

    async def restore_stock(self, order: Order) -> None:
        """
        Return one unit of stock per order item.

        The caller commits. When a vehicle can no longer be restocked the
        session is rolled back so no partial restoration survives.

        Raises:
            InvalidStateError: If an item's vehicle is missing or deleted
        """
        for item in order.items:
            if item.is_deleted:
                continue
            vehicle = item.vehicle
            restored = (
                vehicle is not None
                and not vehicle.is_deleted
                and await self.uow.vehicles.release_unit(vehicle)
            )
            if not restored:
                # Rollback expires every loaded instance
                order_id, vehicle_id = str(order.id), str(item.vehicle_id)
                await self.uow.rollback()
                logger.error(
                    "Stock restoration failed; vehicle missing",
                    order_id=order_id,
                    vehicle_id=vehicle_id,
                )
                raise InvalidStateError(
                    f"Vehicle {vehicle_id} not found while restoring stock",
                    order_id=order_id,
                    vehicle_id=vehicle_id,
                )

    async def update_order_status(
        self,
        identity: Identity,
        order_id: uuid.UUID,
        new_status: OrderStatus,
        notes: Optional[str] = None,
    ) -> OrderResponse:
        """
        Change an order's status on behalf of staff.

        Only Pending -> Confirmed can be applied here and only when a
        payment is Paid. A same-status update just appends the notes.

        Raises:
            NotFoundError: If the order does not exist
            ForbiddenError: If the actor is not staff
            InvalidStateError: If the state machine rejects the change
        """
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.UPDATE_ORDER_STATUS)

        order = await self.uow.orders.get_with_details(order_id, refresh=True)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))

        changes_status = self.state_machine.validate_status_update(order, new_status)
        previous_status = order.status

        now = self.clock.now()
        values = {}
        if changes_status:
            values["status"] = new_status
            if new_status == OrderStatus.CONFIRMED:
                values["confirmed_at"] = now
        self.uow.orders.update(order, now, actor.user_id, **values)
        order.append_note(notes)

        await self.uow.save_changes()

        logger.info(
            "Order status updated",
            order_id=str(order.id),
            from_status=previous_status.value,
            to_status=new_status.value,
            updated_by=str(actor.user_id),
        )
        return await self._project(order.id)

    async def assign_staff(
        self, identity: Identity, order_id: uuid.UUID, staff_id: uuid.UUID
    ) -> OrderResponse:
        """
        Assign a staff member to an order.

        Raises:
            NotFoundError: If the order or the staff member does not exist
            ForbiddenError: If the actor is not staff
            InvalidStateError: If the assignee is not a staff member
        """
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.ASSIGN_STAFF)

        order = await self.uow.orders.get_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))

        staff = await self.uow.users.get_by_id(staff_id)
        if staff is None:
            raise NotFoundError("Staff member not found", staff_id=str(staff_id))
        if not staff.role.is_staff:
            raise InvalidStateError(
                "Orders can only be assigned to dealer staff",
                staff_id=str(staff_id),
                role=staff.role.value,
            )

        self.uow.orders.update(order, self.clock.now(), actor.user_id, staff_id=staff.id)
        await self.uow.save_changes()

        logger.info(
            "Staff assigned to order",
            order_id=str(order.id),
            staff_id=str(staff.id),
            assigned_by=str(actor.user_id),
        )
        return await self._project(order.id)

    async def get_order(self, identity: Identity, order_id: uuid.UUID) -> OrderResponse:
        """
        Get one order as seen by its owner or by staff.

        Raises:
            NotFoundError: If the order does not exist
            ForbiddenError: If a customer asks for someone else's order
        """
        actor = await resolve_actor(self.uow.users, identity)
        order = await self.uow.orders.get_with_details(order_id, refresh=True)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))
        check_access(actor, Action.VIEW_ORDER, owner_id=order.customer_id)
        return OrderResponse.from_order(order)

    async def get_my_orders(
        self, identity: Identity, page: int = 1, page_size: int = 10
    ) -> PagedResponse[OrderResponse]:
        """List the acting user's own orders, newest first."""
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.LIST_OWN_ORDERS)
        statement = self.uow.orders.filtered(customer_id=actor.user_id)
        return await self._page(statement, page, page_size)

    async def get_all_orders(
        self,
        identity: Identity,
        page: int = 1,
        page_size: int = 10,
        filters: Optional[OrderFilter] = None,
    ) -> PagedResponse[OrderResponse]:
        """
        List all orders for staff.

        Args:
            identity: Acting staff member
            page: 1-based page number
            page_size: Items per page
            filters: Customer, staff, status, date range and search filters

        Returns:
            Page of order projections, newest first
        """
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.LIST_ALL_ORDERS)

        filters = filters or OrderFilter()
        statement = self.uow.orders.filtered(
            customer_id=filters.customer_id,
            staff_id=filters.staff_id,
            status=filters.status,
            from_date=filters.from_date,
            to_date=filters.to_date,
            search_term=filters.search_term,
        )
        return await self._page(statement, page, page_size)

    async def _page(self, statement, page: int, page_size: int) -> PagedResponse[OrderResponse]:
        page, page_size = normalize_page(page, page_size, self.settings)
        orders, total = await self.uow.orders.paginate(
            statement.execution_options(populate_existing=True),
            page,
            page_size,
            *ORDER_DETAIL_OPTIONS,
        )
        return PagedResponse[OrderResponse](
            items=[OrderResponse.from_order(order) for order in orders],
            total_count=total,
            page=page,
            page_size=page_size,
        )

    async def _project(self, order_id: uuid.UUID) -> OrderResponse:
        order = await self.uow.orders.get_with_details(order_id, refresh=True)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))
        return OrderResponse.from_order(order)
