"""
Tests for the order workflow: placement with stock reservation and
invoice issue, cancellation with stock restoration, staff status updates,
staff assignment and order reads.
"""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from evdealer.core.exceptions import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from evdealer.core.identity import Identity
from evdealer.database.models import (
    Invoice,
    InvoiceStatus,
    Order,
    OrderStatus,
    UserRole,
    Vehicle,
)
from evdealer.schemas.orders import OrderFilter
from evdealer.services.orders.service import OrderService
from factories import (
    create_user,
    create_vehicle,
    identity_of,
    load_invoice,
    mark_paid,
    place_order,
)


@pytest.fixture
def service(db_session, clock, settings) -> OrderService:
    return OrderService(db_session, clock=clock, settings=settings)


async def reload_vehicle(session, vehicle_id) -> Vehicle:
    return await session.get(Vehicle, vehicle_id, populate_existing=True)


async def reload_order(session, order_id) -> Order:
    return await session.get(Order, order_id, populate_existing=True)


# ============================================================================
# Order placement
# ============================================================================


class TestCreateOrder:
    async def test_reserves_stock_and_issues_invoice(
        self, service, db_session, customer, vehicle
    ):
        order_id = await service.create_order(identity_of(customer), vehicle.id, "  Blue please ")

        order = await service.get_order(identity_of(customer), order_id)
        assert order.status == OrderStatus.PENDING
        assert order.order_number == "ORD-20240315-0001"
        assert order.total_amount == Decimal("45000.00")
        assert order.notes == "Blue please"
        assert len(order.items) == 1
        assert order.items[0].unit_price == Decimal("45000.00")
        assert order.invoice.invoice_number == "INV-20240315-0001"
        assert order.invoice.status == InvoiceStatus.PENDING
        assert order.invoice.total_amount == order.total_amount
        assert order.invoice.notes == "Awaiting payment"
        assert order.payment is None

        assert (await reload_vehicle(db_session, vehicle.id)).stock == 2

    async def test_numbers_increase_within_a_day(self, service, customer, vehicle):
        await service.create_order(identity_of(customer), vehicle.id)
        second_id = await service.create_order(identity_of(customer), vehicle.id)

        second = await service.get_order(identity_of(customer), second_id)
        assert second.order_number == "ORD-20240315-0002"
        assert second.invoice.invoice_number == "INV-20240315-0002"

    async def test_numbering_restarts_each_day(self, service, clock, customer, vehicle):
        await service.create_order(identity_of(customer), vehicle.id)
        clock.advance(days=1)

        order_id = await service.create_order(identity_of(customer), vehicle.id)

        order = await service.get_order(identity_of(customer), order_id)
        assert order.order_number == "ORD-20240316-0001"
        assert order.invoice.invoice_number == "INV-20240316-0001"

    async def test_unit_price_is_frozen_at_order_time(
        self, service, db_session, customer, vehicle
    ):
        order_id = await service.create_order(identity_of(customer), vehicle.id)

        vehicle.base_price = Decimal("52000.00")
        await db_session.commit()

        order = await service.get_order(identity_of(customer), order_id)
        assert order.total_amount == Decimal("45000.00")
        assert order.items[0].unit_price == Decimal("45000.00")

    async def test_out_of_stock(self, service, db_session, customer):
        sold_out = await create_vehicle(db_session, stock=0)

        with pytest.raises(InvalidStateError, match="out of stock"):
            await service.create_order(identity_of(customer), sold_out.id)

        orders = (await db_session.execute(select(Order))).scalars().all()
        assert orders == []

    async def test_inactive_vehicle(self, service, db_session, customer):
        retired = await create_vehicle(db_session, stock=4, is_active=False)

        with pytest.raises(InvalidStateError, match="not available for purchase"):
            await service.create_order(identity_of(customer), retired.id)

        assert (await reload_vehicle(db_session, retired.id)).stock == 4

    async def test_missing_vehicle(self, service, customer):
        with pytest.raises(NotFoundError, match="Vehicle not found"):
            await service.create_order(identity_of(customer), uuid4())

    async def test_last_unit_sells_once(self, service, db_session, customer, other_customer):
        last_unit = await create_vehicle(db_session, stock=1)

        await service.create_order(identity_of(customer), last_unit.id)
        with pytest.raises(InvalidStateError, match="out of stock"):
            await service.create_order(identity_of(other_customer), last_unit.id)

        assert (await reload_vehicle(db_session, last_unit.id)).stock == 0

    async def test_staff_cannot_place_orders(self, service, staff, vehicle):
        with pytest.raises(ForbiddenError, match="Only customers can place orders"):
            await service.create_order(identity_of(staff), vehicle.id)

    async def test_anonymous_caller(self, service, vehicle):
        with pytest.raises(UnauthorizedError):
            await service.create_order(Identity.anonymous(), vehicle.id)

    async def test_unknown_customer(self, service, vehicle):
        ghost = Identity(user_id=uuid4(), role=UserRole.CUSTOMER)

        with pytest.raises(NotFoundError, match="Customer not found"):
            await service.create_order(ghost, vehicle.id)

    async def test_deleted_customer(self, service, db_session, vehicle):
        former = await create_user(db_session, UserRole.CUSTOMER)
        former.soft_delete(datetime(2024, 3, 1, tzinfo=timezone.utc))
        await db_session.commit()

        with pytest.raises(NotFoundError, match="Customer not found"):
            await service.create_order(identity_of(former), vehicle.id)

        assert (await reload_vehicle(db_session, vehicle.id)).stock == 3

    async def test_stored_role_wins_over_claim(self, service, staff, vehicle):
        claimed_customer = Identity(user_id=staff.id, role=UserRole.CUSTOMER)

        with pytest.raises(ForbiddenError):
            await service.create_order(claimed_customer, vehicle.id)


# ============================================================================
# Cancellation
# ============================================================================


class TestCancelOrder:
    async def test_restores_stock_and_records_reason(
        self, service, db_session, clock, customer, vehicle
    ):
        order_id = await place_order(db_session, clock, customer, vehicle)
        clock.advance(minutes=5)

        await service.cancel_order(identity_of(customer), order_id, "Changed my mind")

        order = await reload_order(db_session, order_id)
        assert order.status == OrderStatus.CANCELLED
        assert order.notes == "Cancelled: Changed my mind"
        assert order.updated_at == clock.now()
        assert order.updated_by == customer.id
        assert (await reload_vehicle(db_session, vehicle.id)).stock == 3

    async def test_reason_is_appended_to_existing_notes(
        self, service, db_session, clock, customer, vehicle
    ):
        order_id = await OrderService(db_session, clock=clock).create_order(
            identity_of(customer), vehicle.id, "Need it by June"
        )

        await service.cancel_order(identity_of(customer), order_id, "Found a better deal")

        order = await reload_order(db_session, order_id)
        assert order.notes == "Need it by June\nCancelled: Found a better deal"

    async def test_invoice_is_left_untouched(
        self, service, db_session, clock, customer, vehicle
    ):
        order_id = await place_order(db_session, clock, customer, vehicle)

        await service.cancel_order(identity_of(customer), order_id, "No longer needed")

        invoice = await load_invoice(db_session, order_id)
        assert invoice.status == InvoiceStatus.PENDING

    async def test_cancelling_twice_fails(self, service, db_session, clock, customer, vehicle):
        order_id = await place_order(db_session, clock, customer, vehicle)
        await service.cancel_order(identity_of(customer), order_id, "First")

        with pytest.raises(InvalidStateError, match="already cancelled"):
            await service.cancel_order(identity_of(customer), order_id, "Second")

        assert (await reload_vehicle(db_session, vehicle.id)).stock == 3

    async def test_other_customer_is_forbidden(
        self, service, db_session, clock, customer, other_customer, vehicle
    ):
        order_id = await place_order(db_session, clock, customer, vehicle)

        with pytest.raises(ForbiddenError, match="permission to access this order"):
            await service.cancel_order(identity_of(other_customer), order_id, "Not mine")

        assert (await reload_order(db_session, order_id)).status == OrderStatus.PENDING

    async def test_staff_may_cancel(self, service, db_session, clock, customer, staff, vehicle):
        order_id = await place_order(db_session, clock, customer, vehicle)

        await service.cancel_order(identity_of(staff), order_id, "Customer called in")

        order = await reload_order(db_session, order_id)
        assert order.status == OrderStatus.CANCELLED
        assert order.updated_by == staff.id

    async def test_paid_order_cannot_be_cancelled(
        self, service, db_session, clock, customer, vehicle
    ):
        order_id = await place_order(db_session, clock, customer, vehicle)
        await mark_paid(db_session, order_id, clock)

        with pytest.raises(InvalidStateError, match="Cannot cancel a paid order"):
            await service.cancel_order(identity_of(customer), order_id, "Too late")

        order = await reload_order(db_session, order_id)
        assert order.status == OrderStatus.CONFIRMED
        assert order.notes is None
        assert (await reload_vehicle(db_session, vehicle.id)).stock == 2

    async def test_paid_pending_order_cannot_be_cancelled(
        self, service, db_session, clock, customer, vehicle
    ):
        order_id = await place_order(db_session, clock, customer, vehicle)
        await mark_paid(db_session, order_id, clock, confirm=False)

        with pytest.raises(InvalidStateError, match="Cannot cancel a paid order"):
            await service.cancel_order(identity_of(customer), order_id, "Too late")

    async def test_missing_order(self, service, customer):
        with pytest.raises(NotFoundError, match="Order not found"):
            await service.cancel_order(identity_of(customer), uuid4(), "Whatever")

    async def test_deleted_vehicle_aborts_cancellation(
        self, service, db_session, clock, customer, vehicle
    ):
        vehicle_id = vehicle.id
        order_id = await place_order(db_session, clock, customer, vehicle)
        vehicle.soft_delete(datetime(2024, 3, 15, 11, 0, tzinfo=timezone.utc))
        await db_session.commit()

        with pytest.raises(InvalidStateError, match="not found while restoring stock"):
            await service.cancel_order(identity_of(customer), order_id, "Vehicle retired")

        order = await reload_order(db_session, order_id)
        assert order.status == OrderStatus.PENDING
        assert order.notes is None
        assert (await reload_vehicle(db_session, vehicle_id)).stock == 2


class TestStockConservation:
    async def test_stock_plus_live_orders_is_constant(
        self, service, db_session, clock, customer, other_customer, vehicle
    ):
        initial = vehicle.stock
        first = await place_order(db_session, clock, customer, vehicle)
        await place_order(db_session, clock, other_customer, vehicle)
        await service.cancel_order(identity_of(customer), first, "Duplicate")
        await place_order(db_session, clock, customer, vehicle)

        live_orders = (
            await db_session.execute(
                select(Order).where(Order.status != OrderStatus.CANCELLED)
            )
        ).scalars().all()
        stock = (await reload_vehicle(db_session, vehicle.id)).stock

        assert stock + len(live_orders) == initial


# ============================================================================
# Staff status updates and assignment
# ============================================================================


class TestUpdateOrderStatus:
    async def test_confirm_paid_order(self, service, db_session, clock, customer, staff, vehicle):
        order_id = await place_order(db_session, clock, customer, vehicle)
        await mark_paid(db_session, order_id, clock, confirm=False)
        clock.advance(hours=1)

        order = await service.update_order_status(
            identity_of(staff), order_id, OrderStatus.CONFIRMED, "Payment verified"
        )

        assert order.status == OrderStatus.CONFIRMED
        assert order.confirmed_at == clock.now()
        assert order.notes == "Payment verified"

    async def test_confirm_requires_payment(
        self, service, db_session, clock, customer, staff, vehicle
    ):
        order_id = await place_order(db_session, clock, customer, vehicle)

        with pytest.raises(InvalidStateError, match="without payment"):
            await service.update_order_status(identity_of(staff), order_id, OrderStatus.CONFIRMED)

    async def test_same_status_appends_notes(
        self, service, db_session, clock, customer, staff, vehicle
    ):
        order_id = await place_order(db_session, clock, customer, vehicle)

        await service.update_order_status(
            identity_of(staff), order_id, OrderStatus.PENDING, "Called customer"
        )
        order = await service.update_order_status(
            identity_of(staff), order_id, OrderStatus.PENDING, "Left voicemail"
        )

        assert order.status == OrderStatus.PENDING
        assert order.notes == "Called customer\nLeft voicemail"

    async def test_cancel_is_not_a_status_update(
        self, service, db_session, clock, customer, staff, vehicle
    ):
        order_id = await place_order(db_session, clock, customer, vehicle)

        with pytest.raises(InvalidStateError, match="order cancellation"):
            await service.update_order_status(identity_of(staff), order_id, OrderStatus.CANCELLED)

        assert (await reload_vehicle(db_session, vehicle.id)).stock == 2

    async def test_customer_is_forbidden(self, service, db_session, clock, customer, vehicle):
        order_id = await place_order(db_session, clock, customer, vehicle)

        with pytest.raises(ForbiddenError, match="Only staff can update order status"):
            await service.update_order_status(
                identity_of(customer), order_id, OrderStatus.CONFIRMED
            )


class TestAssignStaff:
    async def test_assigns_staff_member(
        self, service, db_session, clock, customer, staff, manager, vehicle
    ):
        order_id = await place_order(db_session, clock, customer, vehicle)

        order = await service.assign_staff(identity_of(manager), order_id, staff.id)

        assert order.staff_id == staff.id
        assert order.staff.full_name == "Sam Staff"

    async def test_assignee_must_be_staff(
        self, service, db_session, clock, customer, other_customer, staff, vehicle
    ):
        order_id = await place_order(db_session, clock, customer, vehicle)

        with pytest.raises(InvalidStateError, match="only be assigned to dealer staff"):
            await service.assign_staff(identity_of(staff), order_id, other_customer.id)

    async def test_unknown_assignee(self, service, db_session, clock, customer, staff, vehicle):
        order_id = await place_order(db_session, clock, customer, vehicle)

        with pytest.raises(NotFoundError, match="Staff member not found"):
            await service.assign_staff(identity_of(staff), order_id, uuid4())


# ============================================================================
# Reads
# ============================================================================


class TestOrderReads:
    async def test_customer_cannot_read_other_orders(
        self, service, db_session, clock, customer, other_customer, vehicle
    ):
        order_id = await place_order(db_session, clock, customer, vehicle)

        with pytest.raises(ForbiddenError):
            await service.get_order(identity_of(other_customer), order_id)

    async def test_staff_reads_any_order(
        self, service, db_session, clock, customer, staff, vehicle
    ):
        order_id = await place_order(db_session, clock, customer, vehicle)

        order = await service.get_order(identity_of(staff), order_id)

        assert order.customer.full_name == "Casey Customer"
        assert order.items[0].vehicle.model_name == "Model E"

    async def test_paid_order_projection(self, service, db_session, clock, customer, vehicle):
        order_id = await place_order(db_session, clock, customer, vehicle)
        await mark_paid(db_session, order_id, clock)

        order = await service.get_order(identity_of(customer), order_id)

        assert order.payment_status.value == "paid"
        assert order.payment_date == clock.now()
        assert order.invoice.status == InvoiceStatus.PAID

    async def test_my_orders_are_paged_newest_first(
        self, service, db_session, clock, customer, other_customer
    ):
        vehicle = await create_vehicle(db_session, stock=4)
        for _ in range(3):
            await place_order(db_session, clock, customer, vehicle)
            clock.advance(minutes=1)
        await place_order(db_session, clock, other_customer, vehicle)

        page = await service.get_my_orders(identity_of(customer), page=1, page_size=2)

        assert page.total_count == 3
        assert page.total_pages == 2
        assert [o.order_number for o in page.items] == [
            "ORD-20240315-0003",
            "ORD-20240315-0002",
        ]

    async def test_out_of_range_paging_is_clamped(
        self, service, db_session, clock, customer, vehicle
    ):
        await place_order(db_session, clock, customer, vehicle)

        page = await service.get_my_orders(identity_of(customer), page=0, page_size=0)

        assert page.page == 1
        assert page.page_size == 10
        assert page.total_count == 1

    async def test_all_orders_requires_staff(self, service, customer):
        with pytest.raises(ForbiddenError, match="Only staff can view all orders"):
            await service.get_all_orders(identity_of(customer))

    async def test_all_orders_filters(
        self, service, db_session, clock, customer, other_customer, staff, vehicle
    ):
        kept = await place_order(db_session, clock, customer, vehicle)
        cancelled = await place_order(db_session, clock, other_customer, vehicle)
        await service.cancel_order(identity_of(other_customer), cancelled, "Oops")

        pending = await service.get_all_orders(
            identity_of(staff), filters=OrderFilter(status=OrderStatus.PENDING)
        )
        assert [o.id for o in pending.items] == [kept]

        by_name = await service.get_all_orders(
            identity_of(staff), filters=OrderFilter(search_term="olive")
        )
        assert [o.id for o in by_name.items] == [cancelled]

        by_customer = await service.get_all_orders(
            identity_of(staff), filters=OrderFilter(customer_id=customer.id)
        )
        assert by_customer.total_count == 1

    async def test_invoice_belongs_to_order(self, db_session, clock, customer, vehicle):
        order_id = await place_order(db_session, clock, customer, vehicle)

        invoices = (
            await db_session.execute(select(Invoice).where(Invoice.order_id == order_id))
        ).scalars().all()

        assert len(invoices) == 1
        assert invoices[0].customer_id == customer.id

    async def test_deleted_customer_is_unauthorized(self, service, db_session, vehicle):
        former = await create_user(db_session, UserRole.CUSTOMER)
        former.soft_delete(datetime(2024, 3, 1, tzinfo=timezone.utc))
        await db_session.commit()

        with pytest.raises(UnauthorizedError):
            await service.get_my_orders(identity_of(former))
