"""
Tests for the delivery workflow: request window, scheduling, progression
and role-dependent cancellation.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from evdealer.core.exceptions import ForbiddenError, InvalidStateError, NotFoundError
from evdealer.database.models import Delivery, DeliveryStatus, Order
from evdealer.schemas.deliveries import DeliveryFilter
from evdealer.services.deliveries.service import DeliveryService
from factories import identity_of, mark_paid, place_order

ADDRESS = "12 Harbour Road, Springfield"
PLANNED = datetime(2024, 3, 20, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def service(db_session, clock, settings) -> DeliveryService:
    return DeliveryService(db_session, clock=clock, settings=settings)


@pytest.fixture
async def confirmed_order(db_session, clock, customer, vehicle):
    order_id = await place_order(db_session, clock, customer, vehicle)
    await mark_paid(db_session, order_id, clock)
    return order_id


@pytest.fixture
async def delivery(service, customer, confirmed_order):
    return await service.request_delivery(identity_of(customer), confirmed_order, ADDRESS)


class TestRequestDelivery:
    async def test_creates_pending_delivery(self, service, customer, confirmed_order):
        delivery = await service.request_delivery(
            identity_of(customer), confirmed_order, f"  {ADDRESS}  ", "Call before arriving"
        )

        assert delivery.status == DeliveryStatus.PENDING
        assert delivery.order_id == confirmed_order
        assert delivery.shipping_address == ADDRESS
        assert delivery.notes == "Call before arriving"
        assert delivery.order_number == "ORD-20240315-0001"
        assert delivery.customer.full_name == "Casey Customer"

    async def test_within_window(self, service, clock, customer, confirmed_order):
        clock.advance(hours=24)

        delivery = await service.request_delivery(identity_of(customer), confirmed_order, ADDRESS)

        assert delivery.status == DeliveryStatus.PENDING

    async def test_window_expired(self, service, clock, customer, confirmed_order):
        clock.advance(hours=24, seconds=1)

        with pytest.raises(InvalidStateError, match="within 24 hours"):
            await service.request_delivery(identity_of(customer), confirmed_order, ADDRESS)

    async def test_window_falls_back_to_last_update(
        self, service, db_session, clock, customer, confirmed_order
    ):
        order = await db_session.get(Order, confirmed_order, populate_existing=True)
        order.confirmed_at = None
        order.updated_at = clock.now()
        await db_session.commit()
        clock.advance(hours=30)

        with pytest.raises(InvalidStateError, match="within 24 hours"):
            await service.request_delivery(identity_of(customer), confirmed_order, ADDRESS)

    async def test_unpaid_order(self, service, db_session, clock, customer, vehicle):
        order_id = await place_order(db_session, clock, customer, vehicle)

        with pytest.raises(InvalidStateError, match="unpaid order"):
            await service.request_delivery(identity_of(customer), order_id, ADDRESS)

    async def test_paid_but_not_confirmed(self, service, db_session, clock, customer, vehicle):
        order_id = await place_order(db_session, clock, customer, vehicle)
        await mark_paid(db_session, order_id, clock, confirm=False)

        with pytest.raises(InvalidStateError, match="confirmed orders"):
            await service.request_delivery(identity_of(customer), order_id, ADDRESS)

    async def test_only_one_delivery_per_order(self, service, customer, confirmed_order, delivery):
        with pytest.raises(InvalidStateError, match="already exists"):
            await service.request_delivery(identity_of(customer), confirmed_order, ADDRESS)

    async def test_soft_deleted_delivery_frees_the_order(
        self, service, db_session, clock, customer, confirmed_order, delivery
    ):
        retired = await db_session.get(Delivery, delivery.id)
        retired.soft_delete(clock.now())
        await db_session.commit()

        replacement = await service.request_delivery(
            identity_of(customer), confirmed_order, ADDRESS
        )

        assert replacement.id != delivery.id
        current = await service.get_delivery_by_order(identity_of(customer), confirmed_order)
        assert current.id == replacement.id

    async def test_other_customer(self, service, other_customer, confirmed_order):
        with pytest.raises(ForbiddenError):
            await service.request_delivery(identity_of(other_customer), confirmed_order, ADDRESS)

    async def test_staff_cannot_request(self, service, staff, confirmed_order):
        with pytest.raises(ForbiddenError, match="Only customers can request deliveries"):
            await service.request_delivery(identity_of(staff), confirmed_order, ADDRESS)

    async def test_missing_order(self, service, customer):
        with pytest.raises(NotFoundError):
            await service.request_delivery(identity_of(customer), uuid4(), ADDRESS)


class TestDeliveryProgress:
    async def test_full_progression(self, service, clock, staff, delivery):
        scheduled = await service.confirm_delivery(
            identity_of(staff), delivery.id, PLANNED, "Truck 3"
        )
        assert scheduled.status == DeliveryStatus.SCHEDULED
        assert scheduled.planned_date == PLANNED
        assert scheduled.staff_notes == "Truck 3"

        in_transit = await service.update_delivery_status(
            identity_of(staff), delivery.id, DeliveryStatus.IN_TRANSIT
        )
        assert in_transit.status == DeliveryStatus.IN_TRANSIT
        assert in_transit.actual_date is None

        clock.advance(days=4)
        delivered = await service.update_delivery_status(
            identity_of(staff), delivery.id, DeliveryStatus.DELIVERED
        )
        assert delivered.status == DeliveryStatus.DELIVERED
        assert delivered.actual_date == clock.now()
        assert delivered.updated_at == clock.now()

    async def test_delivered_with_explicit_date(self, service, staff, delivery):
        handed_over = datetime(2024, 3, 19, 16, 30, tzinfo=timezone.utc)
        await service.confirm_delivery(identity_of(staff), delivery.id, PLANNED)
        await service.update_delivery_status(identity_of(staff), delivery.id, DeliveryStatus.IN_TRANSIT)

        delivered = await service.update_delivery_status(
            identity_of(staff), delivery.id, DeliveryStatus.DELIVERED, actual_date=handed_over
        )

        assert delivered.actual_date == handed_over

    async def test_cannot_skip_scheduling(self, service, staff, delivery):
        with pytest.raises(InvalidStateError, match="must be Scheduled"):
            await service.update_delivery_status(
                identity_of(staff), delivery.id, DeliveryStatus.IN_TRANSIT
            )

    async def test_confirm_only_pending(self, service, staff, delivery):
        await service.confirm_delivery(identity_of(staff), delivery.id, PLANNED)

        with pytest.raises(InvalidStateError, match="with status Scheduled"):
            await service.confirm_delivery(identity_of(staff), delivery.id, PLANNED)

    async def test_customer_cannot_schedule(self, service, customer, delivery):
        with pytest.raises(ForbiddenError, match="Only staff can confirm deliveries"):
            await service.confirm_delivery(identity_of(customer), delivery.id, PLANNED)

    async def test_missing_delivery(self, service, staff):
        with pytest.raises(NotFoundError, match="Delivery not found"):
            await service.confirm_delivery(identity_of(staff), uuid4(), PLANNED)


class TestCancelDelivery:
    async def test_customer_cancels_pending(self, service, customer, delivery):
        cancelled = await service.cancel_delivery(identity_of(customer), delivery.id)

        assert cancelled.status == DeliveryStatus.CANCELLED

    async def test_customer_cannot_cancel_scheduled(self, service, customer, staff, delivery):
        await service.confirm_delivery(identity_of(staff), delivery.id, PLANNED)

        with pytest.raises(InvalidStateError, match="only cancel pending"):
            await service.cancel_delivery(identity_of(customer), delivery.id)

    async def test_staff_cancels_scheduled(self, service, staff, delivery):
        await service.confirm_delivery(identity_of(staff), delivery.id, PLANNED)

        cancelled = await service.cancel_delivery(identity_of(staff), delivery.id)

        assert cancelled.status == DeliveryStatus.CANCELLED

    async def test_staff_cannot_cancel_in_transit(self, service, staff, delivery):
        await service.confirm_delivery(identity_of(staff), delivery.id, PLANNED)
        await service.update_delivery_status(identity_of(staff), delivery.id, DeliveryStatus.IN_TRANSIT)

        with pytest.raises(InvalidStateError, match="in progress or completed"):
            await service.cancel_delivery(identity_of(staff), delivery.id)

    async def test_other_customer(self, service, other_customer, delivery):
        with pytest.raises(ForbiddenError):
            await service.cancel_delivery(identity_of(other_customer), delivery.id)

    async def test_cancelled_delivery_is_terminal(self, service, customer, staff, delivery):
        await service.cancel_delivery(identity_of(customer), delivery.id)

        with pytest.raises(InvalidStateError, match="Cannot update cancelled delivery"):
            await service.update_delivery_status(
                identity_of(staff), delivery.id, DeliveryStatus.SCHEDULED
            )

    async def test_cancelled_delivery_still_blocks_new_request(
        self, service, customer, confirmed_order, delivery
    ):
        await service.cancel_delivery(identity_of(customer), delivery.id)

        with pytest.raises(InvalidStateError, match="already exists"):
            await service.request_delivery(identity_of(customer), confirmed_order, ADDRESS)


class TestDeliveryReads:
    async def test_get_by_order(self, service, customer, confirmed_order, delivery):
        found = await service.get_delivery_by_order(identity_of(customer), confirmed_order)

        assert found.id == delivery.id

    async def test_get_by_order_without_delivery(self, service, customer, confirmed_order):
        with pytest.raises(NotFoundError, match="No delivery found"):
            await service.get_delivery_by_order(identity_of(customer), confirmed_order)

    async def test_other_customer_cannot_read(self, service, other_customer, delivery):
        with pytest.raises(ForbiddenError):
            await service.get_delivery(identity_of(other_customer), delivery.id)

    async def test_staff_listing_with_filters(self, service, staff, customer, delivery):
        everything = await service.get_all_deliveries(identity_of(staff))
        assert everything.total_count == 1

        by_address = await service.get_all_deliveries(
            identity_of(staff), filters=DeliveryFilter(search_term="harbour")
        )
        assert [d.id for d in by_address.items] == [delivery.id]

        scheduled = await service.get_all_deliveries(
            identity_of(staff), filters=DeliveryFilter(status=DeliveryStatus.SCHEDULED)
        )
        assert scheduled.total_count == 0

    async def test_customer_cannot_list_all(self, service, customer):
        with pytest.raises(ForbiddenError, match="Only staff can view all deliveries"):
            await service.get_all_deliveries(identity_of(customer))
