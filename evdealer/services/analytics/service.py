"""
Sales analytics over orders, deliveries, customers, test drives,
inventory and feedback.

All figures exclude soft-deleted rows. Revenue only counts confirmed
orders. Rates are percentages in the 0..100 range.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from evdealer.core.clock import Clock, SystemClock, ensure_utc
from evdealer.core.config import Settings, get_settings
from evdealer.core.identity import Identity
from evdealer.core.logging import get_logger
from evdealer.database.models import (
    Delivery,
    DeliveryStatus,
    Feedback,
    Order,
    OrderItem,
    OrderStatus,
    TestDrive,
    TestDriveStatus,
    User,
    UserRole,
    Vehicle,
)
from evdealer.schemas.analytics import (
    DashboardSummary,
    MonthlyRevenue,
    VehicleSales,
    VehicleStock,
)
from evdealer.services.access_policy import Action, check_access, resolve_actor
from evdealer.services.unit_of_work import UnitOfWork

logger = get_logger(__name__)

CENTS = Decimal("0.01")


def _money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS)


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _within(
    statement: Select,
    column,
    from_date: Optional[datetime],
    to_date: Optional[datetime],
) -> Select:
    if from_date is not None:
        statement = statement.where(column >= from_date)
    if to_date is not None:
        statement = statement.where(column <= to_date)
    return statement


class AnalyticsService:
    """
    Read-side sales figures for the staff dashboard.

    The metric methods do not check access themselves; callers run
    ``authorize`` first. ``get_dashboard_summary`` authorizes on its own.
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.uow = UnitOfWork(session)
        self.session = session
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()

    async def authorize(self, identity: Identity) -> Identity:
        """
        Ensure the caller may read sales analytics.

        Raises:
            UnauthorizedError: If the caller is not authenticated
            ForbiddenError: If the caller is not staff
        """
        actor = await resolve_actor(self.uow.users, identity)
        check_access(actor, Action.VIEW_ANALYTICS)
        return actor

    async def _scalar(self, statement: Select):
        result = await self.session.execute(statement)
        return result.scalar_one()

    async def total_revenue(
        self, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None
    ) -> Decimal:
        statement = _within(
            select(func.sum(Order.total_amount)).where(
                Order.deleted_at.is_(None), Order.status == OrderStatus.CONFIRMED
            ),
            Order.created_at,
            from_date,
            to_date,
        )
        return _money(await self._scalar(statement))

    async def total_orders_count(
        self, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None
    ) -> int:
        statement = _within(
            select(func.count(Order.id)).where(Order.deleted_at.is_(None)),
            Order.created_at,
            from_date,
            to_date,
        )
        return int(await self._scalar(statement))

    async def orders_by_status(
        self, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None
    ) -> Dict[OrderStatus, int]:
        """Order counts per status; every status is present."""
        statement = _within(
            select(Order.status, func.count(Order.id))
            .where(Order.deleted_at.is_(None))
            .group_by(Order.status),
            Order.created_at,
            from_date,
            to_date,
        )
        result = await self.session.execute(statement)
        counts = {status: 0 for status in OrderStatus}
        for status, count in result.all():
            counts[status] = int(count)
        return counts

    async def monthly_revenue(self, months: int = 6) -> List[MonthlyRevenue]:
        """
        Confirmed revenue per calendar month, oldest first.

        Covers the current month and the ``months - 1`` before it; months
        without sales are reported with zero revenue.
        """
        months = max(months, 1)
        now = self.clock.now()
        buckets = [
            _shift_month(now.year, now.month, -offset)
            for offset in range(months - 1, -1, -1)
        ]
        first_year, first_month = buckets[0]
        start = datetime(first_year, first_month, 1, tzinfo=timezone.utc)

        statement = select(Order.created_at, Order.total_amount).where(
            Order.deleted_at.is_(None),
            Order.status == OrderStatus.CONFIRMED,
            Order.created_at >= start,
        )
        result = await self.session.execute(statement)

        revenue: Dict[tuple[int, int], Decimal] = {bucket: Decimal("0.00") for bucket in buckets}
        order_counts: Dict[tuple[int, int], int] = {bucket: 0 for bucket in buckets}
        for created_at, total_amount in result.all():
            created_at = ensure_utc(created_at)
            key = (created_at.year, created_at.month)
            if key in revenue:
                revenue[key] += _money(total_amount)
                order_counts[key] += 1

        return [
            MonthlyRevenue(
                year=year,
                month=month,
                label=f"{datetime(year, month, 1):%b %Y}",
                revenue=revenue[(year, month)],
                order_count=order_counts[(year, month)],
            )
            for year, month in buckets
        ]

    async def top_selling_vehicles(
        self,
        top: int = 5,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> List[VehicleSales]:
        """Vehicles ranked by units sold on confirmed orders."""
        units = func.count(OrderItem.id).label("units_sold")
        statement = _within(
            select(
                OrderItem.vehicle_id,
                Vehicle.model_name,
                Vehicle.trim_name,
                units,
                func.sum(OrderItem.unit_price).label("revenue"),
            )
            .join(Order, OrderItem.order_id == Order.id)
            .join(Vehicle, OrderItem.vehicle_id == Vehicle.id)
            .where(
                OrderItem.deleted_at.is_(None),
                Order.deleted_at.is_(None),
                Order.status == OrderStatus.CONFIRMED,
            )
            .group_by(OrderItem.vehicle_id, Vehicle.model_name, Vehicle.trim_name)
            .order_by(units.desc(), Vehicle.model_name)
            .limit(top),
            Order.created_at,
            from_date,
            to_date,
        )
        result = await self.session.execute(statement)
        return [
            VehicleSales(
                vehicle_id=row.vehicle_id,
                model_name=row.model_name,
                trim_name=row.trim_name,
                units_sold=int(row.units_sold),
                revenue=_money(row.revenue),
            )
            for row in result.all()
        ]

    async def average_order_value(
        self, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None
    ) -> Decimal:
        statement = _within(
            select(func.count(Order.id), func.sum(Order.total_amount)).where(
                Order.deleted_at.is_(None), Order.status == OrderStatus.CONFIRMED
            ),
            Order.created_at,
            from_date,
            to_date,
        )
        count, total = (await self.session.execute(statement)).one()
        if not count:
            return Decimal("0.00")
        return (_money(total) / int(count)).quantize(CENTS)

    async def deliveries_by_status(self) -> Dict[DeliveryStatus, int]:
        statement = (
            select(Delivery.status, func.count(Delivery.id))
            .where(Delivery.deleted_at.is_(None))
            .group_by(Delivery.status)
        )
        result = await self.session.execute(statement)
        counts = {status: 0 for status in DeliveryStatus}
        for status, count in result.all():
            counts[status] = int(count)
        return counts

    async def on_time_delivery_rate(self) -> float:
        """Share of delivered deliveries handed over on or before the planned date."""
        statement = select(Delivery.planned_date, Delivery.actual_date).where(
            Delivery.deleted_at.is_(None), Delivery.status == DeliveryStatus.DELIVERED
        )
        rows = (await self.session.execute(statement)).all()
        if not rows:
            return 0.0
        on_time = sum(
            1
            for planned, actual in rows
            if planned is not None and actual is not None and ensure_utc(actual) <= ensure_utc(planned)
        )
        return on_time / len(rows) * 100

    async def total_customers_count(self) -> int:
        statement = select(func.count(User.id)).where(
            User.deleted_at.is_(None), User.role == UserRole.CUSTOMER
        )
        return int(await self._scalar(statement))

    async def new_customers_count(self, from_date: Optional[datetime] = None) -> int:
        statement = _within(
            select(func.count(User.id)).where(
                User.deleted_at.is_(None), User.role == UserRole.CUSTOMER
            ),
            User.created_at,
            from_date,
            None,
        )
        return int(await self._scalar(statement))

    async def total_test_drives_count(
        self, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None
    ) -> int:
        statement = _within(
            select(func.count(TestDrive.id)).where(TestDrive.deleted_at.is_(None)),
            TestDrive.created_at,
            from_date,
            to_date,
        )
        return int(await self._scalar(statement))

    async def test_drive_conversion_rate(self) -> float:
        """Share of customers with a completed test drive who went on to a confirmed order."""
        drivers = (
            select(TestDrive.customer_id)
            .where(
                TestDrive.deleted_at.is_(None),
                TestDrive.status == TestDriveStatus.COMPLETED,
            )
            .distinct()
        )
        driver_count = int(
            await self._scalar(select(func.count()).select_from(drivers.subquery()))
        )
        if driver_count == 0:
            return 0.0

        buyers = select(func.count(func.distinct(Order.customer_id))).where(
            Order.deleted_at.is_(None),
            Order.status == OrderStatus.CONFIRMED,
            Order.customer_id.in_(drivers),
        )
        buyer_count = int(await self._scalar(buyers))
        return buyer_count / driver_count * 100

    async def low_stock_vehicles(self, threshold: Optional[int] = None) -> List[VehicleStock]:
        threshold = threshold if threshold is not None else self.settings.low_stock_threshold
        statement = (
            select(Vehicle)
            .where(
                Vehicle.deleted_at.is_(None),
                Vehicle.is_active.is_(True),
                Vehicle.stock > 0,
                Vehicle.stock <= threshold,
            )
            .order_by(Vehicle.stock, Vehicle.model_name)
        )
        return await self._vehicle_stock(statement)

    async def out_of_stock_vehicles(self) -> List[VehicleStock]:
        statement = (
            select(Vehicle)
            .where(
                Vehicle.deleted_at.is_(None),
                Vehicle.is_active.is_(True),
                Vehicle.stock == 0,
            )
            .order_by(Vehicle.model_name)
        )
        return await self._vehicle_stock(statement)

    async def _vehicle_stock(self, statement: Select) -> List[VehicleStock]:
        vehicles = (await self.session.execute(statement)).scalars().all()
        return [
            VehicleStock(
                vehicle_id=v.id,
                model_name=v.model_name,
                trim_name=v.trim_name,
                stock=v.stock,
            )
            for v in vehicles
        ]

    async def total_feedbacks_count(
        self, from_date: Optional[datetime] = None, to_date: Optional[datetime] = None
    ) -> int:
        statement = _within(
            select(func.count(Feedback.id)).where(Feedback.deleted_at.is_(None)),
            Feedback.created_at,
            from_date,
            to_date,
        )
        return int(await self._scalar(statement))

    async def pending_feedbacks_count(self) -> int:
        statement = select(func.count(Feedback.id)).where(
            Feedback.deleted_at.is_(None), Feedback.resolved_by.is_(None)
        )
        return int(await self._scalar(statement))

    async def resolved_feedbacks_count(self) -> int:
        statement = select(func.count(Feedback.id)).where(
            Feedback.deleted_at.is_(None), Feedback.resolved_by.is_not(None)
        )
        return int(await self._scalar(statement))

    async def feedback_resolution_rate(self) -> float:
        total = await self.total_feedbacks_count()
        if total == 0:
            return 0.0
        return await self.resolved_feedbacks_count() / total * 100

    async def get_dashboard_summary(
        self,
        identity: Identity,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
    ) -> DashboardSummary:
        """
        Collect every dashboard figure.

        Args:
            identity: Acting staff member
            from_date: Start of the reporting range
            to_date: End of the reporting range

        Returns:
            Dashboard summary

        Raises:
            ForbiddenError: If the caller is not staff
        """
        actor = await self.authorize(identity)

        summary = DashboardSummary(
            total_revenue=await self.total_revenue(from_date, to_date),
            total_orders=await self.total_orders_count(from_date, to_date),
            average_order_value=await self.average_order_value(from_date, to_date),
            orders_by_status={
                status.value: count
                for status, count in (await self.orders_by_status(from_date, to_date)).items()
            },
            deliveries_by_status={
                status.value: count
                for status, count in (await self.deliveries_by_status()).items()
            },
            on_time_delivery_rate=await self.on_time_delivery_rate(),
            total_customers=await self.total_customers_count(),
            new_customers=await self.new_customers_count(from_date),
            total_test_drives=await self.total_test_drives_count(from_date, to_date),
            test_drive_conversion_rate=await self.test_drive_conversion_rate(),
            total_feedbacks=await self.total_feedbacks_count(from_date, to_date),
            pending_feedbacks=await self.pending_feedbacks_count(),
            resolved_feedbacks=await self.resolved_feedbacks_count(),
            feedback_resolution_rate=await self.feedback_resolution_rate(),
            monthly_revenue=await self.monthly_revenue(),
            top_selling_vehicles=await self.top_selling_vehicles(5, from_date, to_date),
            low_stock_vehicles=await self.low_stock_vehicles(),
            out_of_stock_vehicles=await self.out_of_stock_vehicles(),
        )

        logger.info(
            "Dashboard summary generated",
            staff_id=str(actor.user_id),
            total_orders=summary.total_orders,
            total_revenue=str(summary.total_revenue),
        )
        return summary
