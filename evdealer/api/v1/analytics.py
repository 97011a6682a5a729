"""
Sales analytics API endpoints for staff.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Query

from evdealer.api.deps import AnalyticsServiceDep, CurrentIdentity
from evdealer.schemas.analytics import (
    DashboardSummary,
    MonthlyRevenue,
    VehicleSales,
    VehicleStock,
)

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get(
    "/dashboard",
    response_model=DashboardSummary,
    summary="Dashboard summary",
    description="Revenue, order, delivery, customer and feedback figures",
)
async def get_dashboard_summary(
    identity: CurrentIdentity,
    service: AnalyticsServiceDep,
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
) -> DashboardSummary:
    return await service.get_dashboard_summary(identity, from_date, to_date)


@router.get(
    "/revenue/monthly",
    response_model=List[MonthlyRevenue],
    summary="Revenue per month",
)
async def get_monthly_revenue(
    identity: CurrentIdentity,
    service: AnalyticsServiceDep,
    months: int = Query(6, ge=1, le=36),
) -> List[MonthlyRevenue]:
    await service.authorize(identity)
    return await service.monthly_revenue(months)


@router.get(
    "/vehicles/top-selling",
    response_model=List[VehicleSales],
    summary="Best selling vehicles",
)
async def get_top_selling_vehicles(
    identity: CurrentIdentity,
    service: AnalyticsServiceDep,
    top: int = Query(5, ge=1, le=50),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
) -> List[VehicleSales]:
    await service.authorize(identity)
    return await service.top_selling_vehicles(top, from_date, to_date)


@router.get(
    "/vehicles/low-stock",
    response_model=List[VehicleStock],
    summary="Vehicles running low on stock",
)
async def get_low_stock_vehicles(
    identity: CurrentIdentity,
    service: AnalyticsServiceDep,
    threshold: Optional[int] = Query(None, ge=0),
) -> List[VehicleStock]:
    await service.authorize(identity)
    return await service.low_stock_vehicles(threshold)
