"""
Sales analytics Pydantic schemas.
"""

from decimal import Decimal
from typing import Dict, List
from uuid import UUID

from pydantic import BaseModel, Field


class MonthlyRevenue(BaseModel):
    year: int
    month: int
    label: str = Field(..., description='Month label such as "Oct 2026"')
    revenue: Decimal
    order_count: int


class VehicleSales(BaseModel):
    vehicle_id: UUID
    model_name: str
    trim_name: str
    units_sold: int
    revenue: Decimal


class VehicleStock(BaseModel):
    vehicle_id: UUID
    model_name: str
    trim_name: str
    stock: int


class DashboardSummary(BaseModel):
    """Headline figures for the sales dashboard."""

    total_revenue: Decimal
    total_orders: int
    average_order_value: Decimal
    orders_by_status: Dict[str, int]
    deliveries_by_status: Dict[str, int]
    on_time_delivery_rate: float
    total_customers: int
    new_customers: int
    total_test_drives: int
    test_drive_conversion_rate: float
    total_feedbacks: int
    pending_feedbacks: int
    resolved_feedbacks: int
    feedback_resolution_rate: float
    monthly_revenue: List[MonthlyRevenue]
    top_selling_vehicles: List[VehicleSales]
    low_stock_vehicles: List[VehicleStock]
    out_of_stock_vehicles: List[VehicleStock]
