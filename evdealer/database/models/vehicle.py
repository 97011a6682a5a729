"""
Vehicle model for the dealership inventory.

``stock`` is the number of units available for new orders. It is only
changed through the conditional stock updates in the order workflow.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from evdealer.database.base import AuditedModel, create_table_args


class Vehicle(AuditedModel):
    """
    Electric vehicle offered for sale.

    Attributes:
        model_name: Model name, e.g. "VF 8"
        trim_name: Trim name, e.g. "Plus"
        model_year: Model year when known
        base_price: Current list price
        image_url: Optional absolute image URL
        battery_capacity: Battery capacity in kWh
        range_km: Rated range in kilometres
        charging_time: Fast charge time in minutes
        top_speed: Top speed in km/h
        stock: Units available, never negative
        is_active: Whether the vehicle can be purchased
    """

    __tablename__ = "vehicles"

    model_name: Mapped[str] = mapped_column(String(100), nullable=False)
    trim_name: Mapped[str] = mapped_column(String(100), nullable=False)
    model_year: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    base_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="List price used as the order unit price",
    )

    image_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    battery_capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    range_km: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    charging_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    top_speed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    stock: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Units available for new orders",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether the vehicle is offered for purchase",
    )

    __table_args__ = create_table_args(
        CheckConstraint("stock >= 0", name="ck_vehicles_stock_non_negative"),
        CheckConstraint("base_price >= 0", name="ck_vehicles_base_price_non_negative"),
        Index("ix_vehicles_active_stock", "is_active", "stock"),
        comment="Vehicle catalog with stock counters",
    )

    @property
    def display_name(self) -> str:
        return f"{self.model_name} - {self.trim_name}"

    @property
    def is_purchasable(self) -> bool:
        return self.is_active and not self.is_deleted and self.stock > 0
