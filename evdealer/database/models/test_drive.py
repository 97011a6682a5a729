"""
Test drive model.

Test drives are booked and managed outside this service; sales analytics
reads them to compute conversion rates.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from evdealer.database.base import AuditedModel, UTCDateTime, create_table_args, enum_type

if TYPE_CHECKING:
    from evdealer.database.models.user import User
    from evdealer.database.models.vehicle import Vehicle


class TestDriveStatus(str, Enum):
    """Test drive status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELED = "canceled"


class TestDrive(AuditedModel):
    """Scheduled test drive of a vehicle by a customer."""

    __tablename__ = "test_drives"
    __test__ = False

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    vehicle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("vehicles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    staff_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    status: Mapped[TestDriveStatus] = mapped_column(
        enum_type(TestDriveStatus, "test_drive_status"),
        nullable=False,
        default=TestDriveStatus.PENDING,
        index=True,
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    customer: Mapped["User"] = relationship(foreign_keys=[customer_id])
    staff: Mapped[Optional["User"]] = relationship(foreign_keys=[staff_id])
    vehicle: Mapped["Vehicle"] = relationship()

    __table_args__ = create_table_args(comment="Customer test drives")
