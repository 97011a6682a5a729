"""
Database models package initialization.

Models are imported here so they are registered with the Base metadata
for relationship resolution and Alembic autogeneration.
"""

from evdealer.database.base import AuditedModel, Base
from evdealer.database.models.delivery import Delivery, DeliveryStatus
from evdealer.database.models.feedback import Feedback
from evdealer.database.models.invoice import Invoice, InvoiceStatus, Payment, PaymentStatus
from evdealer.database.models.order import Order, OrderItem, OrderStatus
from evdealer.database.models.test_drive import TestDrive, TestDriveStatus
from evdealer.database.models.user import User, UserRole
from evdealer.database.models.vehicle import Vehicle

__all__ = [
    "AuditedModel",
    "Base",
    "Delivery",
    "DeliveryStatus",
    "Feedback",
    "Invoice",
    "InvoiceStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "TestDrive",
    "TestDriveStatus",
    "User",
    "UserRole",
    "Vehicle",
]
