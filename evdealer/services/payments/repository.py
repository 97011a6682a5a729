"""
Invoice and payment data access.

Provides invoice numbering, the candidate invoice lookups used when a
payment intent is reconciled, and payment lookup by intent id.
"""

import uuid
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from evdealer.database.models import (
    Invoice,
    InvoiceStatus,
    Order,
    OrderItem,
    Payment,
)
from evdealer.database.repository import GenericRepository
from evdealer.services.orders.repository import next_document_number

INVOICE_NUMBER_PREFIX = "INV"

INVOICE_RECONCILE_OPTIONS = (
    selectinload(Invoice.payments),
    selectinload(Invoice.order).selectinload(Order.items).selectinload(OrderItem.vehicle),
)


class InvoiceRepository(GenericRepository[Invoice]):
    """Repository for invoices."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Invoice)

    async def next_invoice_number(self, day) -> str:
        return await next_document_number(
            self.session, Invoice.invoice_number, INVOICE_NUMBER_PREFIX, day
        )

    async def get_for_reconciliation(self, invoice_id: uuid.UUID) -> Optional[Invoice]:
        """Load an invoice with its payments and order items."""
        return await self.get_by_id(invoice_id, *INVOICE_RECONCILE_OPTIONS, refresh=True)

    async def recent_unpaid(self, limit: int) -> Sequence[Invoice]:
        """
        Most recent invoices that are not Paid, newest first.

        Args:
            limit: Maximum number of invoices scanned

        Returns:
            Invoices with payments and order items loaded
        """
        statement = (
            self.query(*INVOICE_RECONCILE_OPTIONS)
            .where(Invoice.status != InvoiceStatus.PAID)
            .order_by(Invoice.created_at.desc(), Invoice.invoice_number.desc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return await self.list(statement)


class PaymentRepository(GenericRepository[Payment]):
    """Repository for payments."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Payment)

    async def get_by_intent(self, payment_intent_id: str) -> Optional[Payment]:
        """
        Find the payment recorded for a processor payment intent.

        Soft-deleted payments are included because the intent id stays
        unique across all rows.
        """
        statement = self.query(
            selectinload(Payment.invoice), include_deleted=True
        ).where(Payment.payment_intent_id == payment_intent_id).execution_options(
            populate_existing=True
        )
        return await self.first(statement)
