"""
Customer feedback model.

Resolution is tracked solely by ``resolved_by``: a non-null value is the
manager who resolved it.
"""

import uuid
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from evdealer.database.base import AuditedModel, create_table_args

if TYPE_CHECKING:
    from evdealer.database.models.order import Order
    from evdealer.database.models.user import User


class Feedback(AuditedModel):
    """Feedback left by a customer, optionally about a confirmed order."""

    __tablename__ = "feedbacks"

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    order_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    content: Mapped[str] = mapped_column(Text, nullable=False)

    resolved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    customer: Mapped["User"] = relationship(foreign_keys=[customer_id])
    resolver: Mapped[Optional["User"]] = relationship(foreign_keys=[resolved_by])
    order: Mapped[Optional["Order"]] = relationship(back_populates="feedbacks")

    __table_args__ = create_table_args(comment="Customer feedback")

    @property
    def is_resolved(self) -> bool:
        return self.resolved_by is not None
