"""
SQLAlchemy declarative base and common model mixins.

This module provides the SQLAlchemy DeclarativeBase, mixins for UUID keys,
audit columns and soft deletion, and a UTC-normalizing datetime column
type. All dealership entities derive from ``AuditedModel`` and are never
physically deleted by the workflows.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Enum as SQLEnum, Uuid, func
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column
from sqlalchemy.types import TypeDecorator

from evdealer.core.logging import get_logger

logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime column.

    Values are converted to UTC on the way in and come back aware even on
    backends without native timezone support.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all SQLAlchemy models with async support.
    """

    __abstract__ = True

    def to_dict(self, exclude: Optional[set[str]] = None) -> Dict[str, Any]:
        """
        Convert model columns to a JSON friendly dictionary.

        Args:
            exclude: Set of attribute names to exclude from output

        Returns:
            Dictionary representation of the model
        """
        exclude = exclude or set()
        result: Dict[str, Any] = {}

        for column in self.__table__.columns:
            if column.name in exclude:
                continue
            value = getattr(self, column.key)
            if isinstance(value, datetime):
                result[column.name] = value.isoformat()
            elif isinstance(value, uuid.UUID):
                result[column.name] = str(value)
            elif isinstance(value, Decimal):
                result[column.name] = str(value)
            else:
                result[column.name] = value

        return result

    def __repr__(self) -> str:
        pk_values = []
        for column in self.__table__.primary_key.columns:
            value = getattr(self, column.key, None)
            if value is not None:
                pk_values.append(f"{column.name}={value!r}")

        pk_str = ", ".join(pk_values) if pk_values else "no primary key"
        return f"<{self.__class__.__name__}({pk_str})>"


class UUIDMixin:
    """Mixin for a UUID primary key generated client side."""

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            Uuid(as_uuid=True),
            primary_key=True,
            default=uuid.uuid4,
            nullable=False,
            comment="Unique identifier for the record",
        )


class AuditMixin:
    """
    Mixin for audit trail columns.

    Timestamps default to the current time but the services stamp them
    explicitly from the injected clock. ``updated_at`` only changes when a
    service stamps it.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            UTCDateTime(),
            nullable=False,
            default=utcnow,
            server_default=func.now(),
            comment="Timestamp when record was created",
        )

    @declared_attr
    def created_by(cls) -> Mapped[Optional[uuid.UUID]]:
        return mapped_column(
            Uuid(as_uuid=True),
            nullable=True,
            comment="User ID who created the record",
        )

    @declared_attr
    def updated_at(cls) -> Mapped[Optional[datetime]]:
        return mapped_column(
            UTCDateTime(),
            nullable=True,
            comment="Timestamp when record was last updated",
        )

    @declared_attr
    def updated_by(cls) -> Mapped[Optional[uuid.UUID]]:
        return mapped_column(
            Uuid(as_uuid=True),
            nullable=True,
            comment="User ID who last updated the record",
        )

    def stamp_created(self, at: datetime, by: Optional[uuid.UUID]) -> None:
        self.created_at = at
        self.created_by = by

    def stamp_updated(self, at: datetime, by: Optional[uuid.UUID]) -> None:
        self.updated_at = at
        self.updated_by = by


class SoftDeleteMixin:
    """
    Mixin for soft delete functionality.

    NULL ``deleted_at`` indicates the record is active.
    """

    @declared_attr
    def deleted_at(cls) -> Mapped[Optional[datetime]]:
        return mapped_column(
            UTCDateTime(),
            nullable=True,
            default=None,
            comment="Timestamp when record was soft deleted",
        )

    @declared_attr
    def deleted_by(cls) -> Mapped[Optional[uuid.UUID]]:
        return mapped_column(
            Uuid(as_uuid=True),
            nullable=True,
            comment="User ID who soft deleted the record",
        )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def soft_delete(self, at: datetime, by: Optional[uuid.UUID] = None) -> None:
        """
        Mark record as deleted.

        Args:
            at: Deletion timestamp
            by: Acting user id
        """
        if self.deleted_at is None:
            self.deleted_at = at
            self.deleted_by = by
            logger.info(
                "Record soft deleted",
                model=self.__class__.__name__,
                record_id=str(getattr(self, "id", None)),
            )


class AuditedModel(Base, UUIDMixin, AuditMixin, SoftDeleteMixin):
    """
    Base model with UUID key, audit fields and soft delete.

    Example:
        class Order(AuditedModel):
            __tablename__ = "orders"

            order_number: Mapped[str] = mapped_column(String(32), unique=True)
    """

    __abstract__ = True


def create_table_args(
    *constraints: Any,
    comment: Optional[str] = None,
    **kwargs: Any,
) -> tuple:
    """
    Build ``__table_args__`` from positional constraints and table options.

    Args:
        *constraints: Index/constraint objects for the table
        comment: Table comment for documentation
        **kwargs: Additional table keyword arguments

    Returns:
        Tuple suitable for __table_args__
    """
    options: Dict[str, Any] = dict(kwargs)
    if comment:
        options["comment"] = comment
    return (*constraints, options)


def enum_type(enum_cls: type, name: str) -> SQLEnum:
    """Enum column type persisting member values rather than names."""
    return SQLEnum(
        enum_cls,
        name=name,
        create_constraint=True,
        values_callable=lambda members: [member.value for member in members],
    )
