"""
Generic per-entity repository.

Wraps an AsyncSession with the small contract every workflow relies on:
lookup by id, filtered queries that exclude soft-deleted rows, and
staging adds, updates and soft removals for the unit of work commit.
"""

import uuid
from datetime import datetime
from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.interfaces import ORMOption

from evdealer.core.exceptions import PersistenceError
from evdealer.core.logging import get_logger
from evdealer.database.base import AuditedModel

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=AuditedModel)


class GenericRepository(Generic[ModelT]):
    """
    Repository for a single mapped entity type.

    Attributes:
        session: Async database session shared with the unit of work
        model: Mapped class handled by this repository
    """

    def __init__(self, session: AsyncSession, model: Type[ModelT]):
        self.session = session
        self.model = model

    def query(self, *options: ORMOption, include_deleted: bool = False) -> Select:
        """
        Build a SELECT for the entity.

        Args:
            *options: Loader options such as selectinload
            include_deleted: Include soft-deleted rows

        Returns:
            Select statement that callers may refine further
        """
        statement = select(self.model)
        if not include_deleted:
            statement = statement.where(self.model.deleted_at.is_(None))
        if options:
            statement = statement.options(*options)
        return statement

    async def get_by_id(
        self,
        entity_id: uuid.UUID,
        *options: ORMOption,
        include_deleted: bool = False,
        refresh: bool = False,
    ) -> Optional[ModelT]:
        """
        Load an entity by primary key.

        Args:
            entity_id: Primary key
            *options: Loader options
            include_deleted: Return the row even when soft-deleted
            refresh: Overwrite already loaded state with database values

        Returns:
            Entity or None if absent
        """
        statement = self.query(*options, include_deleted=include_deleted).where(
            self.model.id == entity_id
        )
        if refresh:
            statement = statement.execution_options(populate_existing=True)
        return await self.first(statement)

    async def first(self, statement: Select) -> Optional[ModelT]:
        try:
            result = await self.session.execute(statement.limit(1))
            return result.scalars().first()
        except SQLAlchemyError as e:
            logger.error(
                "Query failed",
                model=self.model.__name__,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError(
                f"Failed to query {self.model.__name__}", model=self.model.__name__
            ) from e

    async def list(self, statement: Optional[Select] = None) -> Sequence[ModelT]:
        statement = statement if statement is not None else self.query()
        try:
            result = await self.session.execute(statement)
            return result.scalars().unique().all()
        except SQLAlchemyError as e:
            logger.error(
                "Query failed",
                model=self.model.__name__,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError(
                f"Failed to query {self.model.__name__}", model=self.model.__name__
            ) from e

    async def count(self, statement: Optional[Select] = None) -> int:
        """Count the rows a SELECT would return."""
        statement = statement if statement is not None else self.query()
        count_statement = select(func.count()).select_from(
            statement.order_by(None).subquery()
        )
        result = await self.session.execute(count_statement)
        return int(result.scalar_one())

    async def paginate(
        self, statement: Select, page: int, page_size: int, *options: ORMOption
    ) -> tuple[Sequence[ModelT], int]:
        """
        Run a SELECT for a single page.

        Args:
            statement: Filtered and ordered statement without loader options
            page: 1-based page number
            page_size: Items per page
            *options: Loader options applied to the page query only

        Returns:
            Tuple of (page items, total count)
        """
        total = await self.count(statement)
        page_statement = statement.offset((page - 1) * page_size).limit(page_size)
        if options:
            page_statement = page_statement.options(*options)
        items = await self.list(page_statement)
        return items, total

    def add(
        self, entity: ModelT, at: datetime, by: Optional[uuid.UUID] = None
    ) -> ModelT:
        """Stage a new entity stamped with creation audit fields."""
        entity.stamp_created(at, by)
        self.session.add(entity)
        return entity

    def update(
        self, entity: ModelT, at: datetime, by: Optional[uuid.UUID] = None, **values: Any
    ) -> ModelT:
        """Apply attribute values and stamp update audit fields."""
        for key, value in values.items():
            setattr(entity, key, value)
        entity.stamp_updated(at, by)
        return entity

    def soft_remove(
        self, entity: ModelT, at: datetime, by: Optional[uuid.UUID] = None
    ) -> ModelT:
        entity.soft_delete(at, by)
        entity.stamp_updated(at, by)
        return entity
