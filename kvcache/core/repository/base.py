"""
Base repository with the plumbing shared by concrete repositories.

Repositories translate SQLAlchemy failures into ``DurableStoreError`` results
and never commit: transaction boundaries belong to ``UnitOfWork``.
"""

from __future__ import annotations

import logging
from typing import Generic, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kvcache.core.result import DurableStoreError, Failure, Result, failure, success
from kvcache.domain.base import Base

logger = logging.getLogger(__name__)

T_Model = TypeVar("T_Model", bound=Base)


class BaseRepository(Generic[T_Model]):
    """
    Generic repository bound to one SQLAlchemy model and one session.

    Example:
        class CacheEntryRepository(BaseRepository[CacheEntry]):
            def __init__(self, session: AsyncSession):
                super().__init__(CacheEntry, session)
    """

    def __init__(self, model: Type[T_Model], session: AsyncSession):
        self.model = model
        self.session = session

    @property
    def model_name(self) -> str:
        return self.model.__name__

    @property
    def dialect_name(self) -> str:
        return self.session.get_bind().dialect.name

    def _failure(self, operation: str, exc: SQLAlchemyError) -> Failure[DurableStoreError]:
        """Log a database error and wrap it into a failed result."""
        qualified = f"{self.model_name}.{operation}"
        if isinstance(exc, IntegrityError):
            logger.warning("Integrity error in %s: %s", qualified, exc.orig)
            message = f"Constraint violation: {exc.orig}"
        else:
            logger.error("Database error in %s", qualified, exc_info=True)
            message = str(exc)
        return failure(
            DurableStoreError(
                operation=qualified,
                message=message,
                original_exception=exc,
            )
        )

    async def count(self) -> Result[int, DurableStoreError]:
        """Count rows of the bound model."""
        try:
            stmt = select(func.count()).select_from(self.model)
            result = await self.session.execute(stmt)
            return success(result.scalar() or 0)
        except SQLAlchemyError as e:
            return self._failure("count", e)
