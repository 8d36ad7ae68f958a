"""Base repository with per-operation transactions.

Repositories own their transactions instead of borrowing a request-scoped
session: stream bookkeeping and message saves run inside background
generation tasks that outlive the HTTP request that started them.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Generic, TypeVar, cast

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from parley.shared.exceptions import PersistenceError
from parley.shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Base repository; every public method is one short transaction."""

    model_class: type[T]

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Open a session, commit on success and map driver errors.

        Raises:
            PersistenceError: On any SQLAlchemy error inside the block
        """
        try:
            async with self.session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as e:
            logger.error(
                "database_operation_failed",
                model=self.model_class.__name__,
                error=str(e),
            )
            raise PersistenceError(
                f"{self.model_class.__name__} operation failed",
                details={"error_type": type(e).__name__},
            ) from e

    async def get_by_id(self, id: Any) -> T | None:
        model = cast(Any, self.model_class)
        async with self.transaction() as session:
            result = await session.execute(select(model).where(model.id == id))
            return result.scalar_one_or_none()
