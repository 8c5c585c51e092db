"""Base Repository Pattern for Call Bridge.

Provides generic CRUD operations with async SQLAlchemy support.
All specialized repositories inherit from BaseRepository.
"""
from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import insert, select, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from call_bridge.db.base import Base

# Type variable for model classes
ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Generic base repository with async CRUD operations.

    Usage:
        class CallRecordRepository(BaseRepository[CallRecordModel]):
            def __init__(self, session: AsyncSession):
                super().__init__(CallRecordModel, session)
    """

    def __init__(self, model: type[ModelT], session: AsyncSession):
        """Initialize repository with model class and session.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self._model = model
        self._session = session

    @property
    def session(self) -> AsyncSession:
        """Get the current database session."""
        return self._session

    # ========================================================================
    # Basic CRUD Operations
    # ========================================================================

    async def get(self, id: UUID | str) -> ModelT | None:
        """Get a single record by ID."""
        if isinstance(id, str):
            id = UUID(id)

        stmt = select(self._model).where(self._model.id == id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, obj_in: ModelT) -> ModelT:
        """Create a new record.

        Args:
            obj_in: Model instance to create

        Returns:
            Created model instance with generated ID
        """
        self._session.add(obj_in)
        await self._session.flush()
        await self._session.refresh(obj_in)
        return obj_in

    async def insert_if_absent(
        self,
        values: dict[str, Any],
        conflict_columns: list[str],
    ) -> bool:
        """Insert a row unless one with the same unique key exists.

        Runs as a single statement (``ON CONFLICT DO NOTHING``) on SQLite
        and PostgreSQL, so concurrent writers never both succeed.

        Args:
            values: Column values for the new row
            conflict_columns: Columns of the unique constraint

        Returns:
            True if this call inserted the row
        """
        dialect = self._session.get_bind().dialect.name

        if dialect in ("sqlite", "postgresql"):
            dialect_insert = sqlite.insert if dialect == "sqlite" else postgresql.insert
            stmt = (
                dialect_insert(self._model)
                .values(**values)
                .on_conflict_do_nothing(index_elements=conflict_columns)
            )
            result = await self._session.execute(stmt)
            return result.rowcount == 1

        try:
            async with self._session.begin_nested():
                await self._session.execute(insert(self._model).values(**values))
        except IntegrityError:
            return False
        return True

    # ========================================================================
    # Query Helpers
    # ========================================================================

    async def count(self) -> int:
        """Get total count of records."""
        stmt = select(func.count()).select_from(self._model)
        result = await self._session.execute(stmt)
        return result.scalar() or 0

    async def refresh(self, obj: ModelT) -> ModelT:
        """Refresh an object from the database."""
        await self._session.refresh(obj)
        return obj
