"""Tenant binding repositories (read-only).

Each lookup takes the list of formats a stored number may use and
returns the oldest matching row, so repeated lookups are deterministic
even when a number appears more than once.
"""
from __future__ import annotations

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from call_bridge.db.models.tenant import (
    AgentBindingModel,
    BusinessModel,
    TollFreeNumberModel,
    TollFreeStatus,
)
from call_bridge.db.repositories.base import BaseRepository


class BusinessRepository(BaseRepository[BusinessModel]):
    """Repository for business records."""

    def __init__(self, session: AsyncSession):
        super().__init__(BusinessModel, session)

    async def find_by_phone(self, variants: list[str]) -> BusinessModel | None:
        """Business whose primary or secondary phone matches."""
        stmt = (
            select(self._model)
            .where(
                or_(
                    self._model.phone_number.in_(variants),
                    self._model.secondary_phone.in_(variants),
                )
            )
            .order_by(self._model.created_at)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalars().first()


class TollFreeNumberRepository(BaseRepository[TollFreeNumberModel]):
    """Repository for the toll-free inventory."""

    def __init__(self, session: AsyncSession):
        super().__init__(TollFreeNumberModel, session)

    async def find_assigned_business(
        self,
        variants: list[str],
    ) -> tuple[TollFreeNumberModel, BusinessModel] | None:
        """Assigned toll-free entry and the business it points at."""
        stmt = (
            select(self._model, BusinessModel)
            .join(BusinessModel, BusinessModel.id == self._model.business_id)
            .where(
                self._model.number.in_(variants),
                self._model.status == TollFreeStatus.ASSIGNED,
            )
            .order_by(self._model.created_at)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        row = result.first()
        if row is None:
            return None
        return row[0], row[1]


class AgentBindingRepository(BaseRepository[AgentBindingModel]):
    """Repository for agent bindings."""

    def __init__(self, session: AsyncSession):
        super().__init__(AgentBindingModel, session)

    async def find_active_business(
        self,
        variants: list[str],
    ) -> tuple[AgentBindingModel, BusinessModel] | None:
        """Active binding for the number and its business."""
        stmt = (
            select(self._model, BusinessModel)
            .join(BusinessModel, BusinessModel.id == self._model.business_id)
            .where(
                self._model.phone_number.in_(variants),
                self._model.is_active.is_(True),
            )
            .order_by(self._model.created_at)
            .limit(1)
        )
        result = await self._session.execute(stmt)
        row = result.first()
        if row is None:
            return None
        return row[0], row[1]
