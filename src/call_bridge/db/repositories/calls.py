"""Call Repositories for Call Bridge.

All writes here are single conditional statements so concurrent webhook
deliveries for the same call never lose updates.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from call_bridge.db.models.calls import (
    STATUS_RANK,
    BridgeClaimModel,
    CallRecordModel,
    CallStatus,
)
from call_bridge.db.repositories.base import BaseRepository


class CallRecordRepository(BaseRepository[CallRecordModel]):
    """Repository for call records."""

    def __init__(self, session: AsyncSession):
        super().__init__(CallRecordModel, session)

    async def get_by_call_id(self, call_id: str) -> CallRecordModel | None:
        """Get the record for a provider call id."""
        stmt = select(self._model).where(self._model.call_id == call_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_if_absent(self, call_id: str, **fields: Any) -> bool:
        """Create the record for a call id unless it already exists.

        Returns:
            True if this call created the record
        """
        now = datetime.now(timezone.utc)
        values = {
            "id": uuid4(),
            "call_id": call_id,
            "created_at": now,
            "updated_at": now,
            **fields,
        }
        status = values.get("status")
        if status == CallStatus.ANSWERED.value:
            values.setdefault("answered_at", now)
        elif status == CallStatus.COMPLETED.value:
            values.setdefault("ended_at", now)

        return await self.insert_if_absent(values, ["call_id"])

    async def advance_status(self, call_id: str, status: str) -> bool:
        """Move a record's status forward.

        Compare-and-set: the row only changes if its current status ranks
        below the target, so duplicates and late events never regress it.

        Returns:
            True if the status changed
        """
        target_rank = STATUS_RANK.get(status, 0)
        if target_rank == 0:
            return False

        current_rank = case(STATUS_RANK, value=self._model.status, else_=0)
        now = datetime.now(timezone.utc)

        values: dict[str, Any] = {"status": status, "updated_at": now}
        if status == CallStatus.ANSWERED.value:
            values["answered_at"] = now
        elif status == CallStatus.COMPLETED.value:
            values["ended_at"] = now

        stmt = (
            update(self._model)
            .where(self._model.call_id == call_id, current_rank < target_rank)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def backfill(self, call_id: str, field: str, value: Any) -> bool:
        """Set a column only if it is still null.

        Returns:
            True if the column was filled
        """
        if value is None:
            return False

        column = getattr(self._model, field)
        stmt = (
            update(self._model)
            .where(self._model.call_id == call_id, column.is_(None))
            .values({field: value, "updated_at": datetime.now(timezone.utc)})
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class BridgeClaimRepository(BaseRepository[BridgeClaimModel]):
    """Repository for the at-most-once bridging markers."""

    def __init__(self, session: AsyncSession):
        super().__init__(BridgeClaimModel, session)

    async def get_by_call_id(self, call_id: str) -> BridgeClaimModel | None:
        stmt = select(self._model).where(self._model.call_id == call_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def claim(self, call_id: str, owner: str, ttl_seconds: int) -> bool:
        """Atomically claim a call id.

        A fresh call id is inserted; an existing claim is only taken over
        once it has expired.

        Returns:
            True if the caller now owns the claim
        """
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=ttl_seconds)

        inserted = await self.insert_if_absent(
            {
                "id": uuid4(),
                "call_id": call_id,
                "owner": owner,
                "claimed_at": now,
                "expires_at": expires_at,
            },
            ["call_id"],
        )
        if inserted:
            return True

        stmt = (
            update(self._model)
            .where(self._model.call_id == call_id, self._model.expires_at < now)
            .values(owner=owner, claimed_at=now, expires_at=expires_at, final_state=None)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_finished(self, call_id: str, owner: str, final_state: str) -> bool:
        """Record the terminal bridge state on an owned claim."""
        stmt = (
            update(self._model)
            .where(self._model.call_id == call_id, self._model.owner == owner)
            .values(final_state=final_state)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1
