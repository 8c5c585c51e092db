"""Compliance repository for the webhook audit trail."""
from __future__ import annotations

from typing import Sequence

from sqlalchemy import select, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from call_bridge.core.logging import get_logger
from call_bridge.db.models.compliance import ComplianceEventModel
from call_bridge.db.repositories.base import BaseRepository


log = get_logger(__name__)

# Attempts to claim the next chain position when another writer wins it
APPEND_ATTEMPTS = 5


class ComplianceEventRepository(BaseRepository[ComplianceEventModel]):
    """Repository for compliance events.

    Entries are append-only; no update or delete helpers are exposed.
    The chain is ordered by ``sequence``, which is unique, so two
    writers can never link to the same predecessor.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(ComplianceEventModel, session)

    async def get_tail(self) -> tuple[int, str] | None:
        """Sequence and checksum of the most recent entry."""
        stmt = (
            select(self._model.sequence, self._model.checksum)
            .order_by(desc(self._model.sequence))
            .limit(1)
        )
        result = await self._session.execute(stmt)
        row = result.first()
        return (row.sequence, row.checksum) if row else None

    async def append(
        self,
        channel: str,
        event_kind: str,
        path: str,
        raw_body: bytes,
        *,
        max_body_bytes: int = 65536,
    ) -> ComplianceEventModel:
        """Append an entry chained to the previous one.

        Raises:
            IntegrityError: If the next position stays contended
        """
        attempts = 0
        while True:
            attempts += 1
            tail = await self.get_tail()
            sequence, previous_checksum = (tail[0] + 1, tail[1]) if tail else (1, None)

            entry = ComplianceEventModel.create(
                channel=channel,
                event_kind=event_kind,
                path=path,
                raw_body=raw_body,
                max_body_bytes=max_body_bytes,
                previous_checksum=previous_checksum,
                sequence=sequence,
            )
            try:
                async with self._session.begin_nested():
                    self._session.add(entry)
                    await self._session.flush()
            except IntegrityError:
                if attempts >= APPEND_ATTEMPTS:
                    raise
                log.debug("Compliance chain position taken, retrying", sequence=sequence)
                continue

            await self._session.refresh(entry)
            return entry

    async def get_chain(self, *, limit: int = 1000) -> Sequence[ComplianceEventModel]:
        """Entries in chain order, oldest first."""
        stmt = (
            select(self._model)
            .order_by(self._model.sequence)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def verify_chain(self, *, limit: int = 1000) -> list[str]:
        """Check checksums, links and positions of the trail.

        Returns:
            IDs of entries that fail verification
        """
        broken: list[str] = []
        previous: str | None = None
        expected_sequence = 1

        for entry in await self.get_chain(limit=limit):
            if (
                not entry.verify_checksum()
                or entry.previous_checksum != previous
                or entry.sequence != expected_sequence
            ):
                broken.append(str(entry.id))
            previous = entry.checksum
            expected_sequence = entry.sequence + 1

        return broken
