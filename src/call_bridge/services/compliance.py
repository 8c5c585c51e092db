"""Compliance Event Logger.

Records every webhook received in the append-only, hash-chained
``compliance_events`` table. Recording is fire-and-forget: ``record``
returns immediately and write failures are only logged.
"""

from __future__ import annotations

import asyncio

from sqlalchemy.exc import SQLAlchemyError

from call_bridge.core.background import BackgroundTaskGroup
from call_bridge.core.logging import get_logger
from call_bridge.db.repositories.compliance import ComplianceEventRepository
from call_bridge.db.session import SessionScope


log = get_logger(__name__)


class ComplianceLogger:
    """Fire-and-forget webhook audit sink."""

    def __init__(
        self,
        session_scope: SessionScope,
        *,
        enabled: bool = True,
        max_body_bytes: int = 65536,
    ):
        """Initialize logger.

        Args:
            session_scope: Factory for committing database sessions
            enabled: Whether entries are written at all
            max_body_bytes: Bodies longer than this are stored truncated
        """
        self._session_scope = session_scope
        self.enabled = enabled
        self.max_body_bytes = max_body_bytes
        # One writer at a time keeps the checksum chain linear
        self._tasks = BackgroundTaskGroup("compliance", max_concurrency=1, timeout=10.0)

    def record(
        self,
        channel: str,
        event_kind: str,
        path: str,
        raw_body: bytes,
    ) -> asyncio.Task | None:
        """Schedule an audit entry. Never blocks and never raises."""
        if not self.enabled:
            return None
        return self._tasks.spawn(
            self._write(channel, event_kind, path, raw_body),
            label=f"{channel}:{event_kind}",
        )

    async def _write(self, channel: str, event_kind: str, path: str, raw_body: bytes) -> None:
        try:
            async with self._session_scope() as session:
                await ComplianceEventRepository(session).append(
                    channel,
                    event_kind,
                    path,
                    raw_body,
                    max_body_bytes=self.max_body_bytes,
                )
        except SQLAlchemyError as e:
            log.warning(
                "Compliance event not recorded",
                channel=channel,
                event_kind=event_kind,
                error=str(e),
            )

    @property
    def pending(self) -> int:
        """Writes scheduled and not yet finished."""
        return self._tasks.active_count

    async def drain(self, timeout: float = 10.0) -> None:
        await self._tasks.drain(timeout=timeout)
