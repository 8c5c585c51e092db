"""At-most-once guard for bridging.

Duplicate ``call.initiated`` deliveries may reach different worker
processes, so the seen-set lives in the shared database as one claim row
per call id with an expiry.
"""

from __future__ import annotations

from sqlalchemy.exc import SQLAlchemyError

from call_bridge.core.logging import get_logger
from call_bridge.db.repositories.calls import BridgeClaimRepository
from call_bridge.db.session import SessionScope


log = get_logger(__name__)


class BridgeClaimGuard:
    """Claims call ids in the ``bridge_claims`` table."""

    def __init__(
        self,
        session_scope: SessionScope,
        *,
        owner: str,
        ttl_seconds: int = 3600,
    ):
        """Initialize guard.

        Args:
            session_scope: Factory for committing database sessions
            owner: Identity of this process, stored on claims
            ttl_seconds: Age after which an unfinished claim may be taken over
        """
        self._session_scope = session_scope
        self.owner = owner
        self.ttl_seconds = ttl_seconds

    async def claim(self, call_id: str) -> bool:
        """Claim a call id for bridging.

        Returns:
            True if this process may bridge the call. A database failure
            returns False: a call is left unbridged rather than bridged twice.
        """
        try:
            async with self._session_scope() as session:
                claimed = await BridgeClaimRepository(session).claim(
                    call_id, self.owner, self.ttl_seconds
                )
        except SQLAlchemyError as e:
            log.error("Bridge claim failed", call_id=call_id, error=str(e))
            return False

        if not claimed:
            log.info("Bridge already claimed, ignoring duplicate", call_id=call_id)
        return claimed

    async def mark_finished(self, call_id: str, final_state: str) -> None:
        """Store the terminal state on the claim."""
        try:
            async with self._session_scope() as session:
                await BridgeClaimRepository(session).mark_finished(
                    call_id, self.owner, final_state
                )
        except SQLAlchemyError as e:
            log.warning("Could not record bridge outcome", call_id=call_id, error=str(e))
