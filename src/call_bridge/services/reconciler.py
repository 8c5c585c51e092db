"""Call Record Reconciler.

Applies every normalized call event to the persistent call record.
Deliveries are at-least-once and unordered, so every write is a
conditional statement:

- the record is created with insert-if-absent on first sight, whatever
  the event kind (a late ``call.initiated`` then finds it and only
  backfills);
- status only moves forward (initiated < answered < completed);
- duration, outcome, recording URL and business id are filled only while
  still empty.

Applying any permutation of a call's events, with repeats, yields the
same record as applying them once in lifecycle order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from call_bridge.core.exceptions import DatabaseError
from call_bridge.core.logging import get_logger
from call_bridge.db.models.calls import CallStatus
from call_bridge.db.repositories.calls import CallRecordRepository
from call_bridge.services.tenant_resolver import TenantResolver
from call_bridge.telephony.events import CallEvent, CallEventKind


log = get_logger(__name__)


EVENT_STATUS_MAP: dict[CallEventKind, CallStatus] = {
    CallEventKind.INITIATED: CallStatus.INITIATED,
    CallEventKind.ANSWERED: CallStatus.ANSWERED,
    CallEventKind.ENDED: CallStatus.COMPLETED,
    CallEventKind.HANGUP: CallStatus.COMPLETED,
}


def status_for(kind: CallEventKind) -> CallStatus:
    """Target record status for an event kind."""
    return EVENT_STATUS_MAP.get(kind, CallStatus.UNKNOWN)


class ReconcileAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ReconcileResult:
    """What reconciling one event did to the record."""

    call_id: str | None
    action: ReconcileAction
    target_status: CallStatus
    changed_fields: tuple[str, ...] = ()


class CallRecordReconciler:
    """Keeps call records consistent with delivered events.

    Usage:
        reconciler = CallRecordReconciler.from_session(session)
        await reconciler.reconcile(event)
    """

    def __init__(self, records: CallRecordRepository, resolver: TenantResolver):
        """Initialize reconciler.

        Args:
            records: Call record repository
            resolver: Tenant resolver used for business linkage
        """
        self.records = records
        self.resolver = resolver

    @classmethod
    def from_session(cls, session: AsyncSession) -> "CallRecordReconciler":
        return cls(CallRecordRepository(session), TenantResolver.from_session(session))

    async def reconcile(self, event: CallEvent) -> ReconcileResult:
        """Apply one event.

        Raises:
            DatabaseError: If the record could not be read or written
        """
        target = status_for(event.event_kind)

        if not event.call_id:
            log.warning("Event without call id not reconciled", event_type=event.event_type)
            return ReconcileResult(None, ReconcileAction.SKIPPED, target)

        if event.is_transfer_leg:
            log.debug("Agent transfer leg not reconciled", call_id=event.call_id)
            return ReconcileResult(event.call_id, ReconcileAction.SKIPPED, target)

        try:
            return await self._apply(event, target)
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Call record reconciliation failed",
                details={"call_id": event.call_id, "event_type": event.event_type},
            ) from e

    async def _apply(self, event: CallEvent, target: CallStatus) -> ReconcileResult:
        call_id = event.call_id
        existing = await self.records.get_by_call_id(call_id)

        if existing is None:
            created = await self._create(event, target)
            if created:
                if event.event_kind is not CallEventKind.INITIATED:
                    log.info(
                        "Call record created from out-of-order event",
                        call_id=call_id,
                        event_kind=event.event_kind.value,
                    )
                else:
                    log.info("Call record created", call_id=call_id)
                return ReconcileResult(call_id, ReconcileAction.CREATED, target)
            # A concurrent delivery created it first
            needs_business = True
        else:
            needs_business = existing.business_id is None

        changed: list[str] = []

        if await self.records.advance_status(call_id, target.value):
            changed.append("status")

        if target is CallStatus.ANSWERED:
            # A late answered event still records that the call was answered
            if await self.records.backfill(call_id, "answered_at", datetime.now(timezone.utc)):
                changed.append("answered_at")

        if target is CallStatus.COMPLETED:
            if await self.records.backfill(call_id, "duration_seconds", event.duration_seconds):
                changed.append("duration_seconds")
            outcome = event.hangup_cause or CallStatus.COMPLETED.value
            if await self.records.backfill(call_id, "outcome", outcome):
                changed.append("outcome")

        backfills = (
            ("recording_url", event.recording_url),
            ("customer_phone", event.from_number),
            ("dialed_number", event.to_number),
            ("direction", event.direction),
        )
        for field, value in backfills:
            if await self.records.backfill(call_id, field, value):
                changed.append(field)

        if needs_business:
            business_id = await self._lookup_business(event)
            if await self.records.backfill(call_id, "business_id", business_id):
                changed.append("business_id")

        if not changed:
            log.debug("Call record unchanged", call_id=call_id, target_status=target.value)
            return ReconcileResult(call_id, ReconcileAction.UNCHANGED, target)

        log.info(
            "Call record updated",
            call_id=call_id,
            target_status=target.value,
            changed=changed,
        )
        return ReconcileResult(call_id, ReconcileAction.UPDATED, target, tuple(changed))

    async def _create(self, event: CallEvent, target: CallStatus) -> bool:
        fields = {
            "status": target.value,
            "customer_phone": event.from_number,
            "dialed_number": event.to_number,
            "direction": event.direction,
            "business_id": await self._lookup_business(event),
            "recording_url": event.recording_url,
        }
        if target is CallStatus.COMPLETED:
            fields["duration_seconds"] = event.duration_seconds
            fields["outcome"] = event.hangup_cause or CallStatus.COMPLETED.value

        return await self.records.create_if_absent(event.call_id, **fields)

    async def _lookup_business(self, event: CallEvent) -> UUID | None:
        """Best-effort business id; unresolved numbers stay null."""
        resolution = await self.resolver.resolve(event.to_number)
        return resolution.business_id if resolution else None
