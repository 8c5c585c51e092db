"""Call record ORM models.

Both tables here are owned by the bridge: rows are created and updated
only by the reconciler and the bridge claim guard, never deleted.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import String, Integer, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from call_bridge.db.base import Base, UUIDMixin, TimestampMixin


class CallStatus(str, Enum):
    """Lifecycle status of a call record."""

    UNKNOWN = "unknown"
    INITIATED = "initiated"
    ANSWERED = "answered"
    COMPLETED = "completed"


# Status only moves to a higher rank
STATUS_RANK: dict[str, int] = {
    CallStatus.UNKNOWN.value: 0,
    CallStatus.INITIATED.value: 1,
    CallStatus.ANSWERED.value: 2,
    CallStatus.COMPLETED.value: 3,
}


class CallRecordModel(Base, UUIDMixin, TimestampMixin):
    """Persistent call record, one row per provider call id."""

    __tablename__ = "call_records"

    call_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="Provider call-control id",
    )
    business_id: Mapped[UUID | None] = mapped_column(
        nullable=True,
        index=True,
        comment="Resolved lazily, may stay null",
    )

    customer_phone: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    dialed_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    direction: Mapped[str | None] = mapped_column(String(20), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CallStatus.UNKNOWN.value,
        index=True,
        comment="unknown, initiated, answered, completed",
    )
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    outcome: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Hangup cause reported on completion",
    )
    recording_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    answered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_call_records_business_created", "business_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<CallRecord {self.call_id} status={self.status}>"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "call_id": self.call_id,
            "business_id": str(self.business_id) if self.business_id else None,
            "customer_phone": self.customer_phone,
            "dialed_number": self.dialed_number,
            "direction": self.direction,
            "status": self.status,
            "duration_seconds": self.duration_seconds,
            "outcome": self.outcome,
            "recording_url": self.recording_url,
            "answered_at": self.answered_at.isoformat() if self.answered_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class BridgeClaimModel(Base, UUIDMixin):
    """Marker taken once per call id before bridging starts.

    A claim whose ``expires_at`` has passed may be taken over.
    """

    __tablename__ = "bridge_claims"

    call_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    owner: Mapped[str] = mapped_column(String(255), nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    final_state: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        comment="Terminal bridge state once finished",
    )

    def __repr__(self) -> str:
        return f"<BridgeClaim {self.call_id} owner={self.owner} state={self.final_state}>"
