"""Compliance ORM model.

Append-only record of every webhook received. Entries are chained with
SHA256 checksums so that edits or deletions are detectable.
"""
from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import Integer, String, Text, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from call_bridge.db.base import Base, UUIDMixin


class ComplianceEventModel(Base, UUIDMixin):
    """Immutable webhook audit entry.

    Does not use TimestampMixin: entries are never updated.
    """

    __tablename__ = "compliance_events"

    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        unique=True,
        doc="Position in the chain, starting at 1",
    )
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    channel: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    event_kind: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    path: Mapped[str] = mapped_column(String(255), nullable=False)

    body_sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    raw_body: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        doc="Request body, truncated to the configured limit",
    )
    body_truncated: Mapped[bool] = mapped_column(default=False, nullable=False)

    checksum: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        doc="SHA256 checksum for tamper detection",
    )
    previous_checksum: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        doc="Checksum of previous entry (chain integrity)",
    )

    __table_args__ = (
        Index("ix_compliance_events_channel_received", "channel", "received_at"),
    )

    def __repr__(self) -> str:
        return f"<ComplianceEvent #{self.sequence} {self.channel}:{self.event_kind} at {self.received_at}>"

    def calculate_checksum(self, previous_checksum: str | None = None) -> str:
        """Calculate SHA256 checksum over the entry and its predecessor."""
        # Naive UTC keeps the checksum stable across database round trips
        if self.received_at:
            ts = self.received_at
            if ts.tzinfo is not None:
                ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
            timestamp_str = ts.isoformat()
        else:
            timestamp_str = ""

        data_parts = [
            str(self.id),
            str(self.sequence),
            timestamp_str,
            self.channel,
            self.event_kind,
            self.path,
            self.body_sha256,
            previous_checksum or "",
        ]
        data = "|".join(data_parts)
        return hashlib.sha256(data.encode()).hexdigest()

    def verify_checksum(self) -> bool:
        """Verify that the stored checksum matches calculated checksum."""
        return self.checksum == self.calculate_checksum(self.previous_checksum)

    @classmethod
    def create(
        cls,
        channel: str,
        event_kind: str,
        path: str,
        raw_body: bytes,
        *,
        max_body_bytes: int = 65536,
        previous_checksum: str | None = None,
        sequence: int = 1,
    ) -> "ComplianceEventModel":
        """Create a new entry with automatic checksum."""
        truncated = len(raw_body) > max_body_bytes
        stored = raw_body[:max_body_bytes].decode("utf-8", errors="replace")

        entry = cls(
            id=uuid4(),
            sequence=sequence,
            received_at=datetime.now(timezone.utc),
            channel=channel,
            event_kind=event_kind,
            path=path,
            body_sha256=hashlib.sha256(raw_body).hexdigest(),
            raw_body=stored,
            body_truncated=truncated,
            previous_checksum=previous_checksum,
        )
        entry.checksum = entry.calculate_checksum(previous_checksum)

        return entry

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "id": str(self.id),
            "sequence": self.sequence,
            "received_at": self.received_at.isoformat(),
            "channel": self.channel,
            "event_kind": self.event_kind,
            "path": self.path,
            "body_sha256": self.body_sha256,
            "body_truncated": self.body_truncated,
            "checksum": self.checksum,
            "previous_checksum": self.previous_checksum,
        }
