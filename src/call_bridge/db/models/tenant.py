"""Tenant binding ORM models.

These tables are maintained by onboarding and admin tooling. The bridge
only reads them.
"""
from __future__ import annotations

from uuid import UUID

from sqlalchemy import String, Boolean, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from call_bridge.db.base import Base, UUIDMixin, TimestampMixin


class TollFreeStatus:
    """Toll-free inventory lifecycle values."""

    AVAILABLE = "available"
    ASSIGNED = "assigned"
    RELEASED = "released"


class BusinessModel(Base, UUIDMixin, TimestampMixin):
    """Tenant business account."""

    __tablename__ = "businesses"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    phone_number: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
        comment="Primary phone",
    )
    secondary_phone: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )

    agent_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Voice-AI agent identifier on the agent platform",
    )
    escalation_phone: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Human fallback line",
    )

    def __repr__(self) -> str:
        return f"<Business {self.name}>"


class TollFreeNumberModel(Base, UUIDMixin, TimestampMixin):
    """Toll-free number inventory entry."""

    __tablename__ = "toll_free_numbers"

    number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TollFreeStatus.AVAILABLE,
        comment="available, assigned, released",
    )
    business_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("businesses.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    __table_args__ = (
        Index("ix_toll_free_numbers_number_status", "number", "status"),
    )

    def __repr__(self) -> str:
        return f"<TollFreeNumber {self.number} {self.status}>"


class AgentBindingModel(Base, UUIDMixin, TimestampMixin):
    """Voice-AI agent bound to a phone number."""

    __tablename__ = "agent_bindings"

    business_id: Mapped[UUID] = mapped_column(
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    phone_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    agent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_agent_bindings_phone_active", "phone_number", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<AgentBinding {self.phone_number} agent={self.agent_id} active={self.is_active}>"
