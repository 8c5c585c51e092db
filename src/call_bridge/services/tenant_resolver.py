"""Tenant Resolver Service.

Identifies the business and voice-AI agent behind a dialed number.
Three independently maintained tables can bind a number to a business;
they are consulted in a fixed order and the first hit wins:

1. Business record, primary or secondary phone field
2. Toll-free inventory entry in ``assigned`` state
3. Active agent binding

No constraint keeps a number out of more than one table (for example
while numbers are migrated between them), so the order is the only
tie-breaker.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from call_bridge.core.logging import get_logger
from call_bridge.core.phone import comparison_variants, normalize_phone
from call_bridge.db.models.tenant import BusinessModel
from call_bridge.db.repositories.tenant import (
    AgentBindingRepository,
    BusinessRepository,
    TollFreeNumberRepository,
)


log = get_logger(__name__)


class ResolutionMethod(str, Enum):
    """Lookup path that produced a resolution."""

    BUSINESS_PHONE = "business_phone"
    TOLL_FREE = "toll_free_inventory"
    AGENT_BINDING = "agent_binding"


@dataclass(frozen=True)
class TenantResolution:
    """Business and agent bound to a dialed number."""

    business_id: UUID
    agent_id: str | None
    escalation_phone: str | None
    business_name: str
    method: ResolutionMethod
    dialed_number: str

    @property
    def can_bridge(self) -> bool:
        """A business is bridgeable only with an agent id."""
        return bool(self.agent_id)


class TenantResolver:
    """Resolve dialed numbers to tenants.

    Usage:
        resolver = TenantResolver.from_session(session)
        resolution = await resolver.resolve("+18005551234")
        if resolution is None:
            ...  # NotFound, terminal for this call
    """

    def __init__(
        self,
        businesses: BusinessRepository,
        toll_free_numbers: TollFreeNumberRepository,
        agent_bindings: AgentBindingRepository,
        *,
        detect_conflicts: bool = False,
    ):
        """Initialize resolver.

        Args:
            businesses: Business repository (path 1)
            toll_free_numbers: Toll-free inventory repository (path 2)
            agent_bindings: Agent binding repository (path 3)
            detect_conflicts: Also evaluate lower-priority paths after a hit
                and warn when they point at a different business
        """
        self.businesses = businesses
        self.toll_free_numbers = toll_free_numbers
        self.agent_bindings = agent_bindings
        self.detect_conflicts = detect_conflicts

    @classmethod
    def from_session(cls, session: AsyncSession, *, detect_conflicts: bool = False) -> "TenantResolver":
        return cls(
            BusinessRepository(session),
            TollFreeNumberRepository(session),
            AgentBindingRepository(session),
            detect_conflicts=detect_conflicts,
        )

    async def resolve(self, dialed_number: str | None) -> TenantResolution | None:
        """Resolve a dialed number.

        Args:
            dialed_number: Number as delivered by the provider

        Returns:
            Resolution from the first matching path, or None (NotFound)
        """
        normalized = normalize_phone(dialed_number)
        if normalized is None:
            log.info("Dialed number not normalizable", dialed_number=dialed_number)
            return None

        variants = comparison_variants(normalized)

        for method in ResolutionMethod:
            resolution = await self._lookup(method, normalized, variants)
            if resolution is None:
                continue

            log.info(
                "Tenant resolved",
                dialed_number=normalized,
                method=resolution.method.value,
                business_id=str(resolution.business_id),
                has_agent=resolution.can_bridge,
            )
            if self.detect_conflicts:
                await self._warn_on_conflict(resolution, normalized, variants)
            return resolution

        log.info("No tenant for dialed number", dialed_number=normalized)
        return None

    async def find_all_bindings(self, dialed_number: str | None) -> list[TenantResolution]:
        """Evaluate every lookup path, in priority order.

        Used for consistency checks; ``resolve`` stops at the first hit.
        """
        normalized = normalize_phone(dialed_number)
        if normalized is None:
            return []

        variants = comparison_variants(normalized)
        hits: list[TenantResolution] = []
        for method in ResolutionMethod:
            resolution = await self._lookup(method, normalized, variants)
            if resolution is not None:
                hits.append(resolution)
        return hits

    async def _lookup(
        self,
        method: ResolutionMethod,
        normalized: str,
        variants: list[str],
    ) -> TenantResolution | None:
        if method is ResolutionMethod.BUSINESS_PHONE:
            business = await self.businesses.find_by_phone(variants)
            if business is None:
                return None
            return self._build(business, business.agent_id, method, normalized)

        if method is ResolutionMethod.TOLL_FREE:
            hit = await self.toll_free_numbers.find_assigned_business(variants)
            if hit is None:
                return None
            _, business = hit
            return self._build(business, business.agent_id, method, normalized)

        hit = await self.agent_bindings.find_active_business(variants)
        if hit is None:
            return None
        binding, business = hit
        return self._build(business, binding.agent_id or business.agent_id, method, normalized)

    @staticmethod
    def _build(
        business: BusinessModel,
        agent_id: str | None,
        method: ResolutionMethod,
        normalized: str,
    ) -> TenantResolution:
        return TenantResolution(
            business_id=business.id,
            agent_id=agent_id or None,
            escalation_phone=business.escalation_phone or None,
            business_name=business.name,
            method=method,
            dialed_number=normalized,
        )

    async def _warn_on_conflict(
        self,
        winner: TenantResolution,
        normalized: str,
        variants: list[str],
    ) -> None:
        methods = list(ResolutionMethod)
        for method in methods[methods.index(winner.method) + 1:]:
            other = await self._lookup(method, normalized, variants)
            if other is None:
                continue
            if other.business_id != winner.business_id or other.agent_id != winner.agent_id:
                log.warning(
                    "Dialed number bound in multiple tables",
                    dialed_number=normalized,
                    used_method=winner.method.value,
                    used_business_id=str(winner.business_id),
                    shadowed_method=other.method.value,
                    shadowed_business_id=str(other.business_id),
                )
