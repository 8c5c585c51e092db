"""Tests for dialed-number to tenant resolution."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from call_bridge.services.tenant_resolver import ResolutionMethod, TenantResolver

from conftest import add_agent_binding, add_business, add_toll_free


async def resolve(session_scope, number, **kwargs):
    async with session_scope() as session:
        return await TenantResolver.from_session(session, **kwargs).resolve(number)


class TestBusinessPhonePath:
    """Path 1: primary or secondary business phone."""

    @pytest.mark.asyncio
    async def test_primary_phone(self, session_scope):
        business = await add_business(session_scope, escalation_phone="+18005559999")

        resolution = await resolve(session_scope, "+18005551234")

        assert resolution is not None
        assert resolution.method is ResolutionMethod.BUSINESS_PHONE
        assert resolution.business_id == business.id
        assert resolution.agent_id == "agent_1"
        assert resolution.escalation_phone == "+18005559999"
        assert resolution.business_name == "Acme Plumbing"
        assert resolution.dialed_number == "+18005551234"
        assert resolution.can_bridge

    @pytest.mark.asyncio
    async def test_secondary_phone(self, session_scope):
        business = await add_business(
            session_scope, phone_number="+18005550000", secondary_phone="+18005551234"
        )

        resolution = await resolve(session_scope, "(800) 555-1234")

        assert resolution.business_id == business.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stored", ["8005551234", "18005551234", "+18005551234"])
    async def test_stored_format_variants(self, session_scope, stored):
        business = await add_business(session_scope, phone_number=stored)

        resolution = await resolve(session_scope, "+1 800 555 1234")

        assert resolution.business_id == business.id

    @pytest.mark.asyncio
    async def test_business_without_agent(self, session_scope):
        await add_business(session_scope, agent_id=None)

        resolution = await resolve(session_scope, "+18005551234")

        assert resolution is not None
        assert resolution.agent_id is None
        assert not resolution.can_bridge


class TestTollFreePath:
    """Path 2: toll-free inventory."""

    @pytest.mark.asyncio
    async def test_assigned_number(self, session_scope):
        business = await add_business(session_scope, phone_number="+15125550100", agent_id="agent_tf")
        await add_toll_free(session_scope, "+18885550123", business.id)

        resolution = await resolve(session_scope, "8885550123")

        assert resolution.method is ResolutionMethod.TOLL_FREE
        assert resolution.business_id == business.id
        assert resolution.agent_id == "agent_tf"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["available", "released"])
    async def test_unassigned_number_not_found(self, session_scope, status):
        business = await add_business(session_scope, phone_number="+15125550100")
        await add_toll_free(session_scope, "+18885550123", business.id, status=status)

        assert await resolve(session_scope, "+18885550123") is None


class TestAgentBindingPath:
    """Path 3: agent bindings."""

    @pytest.mark.asyncio
    async def test_active_binding(self, session_scope):
        business = await add_business(session_scope, phone_number="+15125550100", agent_id="agent_biz")
        await add_agent_binding(session_scope, "+17375550199", business.id, agent_id="agent_bound")

        resolution = await resolve(session_scope, "+17375550199")

        assert resolution.method is ResolutionMethod.AGENT_BINDING
        assert resolution.business_id == business.id
        assert resolution.agent_id == "agent_bound"

    @pytest.mark.asyncio
    async def test_binding_without_agent_uses_business_agent(self, session_scope):
        business = await add_business(session_scope, phone_number="+15125550100", agent_id="agent_biz")
        await add_agent_binding(session_scope, "+17375550199", business.id, agent_id=None)

        resolution = await resolve(session_scope, "+17375550199")

        assert resolution.agent_id == "agent_biz"

    @pytest.mark.asyncio
    async def test_inactive_binding_not_found(self, session_scope):
        business = await add_business(session_scope, phone_number="+15125550100")
        await add_agent_binding(session_scope, "+17375550199", business.id, is_active=False)

        assert await resolve(session_scope, "+17375550199") is None


class TestPrecedence:
    """First hit wins, in path order."""

    @pytest.mark.asyncio
    async def test_business_phone_beats_toll_free(self, session_scope):
        direct = await add_business(session_scope, name="Direct", agent_id="agent_direct")
        other = await add_business(session_scope, name="Other", phone_number="+15125550100", agent_id="agent_other")
        await add_toll_free(session_scope, "+18005551234", other.id)

        resolution = await resolve(session_scope, "+18005551234")

        assert resolution.method is ResolutionMethod.BUSINESS_PHONE
        assert resolution.business_id == direct.id

    @pytest.mark.asyncio
    async def test_toll_free_beats_agent_binding(self, session_scope):
        tf_owner = await add_business(session_scope, name="TF", phone_number="+15125550100")
        bound = await add_business(session_scope, name="Bound", phone_number="+15125550101")
        await add_toll_free(session_scope, "+18885550123", tf_owner.id)
        await add_agent_binding(session_scope, "+18885550123", bound.id)

        resolution = await resolve(session_scope, "+18885550123")

        assert resolution.method is ResolutionMethod.TOLL_FREE
        assert resolution.business_id == tf_owner.id

    @pytest.mark.asyncio
    async def test_later_paths_not_queried_after_hit(self):
        business = MagicMock(id=uuid4(), agent_id="agent_1", escalation_phone=None)
        business.name = "Acme"
        businesses = MagicMock(find_by_phone=AsyncMock(return_value=business))
        toll_free = MagicMock(find_assigned_business=AsyncMock(return_value=None))
        bindings = MagicMock(find_active_business=AsyncMock(return_value=None))

        resolver = TenantResolver(businesses, toll_free, bindings)
        resolution = await resolver.resolve("+18005551234")

        assert resolution.method is ResolutionMethod.BUSINESS_PHONE
        toll_free.find_assigned_business.assert_not_awaited()
        bindings.find_active_business.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_find_all_bindings_reports_every_path(self, session_scope):
        direct = await add_business(session_scope, name="Direct")
        other = await add_business(session_scope, name="Other", phone_number="+15125550100")
        await add_toll_free(session_scope, "+18005551234", other.id)

        async with session_scope() as session:
            hits = await TenantResolver.from_session(session).find_all_bindings("+18005551234")

        assert [h.method for h in hits] == [ResolutionMethod.BUSINESS_PHONE, ResolutionMethod.TOLL_FREE]
        assert [h.business_id for h in hits] == [direct.id, other.id]

    @pytest.mark.asyncio
    async def test_conflict_warning(self, session_scope):
        await add_business(session_scope, name="Direct")
        other = await add_business(session_scope, name="Other", phone_number="+15125550100")
        await add_toll_free(session_scope, "+18005551234", other.id)

        with patch("call_bridge.services.tenant_resolver.log") as mock_log:
            resolution = await resolve(session_scope, "+18005551234", detect_conflicts=True)

        assert resolution.method is ResolutionMethod.BUSINESS_PHONE
        mock_log.warning.assert_called_once()
        assert mock_log.warning.call_args.kwargs["shadowed_method"] == "toll_free_inventory"

    @pytest.mark.asyncio
    async def test_no_conflict_warning_when_disabled(self, session_scope):
        await add_business(session_scope, name="Direct")
        other = await add_business(session_scope, name="Other", phone_number="+15125550100")
        await add_toll_free(session_scope, "+18005551234", other.id)

        with patch("call_bridge.services.tenant_resolver.log") as mock_log:
            await resolve(session_scope, "+18005551234")

        mock_log.warning.assert_not_called()


class TestNotFound:
    """Unknown and malformed numbers."""

    @pytest.mark.asyncio
    async def test_unknown_number(self, session_scope):
        await add_business(session_scope)

        assert await resolve(session_scope, "+19995550000") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("number", [None, "", "12345", "sip:agent@example.com", "28005551234"])
    async def test_malformed_number(self, session_scope, number):
        await add_business(session_scope)

        assert await resolve(session_scope, number) is None
