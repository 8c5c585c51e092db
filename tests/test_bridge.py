"""Tests for the bridge orchestrator state machine."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from call_bridge.db.repositories.calls import BridgeClaimRepository
from call_bridge.services.bridge import BridgeDispatcher, BridgeState

from conftest import TEST_SIP_DOMAIN, FakeCallControl, add_business, make_event


AGENT_URIS = [
    f"sip:8005551234@{TEST_SIP_DOMAIN}",
    f"sip:+18005551234@{TEST_SIP_DOMAIN}",
    f"sip:18005551234@{TEST_SIP_DOMAIN}",
]


async def get_claim(session_scope, call_id="v3:call-123"):
    async with session_scope() as session:
        return await BridgeClaimRepository(session).get_by_call_id(call_id)


class TestBridged:
    """Agent transfer succeeds."""

    @pytest.mark.asyncio
    async def test_first_uri_succeeds(self, session_scope, call_control, make_orchestrator):
        business = await add_business(session_scope)
        orchestrator = make_orchestrator(call_control)

        outcome = await orchestrator.run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.BRIDGED
        assert outcome.transitions == [
            BridgeState.RECEIVED_INITIATED,
            BridgeState.RESOLVING,
            BridgeState.ANSWERING,
            BridgeState.TRANSFERRING,
            BridgeState.BRIDGED,
        ]
        assert outcome.resolution.business_id == business.id
        assert outcome.connected
        assert not outcome.hung_up
        assert call_control.actions == ["answer", "transfer"]

        transfer = call_control.commands[1]
        assert transfer["to"] == AGENT_URIS[0]
        assert transfer["from"] == "+15555550100"
        assert transfer["custom_headers"] == {"X-Agent-Id": "agent_1"}

    @pytest.mark.asyncio
    async def test_later_uri_format_succeeds(self, session_scope, make_orchestrator):
        await add_business(session_scope)
        call_control = FakeCallControl(fail_transfers_to=tuple(AGENT_URIS[:2]))

        outcome = await make_orchestrator(call_control).run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.BRIDGED
        assert outcome.transfer_attempts == AGENT_URIS
        assert outcome.transfer_target == AGENT_URIS[2]

    @pytest.mark.asyncio
    async def test_command_ids_unique_per_step(self, session_scope, make_orchestrator):
        await add_business(session_scope)
        call_control = FakeCallControl(fail_transfers_to=(AGENT_URIS[0],))

        await make_orchestrator(call_control).run(make_event("call.initiated"))

        command_ids = [c["command_id"] for c in call_control.commands]
        assert len(set(command_ids)) == len(command_ids)
        assert all(cid.startswith("v3:call-123:") for cid in command_ids)

    @pytest.mark.asyncio
    async def test_claim_records_final_state(self, session_scope, call_control, make_orchestrator):
        await add_business(session_scope)

        await make_orchestrator(call_control).run(make_event("call.initiated"))

        claim = await get_claim(session_scope)
        assert claim.owner == "test-instance"
        assert claim.final_state == "bridged"


class TestEscalation:
    """Fallback to the business's human line."""

    @pytest.mark.asyncio
    async def test_all_uris_fail_escalates(self, session_scope, make_orchestrator):
        await add_business(session_scope, escalation_phone="(800) 555-9999")
        call_control = FakeCallControl(fail_transfers_to=tuple(AGENT_URIS))

        outcome = await make_orchestrator(call_control).run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.ESCALATING_FALLBACK
        assert call_control.transfer_targets == AGENT_URIS + ["+18005559999"]
        assert outcome.transfer_target == "+18005559999"
        assert outcome.connected
        assert call_control.actions.count("answer") == 1

    @pytest.mark.asyncio
    async def test_no_agent_escalates_after_answer(self, session_scope, call_control, make_orchestrator):
        await add_business(session_scope, agent_id=None, escalation_phone="+18005559999")

        outcome = await make_orchestrator(call_control).run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.ESCALATING_FALLBACK
        assert call_control.actions == ["answer", "transfer"]
        assert call_control.transfer_targets == ["+18005559999"]

    @pytest.mark.asyncio
    async def test_escalation_failure_plays_message(self, session_scope, make_orchestrator):
        await add_business(session_scope, escalation_phone="+18005559999")
        call_control = FakeCallControl(fail_transfers_to=tuple(AGENT_URIS) + ("+18005559999",))

        outcome = await make_orchestrator(call_control).run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.MESSAGE_FALLBACK
        assert BridgeState.ESCALATING_FALLBACK in outcome.transitions
        assert call_control.actions[-2:] == ["speak", "hangup"]
        assert outcome.hung_up

    @pytest.mark.asyncio
    async def test_invalid_escalation_phone_plays_message(self, session_scope, make_orchestrator):
        await add_business(session_scope, agent_id=None, escalation_phone="ext. 12")
        call_control = FakeCallControl()

        outcome = await make_orchestrator(call_control).run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.MESSAGE_FALLBACK
        assert call_control.actions == ["answer", "speak", "hangup"]


class TestMessageFallback:
    """Spoken message then hangup."""

    @pytest.mark.asyncio
    async def test_not_found(self, session_scope, call_control, make_orchestrator):
        orchestrator = make_orchestrator(call_control)

        outcome = await orchestrator.run(make_event("call.initiated", to="+19995550000"))

        assert outcome.final_state is BridgeState.MESSAGE_FALLBACK
        assert outcome.resolution is None
        assert call_control.actions == ["answer", "speak", "hangup"]
        assert call_control.commands[1]["text"] == orchestrator.messages.not_found
        assert outcome.hung_up

    @pytest.mark.asyncio
    async def test_no_agent_no_escalation(self, session_scope, call_control, make_orchestrator):
        await add_business(session_scope, agent_id=None)
        orchestrator = make_orchestrator(call_control)

        outcome = await orchestrator.run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.MESSAGE_FALLBACK
        assert call_control.commands[1]["text"] == orchestrator.messages.no_agent

    @pytest.mark.asyncio
    async def test_transfers_fail_without_escalation(self, session_scope, make_orchestrator):
        await add_business(session_scope)
        call_control = FakeCallControl(fail_transfers_to=tuple(AGENT_URIS))
        orchestrator = make_orchestrator(call_control)

        outcome = await orchestrator.run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.MESSAGE_FALLBACK
        assert call_control.actions == ["answer", "transfer", "transfer", "transfer", "speak", "hangup"]
        assert call_control.commands[4]["text"] == orchestrator.messages.transfer_failed

    @pytest.mark.asyncio
    async def test_speak_failure_still_hangs_up(self, session_scope, make_orchestrator):
        call_control = FakeCallControl(fail=("speak",))

        outcome = await make_orchestrator(call_control).run(make_event("call.initiated", to="+19995550000"))

        assert outcome.final_state is BridgeState.MESSAGE_FALLBACK
        assert call_control.actions == ["answer", "speak", "hangup"]
        assert outcome.hung_up

    @pytest.mark.asyncio
    async def test_voice_and_language_configurable(self, session_scope, make_orchestrator):
        call_control = FakeCallControl()
        orchestrator = make_orchestrator(call_control)
        orchestrator.messages = orchestrator.messages.model_copy(update={"voice": "male", "language": "es-US"})

        await orchestrator.run(make_event("call.initiated", to="+19995550000"))

        speak = call_control.commands[1]
        assert speak["voice"] == "male"
        assert speak["language"] == "es-US"


class TestFallbackTotality:
    """Every bridge ends connected or hung up."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "business,fail_transfers",
        [
            (None, False),
            ({"agent_id": None}, False),
            ({"agent_id": None, "escalation_phone": "+18005559999"}, False),
            ({"agent_id": None, "escalation_phone": "+18005559999"}, True),
            ({"agent_id": None, "escalation_phone": "bogus"}, False),
            ({}, False),
            ({}, True),
            ({"escalation_phone": "+18005559999"}, True),
        ],
    )
    async def test_connected_or_hung_up(self, session_scope, make_orchestrator, business, fail_transfers):
        if business is not None:
            await add_business(session_scope, **business)
        failing = tuple(AGENT_URIS) + ("+18005559999",) if fail_transfers else ()
        call_control = FakeCallControl(fail_transfers_to=failing)

        outcome = await make_orchestrator(call_control).run(make_event("call.initiated"))

        assert outcome.connected != outcome.hung_up
        assert outcome.final_state in (
            BridgeState.BRIDGED,
            BridgeState.ESCALATING_FALLBACK,
            BridgeState.MESSAGE_FALLBACK,
        )


class TestAbort:
    """Answer failure ends the run without further commands."""

    @pytest.mark.asyncio
    async def test_answer_failure_aborts(self, session_scope, make_orchestrator):
        await add_business(session_scope)
        call_control = FakeCallControl(fail=("answer",))

        outcome = await make_orchestrator(call_control).run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.ABORTED
        assert call_control.actions == ["answer"]
        assert not outcome.answered

    @pytest.mark.asyncio
    async def test_overall_timeout_hangs_up_answered_call(self, session_scope, make_orchestrator):
        await add_business(session_scope)
        call_control = FakeCallControl(transfer_delay=5.0)

        outcome = await make_orchestrator(call_control, timeout=0.2).run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.TIMED_OUT
        assert call_control.actions == ["answer", "transfer", "hangup"]
        assert outcome.hung_up
        assert (await get_claim(session_scope)).final_state == "timed_out"

    @pytest.mark.asyncio
    async def test_lookup_failure_treated_as_not_found(self, claim_guard, call_control):
        from contextlib import asynccontextmanager

        from sqlalchemy.exc import OperationalError

        from call_bridge.config import MessageSettings
        from call_bridge.services.bridge import BridgeOrchestrator

        @asynccontextmanager
        async def broken_scope():
            raise OperationalError("SELECT", {}, Exception("database is down"))
            yield

        orchestrator = BridgeOrchestrator(
            call_control,
            claim_guard,
            broken_scope,
            MessageSettings(),
            sip_domain=TEST_SIP_DOMAIN,
            answer_settle_seconds=0,
            message_settle_seconds=0,
        )

        outcome = await orchestrator.run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.MESSAGE_FALLBACK
        assert call_control.actions == ["answer", "speak", "hangup"]


class TestSkipAndDedupe:
    """Only genuine first deliveries of inbound calls are bridged."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kind,overrides",
        [
            ("call.answered", {}),
            ("call.hangup", {}),
            ("call.initiated", {"to": "sip:8005551234@sip.retellai.com"}),
            ("call.initiated", {"call_id": ""}),
            ("call.initiated", {"direction": "outgoing"}),
        ],
    )
    async def test_skipped(self, session_scope, call_control, make_orchestrator, kind, overrides):
        await add_business(session_scope)

        outcome = await make_orchestrator(call_control).run(make_event(kind, **overrides))

        assert outcome.final_state is BridgeState.SKIPPED
        assert call_control.commands == []

    @pytest.mark.asyncio
    async def test_duplicate_delivery_bridged_once(self, session_scope, call_control, make_orchestrator):
        await add_business(session_scope)
        orchestrator = make_orchestrator(call_control)

        first = await orchestrator.run(make_event("call.initiated"))
        second = await orchestrator.run(make_event("call.initiated"))

        assert first.final_state is BridgeState.BRIDGED
        assert second.final_state is BridgeState.DUPLICATE
        assert call_control.actions.count("answer") == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_bridged_once(self, session_scope, call_control, make_orchestrator):
        await add_business(session_scope)
        orchestrator = make_orchestrator(call_control)

        outcomes = await asyncio.gather(
            *(orchestrator.run(make_event("call.initiated")) for _ in range(6))
        )

        states = [o.final_state for o in outcomes]
        assert states.count(BridgeState.BRIDGED) == 1
        assert states.count(BridgeState.DUPLICATE) == 5
        assert call_control.actions.count("answer") == 1
        assert call_control.actions.count("transfer") == 1

    @pytest.mark.asyncio
    async def test_expired_claim_taken_over(self, session_scope, call_control, make_orchestrator):
        await add_business(session_scope)
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        async with session_scope() as session:
            await BridgeClaimRepository(session).insert_if_absent(
                {
                    "id": uuid4(),
                    "call_id": "v3:call-123",
                    "owner": "crashed-instance",
                    "claimed_at": past,
                    "expires_at": past + timedelta(hours=1),
                },
                ["call_id"],
            )

        outcome = await make_orchestrator(call_control).run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.BRIDGED
        claim = await get_claim(session_scope)
        assert claim.owner == "test-instance"

    @pytest.mark.asyncio
    async def test_live_claim_blocks(self, session_scope, call_control, make_orchestrator, claim_guard):
        await add_business(session_scope)
        assert await claim_guard.claim("v3:call-123")

        outcome = await make_orchestrator(call_control).run(make_event("call.initiated"))

        assert outcome.final_state is BridgeState.DUPLICATE
        assert call_control.commands == []


class TestBridgeDispatcher:
    """Detached execution."""

    @pytest.mark.asyncio
    async def test_submit_runs_in_background(self, session_scope, call_control, make_orchestrator):
        await add_business(session_scope)
        dispatcher = BridgeDispatcher(make_orchestrator(call_control), max_concurrency=2)

        task = dispatcher.submit(make_event("call.initiated"))
        outcome = await task

        assert outcome.final_state is BridgeState.BRIDGED
        assert dispatcher.active_count == 0

    @pytest.mark.asyncio
    async def test_non_initiated_not_submitted(self, call_control, make_orchestrator):
        dispatcher = BridgeDispatcher(make_orchestrator(call_control))

        assert dispatcher.submit(make_event("call.answered")) is None

    @pytest.mark.asyncio
    async def test_failures_contained(self, call_control, make_orchestrator):
        orchestrator = make_orchestrator(call_control)

        async def explode(event):
            raise RuntimeError("boom")

        orchestrator.run = explode
        dispatcher = BridgeDispatcher(orchestrator)

        result = await dispatcher.submit(make_event("call.initiated"))

        assert result is None

    @pytest.mark.asyncio
    async def test_drain_rejects_new_work(self, call_control, make_orchestrator):
        dispatcher = BridgeDispatcher(make_orchestrator(call_control))

        await dispatcher.drain()

        assert dispatcher.submit(make_event("call.initiated")) is None
