"""Bridge Orchestrator.

Connects a newly initiated inbound call to its business's voice-AI agent::

    RECEIVED_INITIATED -> RESOLVING -> ANSWERING -> TRANSFERRING
        -> BRIDGED | ESCALATING_FALLBACK | MESSAGE_FALLBACK

Every path ends with the caller either connected (agent or escalation
line) or hung up after a spoken message. The orchestrator runs detached
from the webhook response through :class:`BridgeDispatcher`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from call_bridge.core.background import BackgroundTaskGroup
from call_bridge.core.logging import get_logger
from call_bridge.core.phone import SIP_URI_ENCODERS, SipUriEncoder, iter_sip_uris, normalize_phone
from call_bridge.db.session import SessionScope
from call_bridge.services.dedupe import BridgeClaimGuard
from call_bridge.services.tenant_resolver import TenantResolution, TenantResolver
from call_bridge.telephony.call_control import CallControlGateway, CallControlResult
from call_bridge.telephony.events import CallEvent, CallEventKind

if TYPE_CHECKING:
    from call_bridge.config import MessageSettings, Settings


log = get_logger(__name__)


class BridgeState(str, Enum):
    """Bridge state machine states."""

    RECEIVED_INITIATED = "received_initiated"
    RESOLVING = "resolving"
    ANSWERING = "answering"
    TRANSFERRING = "transferring"
    BRIDGED = "bridged"
    ESCALATING_FALLBACK = "escalating_fallback"
    MESSAGE_FALLBACK = "message_fallback"
    # Ended without touching the call
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    ABORTED = "aborted"
    TIMED_OUT = "timed_out"


@dataclass
class BridgeOutcome:
    """Record of one bridge run."""

    call_id: str | None
    final_state: BridgeState
    transitions: list[BridgeState] = field(default_factory=list)
    resolution: TenantResolution | None = None
    transfer_attempts: list[str] = field(default_factory=list)
    transfer_target: str | None = None
    answered: bool = False
    connected: bool = False
    hung_up: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_id": self.call_id,
            "final_state": self.final_state.value,
            "transitions": [s.value for s in self.transitions],
            "business_id": str(self.resolution.business_id) if self.resolution else None,
            "transfer_attempts": self.transfer_attempts,
            "transfer_target": self.transfer_target,
            "answered": self.answered,
            "connected": self.connected,
            "hung_up": self.hung_up,
        }


class _BridgeRun:
    """Mutable state of a single run."""

    def __init__(self, event: CallEvent):
        self.event = event
        self.call_id: str = event.call_id or ""
        self.outcome = BridgeOutcome(
            call_id=event.call_id,
            final_state=BridgeState.RECEIVED_INITIATED,
            transitions=[BridgeState.RECEIVED_INITIATED],
        )
        self._commands = 0

    def enter(self, state: BridgeState) -> None:
        self.outcome.transitions.append(state)
        self.outcome.final_state = state
        log.debug("Bridge state", call_id=self.call_id, state=state.value)

    def command_id(self, action: str) -> str:
        self._commands += 1
        return f"{self.call_id}:{action}:{self._commands}"


class BridgeOrchestrator:
    """Answer, transfer and fall back for one inbound call.

    Usage:
        orchestrator = BridgeOrchestrator.from_settings(settings, gateway, guard, get_db_context)
        outcome = await orchestrator.run(event)
    """

    def __init__(
        self,
        call_control: CallControlGateway,
        claim_guard: BridgeClaimGuard,
        session_scope: SessionScope,
        messages: "MessageSettings",
        *,
        sip_domain: str,
        agent_header_name: str = "X-Agent-Id",
        answer_settle_seconds: float = 1.0,
        message_settle_seconds: float = 6.0,
        timeout: float = 60.0,
        detect_conflicts: bool = False,
        encoders: tuple[SipUriEncoder, ...] = SIP_URI_ENCODERS,
    ):
        """Initialize orchestrator.

        Args:
            call_control: Call-control API client
            claim_guard: At-most-once guard
            session_scope: Factory for database sessions used by tenant lookups
            messages: Spoken fallback messages, voice and language
            sip_domain: Agent platform SIP domain
            agent_header_name: SIP header carrying the agent id on transfer
            answer_settle_seconds: Pause between answer and first command
            message_settle_seconds: Pause between fallback message and hangup
            timeout: Upper bound for a whole run
            detect_conflicts: Warn when a number is bound in several tables
            encoders: SIP URI encoders, tried in order
        """
        self.call_control = call_control
        self.claim_guard = claim_guard
        self._session_scope = session_scope
        self.messages = messages
        self.sip_domain = sip_domain
        self.agent_header_name = agent_header_name
        self.answer_settle_seconds = answer_settle_seconds
        self.message_settle_seconds = message_settle_seconds
        self.timeout = timeout
        self.detect_conflicts = detect_conflicts
        self.encoders = encoders

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        call_control: CallControlGateway,
        claim_guard: BridgeClaimGuard,
        session_scope: SessionScope,
    ) -> "BridgeOrchestrator":
        return cls(
            call_control,
            claim_guard,
            session_scope,
            settings.messages,
            sip_domain=settings.agent_platform.sip_domain,
            agent_header_name=settings.agent_platform.agent_header_name,
            answer_settle_seconds=settings.bridge.answer_settle_seconds,
            message_settle_seconds=settings.bridge.message_settle_seconds,
            timeout=settings.bridge.bridge_timeout_seconds,
            detect_conflicts=settings.bridge.detect_binding_conflicts,
        )

    async def run(self, event: CallEvent) -> BridgeOutcome:
        """Bridge a call for a ``call.initiated`` event.

        Never raises for call-control or lookup failures; the outcome
        describes what happened.
        """
        run = _BridgeRun(event)

        if not self._should_bridge(event):
            run.enter(BridgeState.SKIPPED)
            return run.outcome

        if not await self.claim_guard.claim(run.call_id):
            run.enter(BridgeState.DUPLICATE)
            return run.outcome

        try:
            await asyncio.wait_for(self._drive(run), timeout=self.timeout)
        except asyncio.TimeoutError:
            log.error("Bridge timed out", call_id=run.call_id, timeout=self.timeout)
            await self._release_silent_call(run)
            run.enter(BridgeState.TIMED_OUT)
        except Exception as e:
            log.exception("Bridge failed", call_id=run.call_id, error=str(e))
            await self._release_silent_call(run)
            run.enter(BridgeState.ABORTED)

        outcome = run.outcome
        log.info(
            "Bridge finished",
            call_id=run.call_id,
            final_state=outcome.final_state.value,
            connected=outcome.connected,
            hung_up=outcome.hung_up,
            attempts=len(outcome.transfer_attempts),
        )
        await self.claim_guard.mark_finished(run.call_id, outcome.final_state.value)
        return outcome

    def _should_bridge(self, event: CallEvent) -> bool:
        if event.event_kind is not CallEventKind.INITIATED:
            return False
        if not event.call_id:
            log.warning("Initiated event without call id, not bridging", event_type=event.event_type)
            return False
        if event.is_transfer_leg:
            log.debug("Skipping agent transfer leg", call_id=event.call_id, to=event.to_number)
            return False
        if event.direction in ("outgoing", "outbound"):
            log.debug("Skipping outbound leg", call_id=event.call_id)
            return False
        return True

    # ========================================================================
    # State machine
    # ========================================================================

    async def _drive(self, run: _BridgeRun) -> None:
        run.enter(BridgeState.RESOLVING)
        resolution = await self._resolve(run)
        run.outcome.resolution = resolution

        if resolution is None:
            await self._message_fallback(run, self.messages.not_found)
            return

        if not resolution.can_bridge:
            log.info(
                "Business has no agent bound",
                call_id=run.call_id,
                business_id=str(resolution.business_id),
                has_escalation=bool(resolution.escalation_phone),
            )
            if resolution.escalation_phone:
                await self._escalate(run, resolution)
            else:
                await self._message_fallback(run, self.messages.no_agent)
            return

        run.enter(BridgeState.ANSWERING)
        if not await self._answer(run):
            log.warning("Answer failed, aborting bridge", call_id=run.call_id)
            run.enter(BridgeState.ABORTED)
            return

        run.enter(BridgeState.TRANSFERRING)
        if await self._transfer_to_agent(run, resolution):
            run.enter(BridgeState.BRIDGED)
            return

        log.warning(
            "All agent transfer attempts failed",
            call_id=run.call_id,
            attempts=run.outcome.transfer_attempts,
        )
        if resolution.escalation_phone:
            await self._escalate(run, resolution)
        else:
            await self._message_fallback(run, self.messages.transfer_failed)

    async def _resolve(self, run: _BridgeRun) -> TenantResolution | None:
        try:
            async with self._session_scope() as session:
                resolver = TenantResolver.from_session(session, detect_conflicts=self.detect_conflicts)
                return await resolver.resolve(run.event.to_number)
        except SQLAlchemyError as e:
            # Treated as NotFound so the caller still hears a message
            log.error("Tenant lookup failed", call_id=run.call_id, error=str(e))
            return None

    async def _answer(self, run: _BridgeRun) -> bool:
        result = await self.call_control.answer(run.call_id, command_id=run.command_id("answer"))
        if not result.success:
            self._log_failure(run, result)
            return False

        run.outcome.answered = True
        # Let the provider settle the call state before the next command
        await asyncio.sleep(self.answer_settle_seconds)
        return True

    async def _transfer_to_agent(self, run: _BridgeRun, resolution: TenantResolution) -> bool:
        headers = {self.agent_header_name: resolution.agent_id} if resolution.agent_id else None

        for uri in iter_sip_uris(resolution.dialed_number, self.sip_domain, self.encoders):
            run.outcome.transfer_attempts.append(uri)
            result = await self.call_control.transfer(
                run.call_id,
                uri,
                from_number=run.event.from_number,
                custom_headers=headers,
                command_id=run.command_id("transfer"),
            )
            if result.success:
                run.outcome.connected = True
                run.outcome.transfer_target = uri
                log.info("Call bridged to agent", call_id=run.call_id, uri=uri, agent_id=resolution.agent_id)
                return True
            self._log_failure(run, result, uri=uri)

        return False

    async def _escalate(self, run: _BridgeRun, resolution: TenantResolution) -> None:
        run.enter(BridgeState.ESCALATING_FALLBACK)

        target = normalize_phone(resolution.escalation_phone)
        if target is None:
            log.warning(
                "Escalation phone not normalizable",
                call_id=run.call_id,
                escalation_phone=resolution.escalation_phone,
            )
            await self._message_fallback(run, self.messages.transfer_failed)
            return

        if not run.outcome.answered and not await self._answer(run):
            log.warning("Answer failed before escalation, aborting bridge", call_id=run.call_id)
            run.enter(BridgeState.ABORTED)
            return

        result = await self.call_control.transfer(
            run.call_id,
            target,
            command_id=run.command_id("transfer"),
        )
        if not result.success:
            self._log_failure(run, result, uri=target)
            await self._message_fallback(run, self.messages.transfer_failed)
            return

        run.outcome.connected = True
        run.outcome.transfer_target = target
        log.info("Call escalated", call_id=run.call_id, target=target)

    async def _message_fallback(self, run: _BridgeRun, text: str) -> None:
        run.enter(BridgeState.MESSAGE_FALLBACK)

        if run.outcome.answered or await self._answer(run):
            result = await self.call_control.speak(
                run.call_id,
                text,
                voice=self.messages.voice,
                language=self.messages.language,
                command_id=run.command_id("speak"),
            )
            if result.success:
                # Give the message time to play before disconnecting
                await asyncio.sleep(self.message_settle_seconds)
            else:
                self._log_failure(run, result)

        await self._hangup(run)

    async def _hangup(self, run: _BridgeRun) -> None:
        result = await self.call_control.hangup(run.call_id, command_id=run.command_id("hangup"))
        if result.success:
            run.outcome.hung_up = True
        else:
            self._log_failure(run, result)

    async def _release_silent_call(self, run: _BridgeRun) -> None:
        """Hang up a call we answered but never connected."""
        outcome = run.outcome
        if outcome.answered and not outcome.connected and not outcome.hung_up:
            await self._hangup(run)

    @staticmethod
    def _log_failure(run: _BridgeRun, result: CallControlResult, **context: Any) -> None:
        log.warning(
            "Call control command failed",
            call_id=run.call_id,
            action=result.action,
            status_code=result.status_code,
            error=result.error_message,
            **context,
        )


class BridgeDispatcher:
    """Runs bridges detached from the webhook request.

    Concurrency is bounded and failures never reach the caller.
    """

    def __init__(
        self,
        orchestrator: BridgeOrchestrator,
        *,
        max_concurrency: int = 50,
    ):
        self.orchestrator = orchestrator
        # Backstop above the orchestrator's own timeout, which cleans up the call
        self._tasks = BackgroundTaskGroup(
            "bridge",
            max_concurrency=max_concurrency,
            timeout=orchestrator.timeout + 30.0,
        )

    @property
    def active_count(self) -> int:
        return self._tasks.active_count

    def submit(self, event: CallEvent) -> asyncio.Task | None:
        """Schedule a bridge for an initiated event.

        Returns:
            The scheduled task, or None if the event does not start a bridge
        """
        if event.event_kind is not CallEventKind.INITIATED:
            return None
        return self._tasks.spawn(self.orchestrator.run(event), label=event.call_id or "")

    async def drain(self, timeout: float = 30.0) -> None:
        await self._tasks.drain(timeout=timeout)
