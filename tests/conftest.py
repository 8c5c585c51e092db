"""Pytest configuration and fixtures for Call Bridge tests."""

from __future__ import annotations

import asyncio
import base64
import os
import time
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

# Set test environment before settings are first loaded
os.environ["CALLBRIDGE_ENV"] = "test"
os.environ["CALLBRIDGE_CONFIG_DIR"] = str(Path(__file__).parent.parent / "configs")
os.environ["CALLBRIDGE_DATABASE__URL"] = "sqlite+aiosqlite:///:memory:"

from call_bridge.telephony.call_control import CallControlGateway, CallControlResult  # noqa: E402


TEST_SIP_DOMAIN = "sip.agents.test"


# ============================================================================
# Async Database Fixtures
# ============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """Create a file-backed SQLite engine with all tables.

    A file database lets concurrent sessions see each other's commits.
    """
    from call_bridge.db.session import create_test_engine

    engine = await create_test_engine(f"sqlite+aiosqlite:///{tmp_path / 'call_bridge.db'}")
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_scope(db_engine):
    """Committing session context bound to the test engine."""
    from call_bridge.db.session import make_session_factory, session_scope_for

    return session_scope_for(make_session_factory(db_engine))


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator:
    """Create test database session.

    Provides a session that rolls back after each test.
    """
    from call_bridge.db.session import make_session_factory

    async with make_session_factory(db_engine)() as session:
        yield session
        await session.rollback()


# ============================================================================
# Tenant Data
# ============================================================================


async def add_business(
    session_scope,
    *,
    name: str = "Acme Plumbing",
    phone_number: str | None = "+18005551234",
    secondary_phone: str | None = None,
    agent_id: str | None = "agent_1",
    escalation_phone: str | None = None,
):
    """Insert a business and return it."""
    from call_bridge.db.models import BusinessModel

    business = BusinessModel(
        name=name,
        phone_number=phone_number,
        secondary_phone=secondary_phone,
        agent_id=agent_id,
        escalation_phone=escalation_phone,
    )
    async with session_scope() as session:
        session.add(business)
    return business


async def add_toll_free(session_scope, number: str, business_id, *, status: str = "assigned"):
    """Insert a toll-free inventory entry."""
    from call_bridge.db.models import TollFreeNumberModel

    entry = TollFreeNumberModel(number=number, status=status, business_id=business_id)
    async with session_scope() as session:
        session.add(entry)
    return entry


async def add_agent_binding(
    session_scope,
    phone_number: str,
    business_id,
    *,
    agent_id: str | None = "agent_bound",
    is_active: bool = True,
):
    """Insert an agent binding."""
    from call_bridge.db.models import AgentBindingModel

    binding = AgentBindingModel(
        phone_number=phone_number,
        business_id=business_id,
        agent_id=agent_id,
        is_active=is_active,
    )
    async with session_scope() as session:
        session.add(binding)
    return binding


# ============================================================================
# Call Events
# ============================================================================


def make_event(
    kind: str = "call.initiated",
    *,
    call_id: str = "v3:call-123",
    to: str = "+18005551234",
    from_: str = "+15555550100",
    direction: str = "incoming",
    **extra,
):
    """Build a normalized CallEvent from a nested Telnyx envelope."""
    import json

    from call_bridge.telephony.events import normalize_event

    payload = {
        "call_control_id": call_id,
        "to": to,
        "from": from_,
        "direction": direction,
        **extra,
    }
    return normalize_event(json.dumps({"data": {"event_type": kind, "payload": payload}}))


def make_webhook_body(kind: str = "call.initiated", **payload) -> bytes:
    """Raw webhook body in the nested envelope shape."""
    import json

    body = {
        "data": {
            "event_type": kind,
            "id": "0ccc7b54-4df3-4bca-a65a-3da1ecc777f0",
            "occurred_at": "2026-01-15T10:00:00.000000Z",
            "payload": {
                "call_control_id": "v3:call-123",
                "to": "+18005551234",
                "from": "+15555550100",
                "direction": "incoming",
                **payload,
            },
        }
    }
    return json.dumps(body).encode()


# ============================================================================
# Signing
# ============================================================================


@pytest.fixture(scope="session")
def signing_key():
    """Ed25519 key pair standing in for the Telnyx account key."""
    from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

    return Ed25519PrivateKey.generate()


@pytest.fixture(scope="session")
def public_key_b64(signing_key) -> str:
    """Raw 32-byte public key, base64 encoded as shown in the portal."""
    from cryptography.hazmat.primitives import serialization

    raw = signing_key.public_key().public_bytes(
        serialization.Encoding.Raw,
        serialization.PublicFormat.Raw,
    )
    return base64.b64encode(raw).decode()


def sign(private_key, body: bytes, timestamp: str | None = None) -> dict[str, str]:
    """Headers Telnyx would send with this body."""
    timestamp = timestamp or str(int(time.time()))
    signature = private_key.sign(timestamp.encode() + b"|" + body)
    return {
        "telnyx-signature-ed25519": base64.b64encode(signature).decode(),
        "telnyx-timestamp": timestamp,
    }


# ============================================================================
# Call Control
# ============================================================================


class FakeCallControl(CallControlGateway):
    """In-memory call-control API recording every command.

    Args:
        fail: Actions that always fail ("answer", "speak", "hangup", "transfer")
        fail_transfers_to: Transfer targets that fail
        transfer_delay: Seconds each transfer takes
    """

    def __init__(
        self,
        *,
        fail: tuple[str, ...] = (),
        fail_transfers_to: tuple[str, ...] = (),
        transfer_delay: float = 0.0,
    ):
        self.fail = set(fail)
        self.fail_transfers_to = set(fail_transfers_to)
        self.transfer_delay = transfer_delay
        self.commands: list[dict] = []
        self.closed = False

    @property
    def actions(self) -> list[str]:
        return [c["action"] for c in self.commands]

    @property
    def transfer_targets(self) -> list[str]:
        return [c["to"] for c in self.commands if c["action"] == "transfer"]

    def _result(self, action: str, failed: bool = False) -> CallControlResult:
        if failed or action in self.fail:
            return CallControlResult(
                success=False, action=action, status_code=422, error_message="Call not found"
            )
        return CallControlResult(success=True, action=action, status_code=200)

    async def answer(self, call_control_id, *, command_id=None):
        self.commands.append({"action": "answer", "call_id": call_control_id, "command_id": command_id})
        return self._result("answer")

    async def transfer(
        self,
        call_control_id,
        to,
        *,
        from_number=None,
        custom_headers=None,
        command_id=None,
    ):
        self.commands.append({
            "action": "transfer",
            "call_id": call_control_id,
            "to": to,
            "from": from_number,
            "custom_headers": custom_headers,
            "command_id": command_id,
        })
        if self.transfer_delay:
            await asyncio.sleep(self.transfer_delay)
        return self._result("transfer", failed=to in self.fail_transfers_to)

    async def speak(self, call_control_id, text, *, voice="female", language="en-US", command_id=None):
        self.commands.append({
            "action": "speak",
            "call_id": call_control_id,
            "text": text,
            "voice": voice,
            "language": language,
            "command_id": command_id,
        })
        return self._result("speak")

    async def hangup(self, call_control_id, *, command_id=None):
        self.commands.append({"action": "hangup", "call_id": call_control_id, "command_id": command_id})
        return self._result("hangup")

    async def close(self):
        self.closed = True


@pytest.fixture
def call_control():
    """Call-control API that accepts every command."""
    return FakeCallControl()


@pytest.fixture
def claim_guard(session_scope):
    """Bridge claim guard on the test database."""
    from call_bridge.services.dedupe import BridgeClaimGuard

    return BridgeClaimGuard(session_scope, owner="test-instance", ttl_seconds=3600)


@pytest.fixture
def make_orchestrator(session_scope, claim_guard):
    """Factory for orchestrators with no settle delays."""
    from call_bridge.config import MessageSettings
    from call_bridge.services.bridge import BridgeOrchestrator

    def factory(call_control, **overrides):
        options = {
            "sip_domain": TEST_SIP_DOMAIN,
            "answer_settle_seconds": 0,
            "message_settle_seconds": 0,
            "timeout": 5.0,
        }
        options.update(overrides)
        return BridgeOrchestrator(
            call_control,
            claim_guard,
            session_scope,
            MessageSettings(),
            **options,
        )

    return factory


# ============================================================================
# Application
# ============================================================================


@pytest.fixture(autouse=True)
def reset_singletons():
    """Clear cached dependencies between tests."""
    from call_bridge.dependencies import reset_dependencies

    reset_dependencies()
    yield
    reset_dependencies()
