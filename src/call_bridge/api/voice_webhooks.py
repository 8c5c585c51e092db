"""Voice webhook endpoint for Telnyx Call Control.

Flow per delivery:
1. Reject bodies over the size limit before verifying (400)
2. Verify the Ed25519 signature over the raw body (401 on failure)
3. Normalize the JSON envelope (400 if unparseable)
4. Schedule bridging for ``call.initiated`` without waiting for it
5. Reconcile the call record
6. Acknowledge with 200

Bridging and persistence failures never change the response: Telnyx
cannot fix them by redelivering.
"""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from call_bridge.api.webhook_security import WebhookSecurityManager
from call_bridge.core.exceptions import CallBridgeError, EventParseError, WebhookSignatureError
from call_bridge.core.logging import get_logger
from call_bridge.dependencies import (
    get_bridge_dispatcher,
    get_compliance_logger,
    get_session_scope,
    get_webhook_security,
)
from call_bridge.services.reconciler import CallRecordReconciler
from call_bridge.telephony.events import CallEvent, CallEventKind, normalize_event

log = get_logger(__name__)

router = APIRouter(prefix="/webhooks/telnyx", tags=["voice-webhooks"])


COMPLIANCE_CHANNEL = "voice"

# Larger bodies are rejected before parsing
MAX_WEBHOOK_BODY_BYTES = 1024 * 1024


# ============================================================================
# Helper Functions
# ============================================================================


def get_security_manager() -> WebhookSecurityManager:
    """Get webhook security manager via DI."""
    return get_webhook_security()


async def validate_telnyx_voice(request: Request) -> None:
    """Validate Telnyx voice webhook signature.

    Raises HTTPException 401 if validation fails.
    """
    try:
        security = get_security_manager()
        await security.validate_telnyx(request)
    except WebhookSignatureError as e:
        log.warning(
            "Invalid Telnyx voice webhook signature",
            path=str(request.url.path),
            error=e.message,
        )
        raise HTTPException(status_code=401, detail="Invalid signature")


def declared_length(request: Request) -> int | None:
    """Content-Length header as an int, or None when absent or malformed."""
    value = request.headers.get("content-length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def dispatch_bridge(event: CallEvent) -> None:
    """Hand an initiated call to the bridge dispatcher without waiting."""
    if event.event_kind is not CallEventKind.INITIATED:
        return

    try:
        dispatcher = get_bridge_dispatcher()
        if dispatcher is None:
            log.warning("Bridging unavailable, call not bridged", call_id=event.call_id)
            return
        dispatcher.submit(event)
    except Exception as e:
        log.exception("Could not schedule bridge", call_id=event.call_id, error=str(e))


async def reconcile_call_record(event: CallEvent) -> None:
    """Apply the event to the call record; failures are logged only."""
    try:
        async with get_session_scope()() as session:
            await CallRecordReconciler.from_session(session).reconcile(event)
    except CallBridgeError as e:
        log.error("Call record reconciliation failed", call_id=event.call_id, error=str(e))
    except Exception as e:
        log.exception("Unexpected reconciliation error", call_id=event.call_id, error=str(e))


# ============================================================================
# Response Models
# ============================================================================


class VoiceWebhookResponse(BaseModel):
    """Acknowledgement returned to Telnyx."""

    success: bool
    received: bool


# ============================================================================
# Telnyx Voice Webhook
# ============================================================================


@router.post("/voice", response_model=VoiceWebhookResponse)
async def handle_telnyx_voice(request: Request) -> VoiceWebhookResponse:
    """Handle Telnyx Call Control webhook.

    Consumed event types:
    - call.initiated: starts bridging and creates the call record
    - call.answered: advances the record to answered
    - call.ended / call.hangup: completes the record with duration

    Any other event type is acknowledged and logged.
    """
    path = str(request.url.path)
    compliance = get_compliance_logger()

    declared = declared_length(request)
    if declared is not None and declared > MAX_WEBHOOK_BODY_BYTES:
        log.warning("Voice webhook body too large", size=declared)
        compliance.record(COMPLIANCE_CHANNEL, "oversized", path, b"")
        raise HTTPException(status_code=400, detail="Payload too large")

    raw_body = await request.body()
    if len(raw_body) > MAX_WEBHOOK_BODY_BYTES:
        log.warning("Voice webhook body too large", size=len(raw_body))
        compliance.record(COMPLIANCE_CHANNEL, "oversized", path, raw_body)
        raise HTTPException(status_code=400, detail="Payload too large")

    try:
        await validate_telnyx_voice(request)
    except HTTPException:
        compliance.record(COMPLIANCE_CHANNEL, "rejected_signature", path, raw_body)
        raise

    try:
        event = normalize_event(raw_body)
    except EventParseError as e:
        log.warning("Unparseable voice webhook", path=path, error=str(e))
        compliance.record(COMPLIANCE_CHANNEL, "unparseable", path, raw_body)
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    compliance.record(COMPLIANCE_CHANNEL, event.event_type, path, raw_body)

    dispatch_bridge(event)
    await reconcile_call_record(event)

    return VoiceWebhookResponse(success=True, received=True)
