"""Telnyx webhook event normalization.

Telnyx has delivered call events in two envelope shapes over time::

    {"data": {"event_type": "call.initiated", "payload": {...}}}
    {"event_type": "call.initiated", "payload": {...}}

Older flat deliveries may also carry the payload fields at the top level.
All of them are reduced to a :class:`CallEvent`.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from call_bridge.core.exceptions import EventParseError
from call_bridge.core.logging import get_logger
from call_bridge.core.phone import is_sip_uri


log = get_logger(__name__)


class CallEventKind(str, Enum):
    """Canonical call event kinds."""

    INITIATED = "initiated"
    ANSWERED = "answered"
    ENDED = "ended"
    HANGUP = "hangup"
    UNKNOWN = "unknown"


EVENT_TYPE_MAP: dict[str, CallEventKind] = {
    "call.initiated": CallEventKind.INITIATED,
    "call.answered": CallEventKind.ANSWERED,
    "call.ended": CallEventKind.ENDED,
    "call.hangup": CallEventKind.HANGUP,
}

TERMINAL_KINDS = frozenset({CallEventKind.ENDED, CallEventKind.HANGUP})


@dataclass(frozen=True)
class CallEvent:
    """Provider-independent view of one webhook delivery."""

    event_kind: CallEventKind
    event_type: str
    call_id: str | None
    to_number: str | None = None
    from_number: str | None = None
    call_leg_id: str | None = None
    call_session_id: str | None = None
    direction: str | None = None
    duration_seconds: int | None = None
    hangup_cause: str | None = None
    recording_url: str | None = None
    occurred_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.event_kind in TERMINAL_KINDS

    @property
    def is_transfer_leg(self) -> bool:
        """Leg created by our own SIP transfer to the agent platform."""
        return is_sip_uri(self.to_number)

    def log_context(self) -> dict[str, Any]:
        """Fields to bind on log entries about this event."""
        return {
            "call_id": self.call_id,
            "event_type": self.event_type,
            "event_kind": self.event_kind.value,
        }


def normalize_event(raw: bytes | str) -> CallEvent:
    """Parse a webhook body into a CallEvent.

    Args:
        raw: Raw request body

    Returns:
        Normalized event. Unrecognized event types map to UNKNOWN.

    Raises:
        EventParseError: Body is not valid JSON or not a JSON object
    """
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise EventParseError("Webhook body is not valid JSON") from e

    if not isinstance(body, dict):
        raise EventParseError(
            "Webhook body must be a JSON object",
            details={"type": type(body).__name__},
        )

    envelope = _unwrap_envelope(body)
    payload = envelope.get("payload")
    if not isinstance(payload, dict):
        payload = envelope

    event_type = str(envelope.get("event_type") or "")
    kind = EVENT_TYPE_MAP.get(event_type, CallEventKind.UNKNOWN)

    duration = None
    hangup_cause = None
    if kind in TERMINAL_KINDS:
        duration = _duration_seconds(payload)
        hangup_cause = _str_or_none(payload.get("hangup_cause"))

    event = CallEvent(
        event_kind=kind,
        event_type=event_type or "missing",
        call_id=_str_or_none(payload.get("call_control_id") or payload.get("call_id")),
        to_number=_str_or_none(payload.get("to")),
        from_number=_str_or_none(payload.get("from")),
        call_leg_id=_str_or_none(payload.get("call_leg_id")),
        call_session_id=_str_or_none(payload.get("call_session_id")),
        direction=_str_or_none(payload.get("direction")),
        duration_seconds=duration,
        hangup_cause=hangup_cause,
        recording_url=_recording_url(payload),
        occurred_at=_str_or_none(envelope.get("occurred_at")),
    )

    if kind is CallEventKind.UNKNOWN:
        log.info("Unhandled call event type", **event.log_context())
    else:
        log.info("Call event received", direction=event.direction, **event.log_context())

    return event


def _unwrap_envelope(body: dict[str, Any]) -> dict[str, Any]:
    data = body.get("data")
    if isinstance(data, dict) and ("event_type" in data or "payload" in data):
        return data
    return body


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _duration_seconds(payload: dict[str, Any]) -> int | None:
    for key in ("duration_secs", "duration"):
        value = payload.get(key)
        if value is None or value == "":
            continue
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            seconds = math.nan
        if not math.isfinite(seconds):
            log.warning("Ignoring malformed call duration", key=key, value=str(value))
            return None
        return max(0, int(seconds))

    start = _parse_timestamp(payload.get("start_time"))
    end = _parse_timestamp(payload.get("end_time"))
    if start and end and (start.tzinfo is None) == (end.tzinfo is None):
        return max(0, int((end - start).total_seconds()))
    return None


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _recording_url(payload: dict[str, Any]) -> str | None:
    urls = payload.get("recording_urls") or payload.get("public_recording_urls")
    if isinstance(urls, dict):
        return _str_or_none(urls.get("mp3") or urls.get("wav"))
    if isinstance(urls, list) and urls and isinstance(urls[0], dict):
        return _str_or_none(urls[0].get("url"))
    return _str_or_none(payload.get("recording_url"))
