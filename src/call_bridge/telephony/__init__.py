"""Telephony provider integration.

- events: normalization of Call Control webhook envelopes
- call_control: answer/transfer/speak/hangup commands
"""

from call_bridge.telephony.call_control import (
    CallControlGateway,
    CallControlResult,
    TelnyxCallControl,
)
from call_bridge.telephony.events import (
    CallEvent,
    CallEventKind,
    normalize_event,
)

__all__ = [
    "CallControlGateway",
    "CallControlResult",
    "TelnyxCallControl",
    "CallEvent",
    "CallEventKind",
    "normalize_event",
]
