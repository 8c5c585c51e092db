"""Core building blocks shared across Call Bridge."""

from call_bridge.core.exceptions import (
    CallBridgeError,
    ConfigurationError,
    DatabaseError,
    WebhookError,
    WebhookSignatureError,
    EventParseError,
)
from call_bridge.core.logging import setup_logging, get_logger

__all__ = [
    # Exceptions
    "CallBridgeError",
    "ConfigurationError",
    "DatabaseError",
    "WebhookError",
    "WebhookSignatureError",
    "EventParseError",
    # Logging
    "setup_logging",
    "get_logger",
]
