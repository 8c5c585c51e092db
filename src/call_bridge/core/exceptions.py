"""Call Bridge exceptions.

Each class carries the HTTP status and machine-readable code used when
it escapes to a response. Wrapped causes travel as ``__cause__``
(``raise ... from e``).
"""

from __future__ import annotations

from typing import Any


class CallBridgeError(Exception):
    """Base exception for all Call Bridge errors."""

    status_code: int = 500
    error_code: str = "CALL_BRIDGE_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def __str__(self) -> str:
        text = f"{self.error_code}: {self.message}"
        if self.__cause__ is not None:
            text += f" (caused by {type(self.__cause__).__name__}: {self.__cause__})"
        return text


class ConfigurationError(CallBridgeError):
    """Required configuration is missing or invalid."""

    error_code = "CONFIGURATION_ERROR"


class DatabaseError(CallBridgeError):
    """A read or write against the call database failed."""

    status_code = 503
    error_code = "DATABASE_ERROR"


# Webhooks


class WebhookError(CallBridgeError):
    status_code = 400
    error_code = "WEBHOOK_ERROR"


class WebhookSignatureError(WebhookError):
    """Signature or timestamp failed verification."""

    status_code = 401
    error_code = "INVALID_SIGNATURE"


class EventParseError(WebhookError):
    """Body could not be parsed into a call event."""

    error_code = "INVALID_PAYLOAD"
