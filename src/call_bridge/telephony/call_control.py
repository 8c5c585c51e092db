"""Call-control API client.

Commands (answer, transfer, speak, hangup) are addressed by the provider's
call-control id. Clients never raise on HTTP or network failures; callers
inspect the returned :class:`CallControlResult` and decide the next step.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from call_bridge.core.exceptions import ConfigurationError
from call_bridge.core.logging import get_logger


log = get_logger(__name__)


@dataclass
class CallControlResult:
    """Result of a call-control command."""

    success: bool
    action: str
    status_code: int | None = None
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "action": self.action,
            "status_code": self.status_code,
            "error_message": self.error_message,
        }


class CallControlGateway(ABC):
    """Abstract call-control API."""

    @abstractmethod
    async def answer(self, call_control_id: str, *, command_id: str | None = None) -> CallControlResult:
        """Answer an inbound call."""

    @abstractmethod
    async def transfer(
        self,
        call_control_id: str,
        to: str,
        *,
        from_number: str | None = None,
        custom_headers: dict[str, str] | None = None,
        command_id: str | None = None,
    ) -> CallControlResult:
        """Transfer the call to a number or SIP URI."""

    @abstractmethod
    async def speak(
        self,
        call_control_id: str,
        text: str,
        *,
        voice: str = "female",
        language: str = "en-US",
        command_id: str | None = None,
    ) -> CallControlResult:
        """Play text-to-speech on the call."""

    @abstractmethod
    async def hangup(self, call_control_id: str, *, command_id: str | None = None) -> CallControlResult:
        """Hang up the call."""

    async def close(self) -> None:
        """Release network resources."""


class TelnyxCallControl(CallControlGateway):
    """Telnyx Call Control v2 client.

    API Documentation: https://developers.telnyx.com/api/call-control

    Every command accepts a ``command_id``; Telnyx ignores a repeated
    command with the same id on the same call.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.telnyx.com/v2",
        timeout: float = 5.0,
    ):
        """Initialize the client.

        Args:
            api_key: Telnyx API v2 key
            base_url: API base URL
            timeout: Per-request timeout in seconds
        """
        if not api_key:
            raise ConfigurationError("Telnyx API key is required for call control")

        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    async def answer(self, call_control_id: str, *, command_id: str | None = None) -> CallControlResult:
        return await self._command(call_control_id, "answer", {}, command_id)

    async def transfer(
        self,
        call_control_id: str,
        to: str,
        *,
        from_number: str | None = None,
        custom_headers: dict[str, str] | None = None,
        command_id: str | None = None,
    ) -> CallControlResult:
        body: dict[str, Any] = {"to": to}
        if from_number:
            body["from"] = from_number
        if custom_headers:
            body["custom_headers"] = [
                {"name": name, "value": value} for name, value in custom_headers.items()
            ]
        return await self._command(call_control_id, "transfer", body, command_id)

    async def speak(
        self,
        call_control_id: str,
        text: str,
        *,
        voice: str = "female",
        language: str = "en-US",
        command_id: str | None = None,
    ) -> CallControlResult:
        body = {"payload": text, "voice": voice, "language": language}
        return await self._command(call_control_id, "speak", body, command_id)

    async def hangup(self, call_control_id: str, *, command_id: str | None = None) -> CallControlResult:
        return await self._command(call_control_id, "hangup", {}, command_id)

    async def close(self) -> None:
        await self._client.aclose()

    async def _command(
        self,
        call_control_id: str,
        action: str,
        body: dict[str, Any],
        command_id: str | None,
    ) -> CallControlResult:
        if command_id:
            body = {**body, "command_id": command_id}

        # Call-control ids contain ':' and must be path-escaped
        path = f"/calls/{quote(call_control_id, safe='')}/actions/{action}"

        try:
            response = await self._client.post(path, json=body)
        except httpx.TimeoutException:
            log.error("Call control timeout", action=action, call_id=call_control_id, timeout=self.timeout)
            return CallControlResult(success=False, action=action, error_message="Request timeout")
        except httpx.HTTPError as e:
            log.error("Call control HTTP error", action=action, call_id=call_control_id, error=str(e))
            return CallControlResult(success=False, action=action, error_message=str(e))

        if response.is_success:
            log.debug("Call control command accepted", action=action, call_id=call_control_id)
            return CallControlResult(success=True, action=action, status_code=response.status_code)

        try:
            error_data = response.json() if response.content else {}
        except (ValueError, TypeError):
            error_data = {}
        errors = error_data.get("errors") if isinstance(error_data, dict) else None
        if errors and isinstance(errors, list) and isinstance(errors[0], dict):
            error_message = errors[0].get("detail") or errors[0].get("title") or ""
        else:
            error_message = f"HTTP {response.status_code}"

        log.warning(
            "Call control command rejected",
            action=action,
            call_id=call_control_id,
            status_code=response.status_code,
            error=error_message,
        )
        return CallControlResult(
            success=False,
            action=action,
            status_code=response.status_code,
            error_message=error_message,
        )
