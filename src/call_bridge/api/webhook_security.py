"""Webhook security and signature verification.

Telnyx signs every webhook with Ed25519 over ``"{timestamp}|{raw body}"``
and sends the base64 signature and unix timestamp in headers.
See: https://developers.telnyx.com/docs/messaging/webhooks

Security measures:
- Ed25519 signature verification over the raw, unparsed body
- Timestamp validation (replay attack prevention)
- Fail closed when enforcement is on but no public key is configured
"""

from __future__ import annotations

import base64
import binascii
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import (
    load_der_public_key,
    load_pem_public_key,
)

from call_bridge.core.exceptions import WebhookSignatureError
from call_bridge.core.logging import get_logger

if TYPE_CHECKING:
    from fastapi import Request

    from call_bridge.config import Settings

log = get_logger(__name__)


@dataclass
class WebhookSecurityConfig:
    """Webhook security configuration."""

    # False only outside production, and every skipped check is logged
    validate_signatures: bool = True

    telnyx_public_key: str = ""
    signature_header: str = "telnyx-signature-ed25519"
    timestamp_header: str = "telnyx-timestamp"

    # Timestamp validation (replay attack prevention)
    validate_timestamp: bool = True
    timestamp_tolerance_seconds: int = 300

    @classmethod
    def from_settings(cls, settings: "Settings") -> "WebhookSecurityConfig":
        return cls(
            validate_signatures=settings.enforce_signatures,
            telnyx_public_key=settings.telnyx.public_key,
            signature_header=settings.webhooks.signature_header,
            timestamp_header=settings.webhooks.timestamp_header,
            timestamp_tolerance_seconds=settings.webhooks.timestamp_tolerance_seconds,
        )


def load_ed25519_public_key(value: str) -> Ed25519PublicKey | None:
    """Load a public key from its configured text form.

    Accepts PEM, base64 DER SubjectPublicKeyInfo, or the base64 raw
    32-byte key shown in the Telnyx portal.

    Returns:
        The key, or None if the value cannot be loaded.
    """
    value = value.strip()
    if not value:
        return None

    try:
        if value.startswith("-----BEGIN"):
            key = load_pem_public_key(value.encode())
        else:
            raw = base64.b64decode(value, validate=True)
            if len(raw) == 32:
                return Ed25519PublicKey.from_public_bytes(raw)
            key = load_der_public_key(raw)
    except (ValueError, binascii.Error, UnsupportedAlgorithm) as e:
        log.error("Cannot load webhook public key", error=str(e))
        return None

    if not isinstance(key, Ed25519PublicKey):
        log.error("Webhook public key is not an Ed25519 key", key_type=type(key).__name__)
        return None
    return key


class Ed25519SignatureValidator:
    """Validate Telnyx Ed25519 webhook signatures.

    Signature calculation:
    1. Concatenate the timestamp header, ``|`` and the raw request body
    2. Sign with the account's Ed25519 private key
    3. Base64 encode the signature
    """

    def __init__(self, public_key: str) -> None:
        """Initialize validator.

        Args:
            public_key: Configured public key (PEM, DER or raw, base64)
        """
        self._key = load_ed25519_public_key(public_key) if public_key else None

    @property
    def configured(self) -> bool:
        return self._key is not None

    def validate(self, signature: str, body: bytes, timestamp: str) -> bool:
        """Validate an Ed25519 signature.

        Args:
            signature: Base64 signature from the signature header
            body: Raw request body
            timestamp: Timestamp header value

        Returns:
            True if signature is valid
        """
        if self._key is None:
            log.error("Webhook public key not configured, rejecting request")
            return False

        if not signature or not timestamp:
            return False

        try:
            signature_bytes = base64.b64decode(signature, validate=True)
        except (ValueError, binascii.Error):
            log.warning("Webhook signature is not valid base64")
            return False

        message = timestamp.encode() + b"|" + body
        try:
            self._key.verify(signature_bytes, message)
        except InvalidSignature:
            return False
        return True


class TimestampValidator:
    """Validate request timestamps to prevent replay attacks."""

    def __init__(self, tolerance_seconds: int = 300) -> None:
        """Initialize validator.

        Args:
            tolerance_seconds: Maximum distance from now, in either direction
        """
        self.tolerance_seconds = tolerance_seconds

    def validate(self, timestamp: str | int | float) -> bool:
        """Validate timestamp is within tolerance.

        Args:
            timestamp: Unix timestamp (seconds)

        Returns:
            True if timestamp is valid
        """
        try:
            ts = float(timestamp)
        except (ValueError, TypeError):
            return False

        age = abs(time.time() - ts)

        if age > self.tolerance_seconds:
            log.warning("Request timestamp outside tolerance", age_seconds=round(age))
            return False

        return True


class WebhookSecurityManager:
    """Webhook security manager for Telnyx call events.

    Usage:
        security = WebhookSecurityManager(config)

        @app.post("/webhooks/telnyx/voice")
        async def voice_webhook(request: Request):
            await security.validate_telnyx(request)
            # Process webhook...
    """

    def __init__(self, config: WebhookSecurityConfig) -> None:
        """Initialize security manager.

        Args:
            config: Security configuration
        """
        self.config = config

        self._ed25519 = Ed25519SignatureValidator(config.telnyx_public_key)
        self._timestamp = TimestampValidator(config.timestamp_tolerance_seconds)

    def verify(self, raw_body: bytes, signature: str | None, timestamp: str | None) -> bool:
        """Check a delivery's signature and timestamp.

        Args:
            raw_body: Request body exactly as received
            signature: Signature header value
            timestamp: Timestamp header value

        Returns:
            True if the request may be processed
        """
        try:
            self.validate(raw_body, signature, timestamp)
        except WebhookSignatureError:
            return False
        return True

    def validate(
        self,
        raw_body: bytes,
        signature: str | None,
        timestamp: str | None,
        *,
        path: str = "",
    ) -> None:
        """Validate a delivery.

        Raises:
            WebhookSignatureError: If validation fails
        """
        if not self.config.validate_signatures:
            log.warning("Webhook signature verification bypassed", path=path)
            return

        if not signature or not timestamp:
            log.warning(
                "Webhook signature headers missing",
                path=path,
                has_signature=bool(signature),
                has_timestamp=bool(timestamp),
            )
            raise WebhookSignatureError("Missing signature or timestamp header")

        if self.config.validate_timestamp and not self._timestamp.validate(timestamp):
            raise WebhookSignatureError("Request timestamp expired")

        if not self._ed25519.validate(signature, raw_body, timestamp):
            log.warning("Invalid Telnyx signature", path=path)
            raise WebhookSignatureError("Invalid Telnyx signature")

        log.debug("Telnyx webhook validated", path=path)

    async def validate_telnyx(self, request: "Request") -> None:
        """Validate a Telnyx webhook request.

        Args:
            request: FastAPI request

        Raises:
            WebhookSignatureError: If validation fails
        """
        body = await request.body()
        self.validate(
            body,
            request.headers.get(self.config.signature_header),
            request.headers.get(self.config.timestamp_header),
            path=str(request.url.path),
        )
