"""Configuration management for Call Bridge."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from call_bridge.core.exceptions import ConfigurationError


PRODUCTION_ENVIRONMENTS = ("production", "staging", "prod")


class DatabaseSettings(BaseModel):
    """Database configuration."""

    url: str = "sqlite+aiosqlite:///data/call_bridge.db"
    echo: bool = False


class TelnyxSettings(BaseModel):
    """Telnyx Call Control configuration."""

    api_key: str = ""
    api_base_url: str = "https://api.telnyx.com/v2"
    # Base64 Ed25519 public key from the Telnyx portal (raw, DER or PEM)
    public_key: str = ""
    request_timeout_seconds: float = 5.0


class WebhookSettings(BaseModel):
    """Webhook security configuration."""

    validate_signatures: bool = True
    timestamp_tolerance_seconds: int = 300
    signature_header: str = "telnyx-signature-ed25519"
    timestamp_header: str = "telnyx-timestamp"


class AgentPlatformSettings(BaseModel):
    """Voice-AI agent platform reached over SIP."""

    sip_domain: str = "sip.retellai.com"
    agent_header_name: str = "X-Agent-Id"


class MessageSettings(BaseModel):
    """Spoken fallback messages."""

    not_found: str = (
        "We're sorry, we could not connect your call. "
        "Please try again later."
    )
    no_agent: str = (
        "Thank you for calling. Please hold, "
        "our team will get back to you shortly."
    )
    transfer_failed: str = (
        "We're sorry, we are unable to connect you right now. "
        "We will call you back as soon as possible."
    )
    voice: str = "female"
    language: str = "en-US"


class BridgeSettings(BaseModel):
    """Call bridging behaviour."""

    enabled: bool = True
    answer_settle_seconds: float = 1.0
    message_settle_seconds: float = 6.0
    bridge_timeout_seconds: float = 60.0
    max_concurrent_bridges: int = 50
    claim_ttl_seconds: int = 3600
    detect_binding_conflicts: bool = False


class ComplianceSettings(BaseModel):
    """Webhook audit trail configuration."""

    enabled: bool = True
    max_body_bytes: int = 65536


class Settings(BaseSettings):
    """Application settings.

    Loaded from:
    1. Environment variables (CALLBRIDGE_*)
    2. configs/{environment}.yaml
    3. configs/default.yaml
    """

    model_config = SettingsConfigDict(
        env_prefix="CALLBRIDGE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Process identification
    instance_id: str = ""

    # Environment
    environment: str = "development"
    debug: bool = True

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Subsystems
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    telnyx: TelnyxSettings = Field(default_factory=TelnyxSettings)
    webhooks: WebhookSettings = Field(default_factory=WebhookSettings)
    agent_platform: AgentPlatformSettings = Field(default_factory=AgentPlatformSettings)
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    messages: MessageSettings = Field(default_factory=MessageSettings)
    compliance: ComplianceSettings = Field(default_factory=ComplianceSettings)

    @property
    def is_production(self) -> bool:
        """Whether the service runs in a production-like environment."""
        return self.environment in PRODUCTION_ENVIRONMENTS

    @property
    def enforce_signatures(self) -> bool:
        """Signatures are always enforced in production."""
        return self.is_production or self.webhooks.validate_signatures


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings object loaded from config files and environment.
    """
    from dynaconf import Dynaconf

    config_dir = Path(os.getenv("CALLBRIDGE_CONFIG_DIR", "configs"))
    env = os.getenv("CALLBRIDGE_ENV", "development")

    settings_files = []
    if (config_dir / "default.yaml").exists():
        settings_files.append(str(config_dir / "default.yaml"))
    if (config_dir / f"{env}.yaml").exists():
        settings_files.append(str(config_dir / f"{env}.yaml"))

    dynaconf = Dynaconf(
        envvar_prefix="CALLBRIDGE",
        settings_files=settings_files,
        environments=False,
        load_dotenv=True,
    )

    config_dict: dict[str, Any] = {}
    for key in dynaconf.keys():
        if not key.startswith("_"):
            config_dict[key.lower()] = dynaconf[key]

    config_dict["environment"] = env

    if not config_dict.get("instance_id"):
        config_dict["instance_id"] = _generate_instance_id()

    return Settings(**config_dict)


def _generate_instance_id() -> str:
    """Generate a process identity used as the bridge claim owner."""
    import socket

    return f"{socket.gethostname()}-{os.getpid()}"


def validate_production_settings(settings: Settings) -> list[str]:
    """Validate settings for production readiness.

    Args:
        settings: Application settings to validate.

    Returns:
        List of validation error messages (empty if all valid).
    """
    errors: list[str] = []

    if not settings.is_production:
        return errors

    if not settings.telnyx.public_key:
        errors.append(
            "CALLBRIDGE_TELNYX__PUBLIC_KEY must be set in production"
        )

    if settings.bridge.enabled and not settings.telnyx.api_key:
        errors.append(
            "CALLBRIDGE_TELNYX__API_KEY must be set when bridging is enabled"
        )

    if "sqlite" in settings.database.url:
        errors.append(
            "CALLBRIDGE_DATABASE__URL should point at a shared database in production; "
            "bridge claims in SQLite are not visible across hosts"
        )

    return errors


def require_valid_settings() -> Settings:
    """Get settings and raise if production validation fails.

    Raises:
        ConfigurationError: If production settings are invalid.

    Returns:
        Validated settings.
    """
    settings = get_settings()
    errors = validate_production_settings(settings)

    if errors:
        error_list = "\n  - ".join(errors)
        raise ConfigurationError(
            f"Production configuration errors:\n  - {error_list}"
        )

    return settings
