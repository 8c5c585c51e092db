"""Dependency Injection for Call Bridge.

Provides singletons for the webhook path and their lifecycle management.

Thread Safety:
    All singleton factories use threading.Lock() to prevent race conditions
    during concurrent initialization.

Testing:
    Tests replace collaborators by assigning the module globals
    (``_session_scope``, ``_security_manager``, ``_bridge_dispatcher`` ...)
    after calling ``reset_dependencies()``.
"""

from __future__ import annotations

import threading

from call_bridge.config import get_settings
from call_bridge.core.logging import get_logger
from call_bridge.db.session import SessionScope, get_db_context


log = get_logger(__name__)


# =============================================================================
# Thread-Safe Singleton Locks
# =============================================================================

_security_lock = threading.Lock()
_call_control_lock = threading.Lock()
_bridge_lock = threading.Lock()
_compliance_lock = threading.Lock()


# =============================================================================
# Database
# =============================================================================


_session_scope: SessionScope | None = None


def get_session_scope() -> SessionScope:
    """Session context factory used by the webhook path and background work."""
    return _session_scope or get_db_context


# =============================================================================
# Webhook Security
# =============================================================================


_security_manager = None


def get_webhook_security():
    """Get webhook security manager.

    Thread-safe via double-checked locking pattern.

    Returns:
        WebhookSecurityManager instance
    """
    global _security_manager

    if _security_manager is None:
        with _security_lock:
            if _security_manager is None:
                from call_bridge.api.webhook_security import (
                    WebhookSecurityConfig,
                    WebhookSecurityManager,
                )

                settings = get_settings()
                config = WebhookSecurityConfig.from_settings(settings)
                if not config.validate_signatures:
                    log.warning(
                        "Webhook signature verification disabled",
                        environment=settings.environment,
                    )
                _security_manager = WebhookSecurityManager(config)

    return _security_manager


# =============================================================================
# Call Control and Bridging
# =============================================================================


_call_control = None
_bridge_dispatcher = None
_bridge_initialized = False


def get_call_control():
    """Get call-control client singleton.

    Returns:
        TelnyxCallControl instance or None if no API key is configured
    """
    global _call_control

    if _call_control is None:
        with _call_control_lock:
            if _call_control is None:
                settings = get_settings()
                if settings.telnyx.api_key:
                    from call_bridge.telephony.call_control import TelnyxCallControl

                    _call_control = TelnyxCallControl(
                        settings.telnyx.api_key,
                        base_url=settings.telnyx.api_base_url,
                        timeout=settings.telnyx.request_timeout_seconds,
                    )

    return _call_control


def get_bridge_dispatcher():
    """Get bridge dispatcher singleton.

    Returns:
        BridgeDispatcher instance, or None if bridging is disabled or the
        call-control API is not configured
    """
    global _bridge_dispatcher, _bridge_initialized

    if not _bridge_initialized:
        with _bridge_lock:
            if not _bridge_initialized:
                _bridge_dispatcher = _build_bridge_dispatcher()
                _bridge_initialized = True

    return _bridge_dispatcher


def _build_bridge_dispatcher():
    from call_bridge.services.bridge import BridgeDispatcher, BridgeOrchestrator
    from call_bridge.services.dedupe import BridgeClaimGuard

    settings = get_settings()
    if not settings.bridge.enabled:
        log.info("Call bridging disabled by configuration")
        return None

    call_control = get_call_control()
    if call_control is None:
        log.warning("Telnyx API key not configured, calls will not be bridged")
        return None

    session_scope = get_session_scope()
    guard = BridgeClaimGuard(
        session_scope,
        owner=settings.instance_id,
        ttl_seconds=settings.bridge.claim_ttl_seconds,
    )
    orchestrator = BridgeOrchestrator.from_settings(settings, call_control, guard, session_scope)
    return BridgeDispatcher(orchestrator, max_concurrency=settings.bridge.max_concurrent_bridges)


# =============================================================================
# Compliance
# =============================================================================


_compliance_logger = None


def get_compliance_logger():
    """Get compliance logger singleton.

    Returns:
        ComplianceLogger instance
    """
    global _compliance_logger

    if _compliance_logger is None:
        with _compliance_lock:
            if _compliance_logger is None:
                from call_bridge.services.compliance import ComplianceLogger

                settings = get_settings()
                _compliance_logger = ComplianceLogger(
                    get_session_scope(),
                    enabled=settings.compliance.enabled,
                    max_body_bytes=settings.compliance.max_body_bytes,
                )

    return _compliance_logger


# =============================================================================
# Lifecycle
# =============================================================================


async def cleanup_dependencies() -> None:
    """Drain background work and close clients.

    Call during application shutdown.
    """
    global _call_control, _bridge_dispatcher, _bridge_initialized
    global _compliance_logger, _security_manager

    if _bridge_dispatcher is not None:
        try:
            await _bridge_dispatcher.drain()
        except Exception as e:
            log.warning("Error draining bridge tasks during cleanup", error=str(e))

    if _compliance_logger is not None:
        try:
            await _compliance_logger.drain()
        except Exception as e:
            log.warning("Error draining compliance writes during cleanup", error=str(e))

    if _call_control is not None:
        try:
            await _call_control.close()
        except Exception as e:
            log.warning("Error closing call-control client during cleanup", error=str(e))

    reset_dependencies()


def reset_dependencies() -> None:
    """Reset all cached dependencies (for testing).

    Does not clean up resources, just clears references.
    """
    global _call_control, _bridge_dispatcher, _bridge_initialized
    global _compliance_logger, _security_manager, _session_scope

    _call_control = None
    _bridge_dispatcher = None
    _bridge_initialized = False
    _compliance_logger = None
    _security_manager = None
    _session_scope = None
