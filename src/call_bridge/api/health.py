"""Health check endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import text

from call_bridge import __version__
from call_bridge.api.rate_limits import limiter, RateLimits
from call_bridge.config import get_settings
from call_bridge.dependencies import get_bridge_dispatcher, get_session_scope


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    instance_id: str
    environment: str
    checks: dict[str, Any]


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    status: str
    checks: dict[str, str]


@router.get("/health")
@limiter.limit(RateLimits.HEALTH)
async def health_check(request: Request) -> HealthResponse:
    """Perform health check.

    Components checked:
    - API: Always ok if reachable
    - Database: Connectivity test via SELECT 1
    - Bridging: Call-control configuration and in-flight bridges
    - Webhooks: Whether signatures are enforced
    """
    settings = get_settings()

    checks: dict[str, Any] = {
        "api": "ok",
        "database": await _check_database(),
        "bridging": _check_bridging(),
        "webhooks": "enforced" if settings.enforce_signatures else "bypassed",
    }

    return HealthResponse(
        status=_determine_overall_status(checks),
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        instance_id=settings.instance_id,
        environment=settings.environment,
        checks=checks,
    )


@router.get("/ready")
@limiter.limit(RateLimits.HEALTH)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Check if the service is ready to accept webhooks.

    Ready means the database answers. Bridging being unavailable does
    not block readiness: call records are still reconciled.
    """
    db_status = await _check_database()
    checks = {
        "database": db_status if isinstance(db_status, str) else db_status.get("status", "error"),
    }
    bridging = _check_bridging()
    checks["bridging"] = bridging if isinstance(bridging, str) else bridging.get("status", "error")

    if checks["database"] == "ok":
        return ReadinessResponse(status="ready", checks=checks)
    return ReadinessResponse(status="not_ready", checks=checks)


@router.get("/live")
@limiter.limit(RateLimits.HEALTH)
async def liveness_check(request: Request) -> dict[str, str]:
    """Check if the service is alive."""
    return {"status": "alive"}


async def _check_database() -> str | dict[str, Any]:
    """Check database connectivity with SELECT 1."""
    try:
        async with get_session_scope()() as db:
            result = await db.execute(text("SELECT 1"))
            result.fetchone()
        return "ok"
    except Exception as e:
        return {
            "status": "error",
            "message": str(e),
        }


def _check_bridging() -> str | dict[str, Any]:
    """Check whether inbound calls can be bridged.

    Returns:
        "disabled" - Bridging switched off
        "not_configured" - No call-control API key
        dict with active bridge count otherwise
    """
    settings = get_settings()

    if not settings.bridge.enabled:
        return "disabled"

    dispatcher = get_bridge_dispatcher()
    if dispatcher is None:
        return "not_configured"

    return {
        "status": "ok",
        "active_bridges": dispatcher.active_count,
        "sip_domain": settings.agent_platform.sip_domain,
    }


def _determine_overall_status(checks: dict[str, Any]) -> str:
    """Healthy only if the database is reachable; degraded without bridging."""
    if checks.get("database") != "ok":
        return "unhealthy"

    bridging = checks.get("bridging")
    if isinstance(bridging, dict) and bridging.get("status") == "ok":
        return "healthy"
    return "degraded"
