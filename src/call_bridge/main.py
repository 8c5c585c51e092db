"""FastAPI application for the Telnyx call bridge.

Serves the voice webhook and the health probes. The lifespan owns the
database engine and the detached bridge and compliance workers.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from call_bridge import __version__
from call_bridge.api import health, voice_webhooks
from call_bridge.api.rate_limits import limiter
from call_bridge.config import get_settings, require_valid_settings, validate_production_settings
from call_bridge.core.exceptions import CallBridgeError
from call_bridge.core.logging import get_logger, setup_logging
from call_bridge.db import close_db, init_db
from call_bridge.dependencies import cleanup_dependencies, get_bridge_dispatcher


log = get_logger(__name__)

API_PREFIX = "/api/v1"


def error_name(status_code: int) -> str:
    """``401`` -> ``"unauthorized"``, ``400`` -> ``"bad_request"``."""
    try:
        return HTTPStatus(status_code).phrase.lower().replace(" ", "_").replace("-", "_")
    except ValueError:
        return "error"


def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "status_code": status_code},
    )


# ============================================================================
# Exception Handlers
# ============================================================================


def handle_rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    log.warning("Rate limit exceeded", path=request.url.path, limit=str(exc.detail))
    return error_response(429, "rate_limit_exceeded", f"Rate limit exceeded: {exc.detail}")


def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, error_name(exc.status_code), str(exc.detail))


def handle_call_bridge_error(request: Request, exc: CallBridgeError) -> JSONResponse:
    log.warning(
        "Request failed",
        error=exc.message,
        error_code=exc.error_code,
        path=request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled exception", path=request.url.path, method=request.method)
    message = str(exc) if get_settings().debug else "An internal error occurred"
    return error_response(500, "internal_error", message)


# ============================================================================
# Application
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    settings = get_settings()
    setup_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        instance_id=settings.instance_id,
    )
    log.info(
        "Call bridge starting",
        version=__version__,
        environment=settings.environment,
        instance_id=settings.instance_id,
    )

    if settings.is_production:
        require_valid_settings()
    else:
        for problem in validate_production_settings(settings):
            log.warning("Would not start in production", problem=problem)

    await init_db()

    if get_bridge_dispatcher() is None:
        log.warning("Inbound calls will be recorded but not bridged")

    try:
        yield
    finally:
        log.info("Call bridge stopping, draining background work")
        await cleanup_dependencies()
        await close_db()


def create_app() -> FastAPI:
    """Build the application with its routers and error handlers."""
    settings = get_settings()

    app = FastAPI(
        title="Call Bridge",
        description="Bridges inbound Telnyx calls to voice-AI agents and keeps call records",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
    )
    app.state.limiter = limiter

    app.add_exception_handler(RateLimitExceeded, handle_rate_limited)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(CallBridgeError, handle_call_bridge_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(health.router, prefix=API_PREFIX, tags=["Health"])
    app.include_router(voice_webhooks.router, prefix=API_PREFIX, tags=["Webhooks"])

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "call_bridge.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
