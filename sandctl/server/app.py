"""
FastAPI application factory.

Usage:
    from sandctl.server.app import create_app

    app = create_app()

Or run directly:
    uvicorn sandctl.server:create_app --factory --reload
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sandctl import __version__
from sandctl.config import Settings, get_settings
from sandctl.exceptions import SandctlError
from sandctl.lifecycle import LifecycleMonitor
from sandctl.providers.registry import ProviderResolver
from sandctl.server.exceptions import APIError, status_for
from sandctl.server.middleware import RequestTrackingMiddleware
from sandctl.server.routers import health, sessions
from sandctl.server.schemas import ErrorDetail, ErrorResponse
from sandctl.service import build_services
from sandctl.store import SessionStore

logger = logging.getLogger(__name__)


def _error_response(request: Request, status_code: int, detail: ErrorDetail) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None) or "unknown"
    detail.request_id = detail.request_id or request_id
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(),
        headers={"X-Request-ID": request_id},
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[SessionStore] = None,
    resolver: Optional[ProviderResolver] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Configuration (defaults to environment settings)
        store: Session store (defaults to settings.sessions_path)
        resolver: Provider resolver (defaults to one built from settings)

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()
    services = build_services(settings, store=store, resolver=resolver)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        monitor: Optional[LifecycleMonitor] = None
        if settings.sync_interval > 0:
            monitor = LifecycleMonitor(
                services.store,
                services.teardown,
                services.resolver,
                interval=settings.sync_interval,
            )
            monitor.start()

        yield

        # Abort in-flight provisioning waits.
        app.state.cancel.set()
        if monitor is not None:
            monitor.stop()
        services.close()

    app = FastAPI(
        title="sandctl API",
        description="HTTP API for sandbox VM sessions",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.cancel = threading.Event()

    app.add_middleware(RequestTrackingMiddleware)

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        """Handle custom API errors."""
        return _error_response(
            request,
            exc.status_code,
            ErrorDetail(code=exc.code, message=exc.message, request_id=exc.request_id),
        )

    @app.exception_handler(SandctlError)
    async def sandctl_error_handler(request: Request, exc: SandctlError) -> JSONResponse:
        """Map sandctl error kinds to HTTP status codes."""
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error("%s %s: %s", request.method, request.url.path, exc)
        return _error_response(
            request,
            status_code,
            ErrorDetail(
                code=exc.code,
                kind=exc.kind.value,
                message=exc.message,
                details=exc.details,
            ),
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected errors."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(
            request,
            500,
            ErrorDetail(code="internal_error", message="An internal error occurred"),
        )

    app.include_router(health.router)
    app.include_router(sessions.router)

    return app
