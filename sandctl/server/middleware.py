"""
Request tracking middleware.

Provides:
- Request ID generation and propagation
- Request timing and access logging
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Awaitable, Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_var.get()


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return f"req-{uuid.uuid4().hex[:16]}"


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """
    Attaches a request ID to every request and logs its outcome.

    Honors an incoming X-Request-ID header, otherwise generates one, and
    echoes it back on the response.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        token = request_id_var.set(request_id)
        request.state.request_id = request_id
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "%s %s failed [%s]", request.method, request.url.path, request_id
            )
            raise
        finally:
            request_id_var.reset(token)

        elapsed_ms = (time.time() - start_time) * 1000
        # Health checks are polled constantly; keep them out of the log.
        if not request.url.path.startswith("/health"):
            logger.info(
                "%s %s -> %d (%.1fms) [%s]",
                request.method,
                request.url.path,
                response.status_code,
                elapsed_ms,
                request_id,
            )
        response.headers["X-Request-ID"] = request_id
        return response
