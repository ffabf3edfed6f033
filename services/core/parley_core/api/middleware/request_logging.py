"""Request logging middleware.

Assigns every request an id, logs its outcome with the request context and
turns unexpected exceptions into a plain 500 response.
"""

import time
import uuid

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from parley_core.observability.logging import RequestContext, get_logger

logger = get_logger(__name__)


REQUEST_ID_HEADER = "X-Request-ID"

# Paths that are not logged
QUIET_PATHS = {"/healthz"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that logs requests and catches unhandled errors."""

    async def dispatch(self, request: Request, call_next):
        """Process the request."""
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        context = RequestContext(
            request_id=request_id,
            customer_id=request.headers.get("x-auth-id"),
            path=request.url.path,
            method=request.method,
        )
        request.state.log_context = context

        started = time.monotonic()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Unhandled error",
                context=context,
                exc_info=True,
                error=str(e),
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"detail": "Internal server error"},
                headers={REQUEST_ID_HEADER: request_id},
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        if request.url.path not in QUIET_PATHS:
            logger.info(
                "Request handled",
                context=context,
                status_code=response.status_code,
                duration_ms=round((time.monotonic() - started) * 1000, 1),
            )
        return response
