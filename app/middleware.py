"""FastAPI middleware for request tracking, upload limits and unhandled errors."""

import logging
import time
import uuid
from typing import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.utils.error_utils import get_safe_error_detail

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID to each request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Add request ID to request and response headers."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        request.state.request_id = request_id

        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(process_time)

        return response


class UploadSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject request bodies larger than the limit before any handler runs.

    Only the declared Content-Length is checked here; chunked uploads are
    bounded while they are written to disk.
    """

    def __init__(self, app: ASGIApp, max_body_bytes: int):
        super().__init__(app)
        self.max_body_bytes = max_body_bytes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        if request.method == "POST" and content_length and content_length.isdigit():
            if int(content_length) > self.max_body_bytes:
                limit_mb = self.max_body_bytes / (1024 * 1024)
                logger.warning(
                    f"Rejected {request.url.path}: body of {content_length} bytes "
                    f"exceeds {limit_mb:.0f} MB"
                )
                return JSONResponse(
                    status_code=status.HTTP_413_CONTENT_TOO_LARGE,
                    content={
                        "error": "File too large",
                        "details": f"Upload exceeds maximum allowed size ({limit_mb:.0f} MB)",
                    },
                )
        return await call_next(request)


def unexpected_error_response(
    request: Request, exc: Exception, is_production: bool
) -> JSONResponse:
    """Log an unhandled exception and turn it into the generic 500 body."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(
        f"Unexpected error [{request_id}]: {str(exc)}",
        exc_info=exc,
        extra={"request_id": request_id},
    )
    body = {"error": "OCR processing failed"}
    details = get_safe_error_detail(exc, is_production)
    if details:
        body["details"] = details
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body
    )


class UnhandledErrorMiddleware(BaseHTTPMiddleware):
    """Convert exceptions no handler claimed into the JSON 500 response.

    Starlette runs the catch-all ``Exception`` handler outside every user
    middleware; catching here keeps CORS and request id headers on the reply.
    """

    def __init__(self, app: ASGIApp, is_production: bool = False):
        super().__init__(app)
        self.is_production = is_production

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            return unexpected_error_response(request, exc, self.is_production)
