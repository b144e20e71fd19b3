from __future__ import annotations

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Log unhandled exceptions and answer with a JSON 500."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        try:
            return await call_next(request)
        except Exception:
            logger.exception(
                "Unhandled error while serving request",
                extra={"method": request.method, "path": request.url.path},
            )
            return JSONResponse({"detail": "Internal server error"}, status_code=500)
