# backend/app/middleware/structured_logging.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import settings

log = logging.getLogger("appraisalhub.request")


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Emits one access log line per request:
      request_id, method, path, status_code, latency_ms, user hint.

    The user hint comes from the dev auth headers only; bearer tokens are
    resolved inside handlers and never decoded here.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        t0 = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            latency_ms = int((time.perf_counter() - t0) * 1000)
            request_id: Optional[str] = getattr(request.state, "request_id", None)

            log.info(
                "http_request %s %s -> %s (%sms)",
                request.method,
                request.url.path,
                status_code,
                latency_ms,
                extra={
                    "event": "http_request",
                    "http_request_id": request_id,
                    "status_code": status_code,
                    "latency_ms": latency_ms,
                    "role": request.headers.get(settings.dev_header_user_role),
                },
            )
