# backend/app/middleware/request_id.py
from __future__ import annotations

import uuid
from contextvars import ContextVar
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

HEADER_IN = ("X-Request-ID", "X-Request-Id", "X-Correlation-ID")
HEADER_OUT = "X-Request-ID"


def get_request_id() -> str | None:
    return request_id_ctx.get()


def _incoming_id(request: Request) -> str | None:
    for name in HEADER_IN:
        v = (request.headers.get(name) or "").strip()
        if v:
            return v[:128]
    return None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Per-request correlation id.

    The id is kept in a ContextVar (for the JSON log formatter) and on
    request.state (for the access-log middleware), and echoed back in
    the X-Request-ID response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = _incoming_id(request) or uuid.uuid4().hex
        request.state.request_id = rid

        token = request_id_ctx.set(rid)
        try:
            resp = await call_next(request)
            resp.headers[HEADER_OUT] = rid
            return resp
        finally:
            request_id_ctx.reset(token)
