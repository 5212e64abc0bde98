from __future__ import annotations

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.context import request_id_var


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Accepts an inbound X-Request-Id (or generates a UUIDv4), exposes it on
    request.state and the logging contextvar, and echoes it on the response.
    """

    header_name = "X-Request-Id"

    async def dispatch(self, request: Request, call_next):
        inbound = (request.headers.get("x-request-id") or "").strip()
        request_id = inbound[:128] or str(uuid.uuid4())

        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
            response.headers[self.header_name] = request_id
            return response
        finally:
            request_id_var.reset(token)
