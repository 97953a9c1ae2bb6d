# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
API Middleware — Trace ID propagation and request logging.
"""

from __future__ import annotations

import uuid
import time
import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("hookflow.api")

TRACE_HEADER = "X-Trace-Id"


class TraceMiddleware(BaseHTTPMiddleware):
    """
    Generates or propagates X-Trace-Id for every request and echoes it
    on the response. Also logs request duration.
    """

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get(TRACE_HEADER) or str(uuid.uuid4())
        request.state.trace_id = trace_id

        start = time.time()
        response: Response = await call_next(request)
        elapsed = (time.time() - start) * 1000

        response.headers[TRACE_HEADER] = trace_id
        logger.info(
            "%s %s → %d (%.0fms)",
            request.method, request.url.path, response.status_code, elapsed,
            extra={"trace_id": trace_id},
        )
        return response
