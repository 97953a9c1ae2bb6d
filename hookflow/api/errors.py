# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
API Error Handling — Unified error structure.

Domain errors and request validation failures both render as
{"code", "message", "trace_id", "details"}.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from hookflow.core.errors import HookflowError, ValidationError


def _error_response(request: Request, status_code: int, code: str, message: str, details: Dict[str, Any]) -> JSONResponse:
    trace_id = getattr(request.state, "trace_id", None) or str(uuid.uuid4())
    return JSONResponse(
        status_code=status_code,
        content={
            "code": code,
            "message": message,
            "trace_id": trace_id,
            "details": jsonable_encoder(details),
        },
    )


async def hookflow_error_handler(request: Request, exc: HookflowError) -> JSONResponse:
    """Global exception handler for domain errors."""
    return _error_response(request, exc.status_code, exc.code, exc.message, exc.details)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body/query validation failures are 400s, not FastAPI's default 422."""
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return _error_response(
        request,
        ValidationError.status_code,
        ValidationError.code,
        "Request validation failed",
        {"errors": errors},
    )
