# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
HookFlow Application Entry Point.

FastAPI app with lifespan, middleware, error handlers and all API routers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from hookflow.api.errors import hookflow_error_handler, request_validation_handler
from hookflow.api.middleware import TraceMiddleware
from hookflow.api.observability import router as observability_router
from hookflow.api.webhooks import router as webhooks_router
from hookflow.api.workflows import router as workflows_router
from hookflow.core.config import settings
from hookflow.core.context import init_app_context
from hookflow.core.errors import HookflowError
from hookflow.core.logging import setup_logging
from hookflow.storage.database import close_db, create_all_tables, get_session_factory, init_db

# Ensure models are imported so Base.metadata knows about them
import hookflow.storage.models  # noqa: F401

logger = logging.getLogger("hookflow.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup/shutdown of service resources."""
    # Startup
    setup_logging(settings.LOG_LEVEL)
    await init_db()
    if settings.AUTO_CREATE_TABLES:
        await create_all_tables()
    ctx = init_app_context(get_session_factory())
    if settings.SCHEDULER_ENABLED:
        await ctx.scheduler.start()
    logger.info("[HookFlow] Service ready (env=%s)", settings.HOOKFLOW_ENV)
    yield
    # Shutdown
    await ctx.scheduler.stop()
    await close_db()
    logger.info("[HookFlow] Shutdown complete")


app = FastAPI(
    title="HookFlow",
    description="Approval workflows and webhook delivery",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(TraceMiddleware)

# ── Error Handlers ──────────────────────────────────────────
app.add_exception_handler(HookflowError, hookflow_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)

# ── Routes ──────────────────────────────────────────────────
app.include_router(workflows_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")
app.include_router(observability_router)
