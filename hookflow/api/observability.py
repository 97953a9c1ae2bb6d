# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Observability API — Metrics and health check.
"""

from __future__ import annotations

from fastapi import APIRouter

from hookflow.core.context import get_app_context
from hookflow.core.metrics import service_metrics
from hookflow.storage.database import ping_db

router = APIRouter(tags=["observability"])


@router.get("/health")
async def health_check():
    """Health check with component status."""
    db_ok = await ping_db()
    return {
        "status": "ok" if db_ok else "degraded",
        "version": "0.1.0",
        "database": "connected" if db_ok else "unreachable",
        "scheduler": "running" if get_app_context().scheduler.running else "stopped",
        "metrics": service_metrics.snapshot(),
    }


@router.get("/api/metrics")
async def get_metrics():
    """Return current service metrics."""
    return service_metrics.snapshot()
