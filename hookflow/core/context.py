# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
App Context — Singleton that holds the long-lived service components.

Initialized at startup, injected into API routes via FastAPI Depends.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookflow.core.config import settings
from hookflow.kernel.scheduler import ScheduleEngine
from hookflow.runtime.dispatcher import WebhookDispatcher
from hookflow.runtime.webhook import WebhookCaller


class AppContext:
    """
    Holds the dispatcher and schedule engine.
    Created once at startup, used by all API handlers.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        caller: Optional[WebhookCaller] = None,
        schedule_interval: Optional[float] = None,
    ) -> None:
        self.session_factory = session_factory
        self.dispatcher = WebhookDispatcher(session_factory, caller)
        self.scheduler = ScheduleEngine(
            session_factory,
            self.dispatcher,
            interval=schedule_interval or settings.SCHEDULE_INTERVAL,
        )


_ctx: Optional[AppContext] = None


def init_app_context(
    session_factory: async_sessionmaker[AsyncSession],
    caller: Optional[WebhookCaller] = None,
    schedule_interval: Optional[float] = None,
) -> AppContext:
    global _ctx
    _ctx = AppContext(session_factory, caller, schedule_interval)
    return _ctx


def get_app_context() -> AppContext:
    if _ctx is None:
        raise RuntimeError("AppContext not initialized")
    return _ctx


def reset_app_context() -> None:
    global _ctx
    _ctx = None
