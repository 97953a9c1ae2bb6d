# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
ScheduleEngine — Periodic scan that fires due schedules.

Every `interval` seconds the engine loads active schedules, fires the due
ones through the WebhookDispatcher and advances their next_run_at. A
failing schedule is logged and skipped; the loop keeps running.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookflow.core.metrics import service_metrics
from hookflow.kernel.cron import next_run_at
from hookflow.protocols.states import SCHEDULE_ACTOR_PREFIX
from hookflow.runtime.dispatcher import WebhookDispatcher
from hookflow.storage.models import Schedule
from hookflow.storage.repositories import ScheduleRepository, WebhookRepository

logger = logging.getLogger("hookflow.scheduler")


def schedule_actor(schedule: Schedule) -> str:
    return schedule.triggered_by or f"{SCHEDULE_ACTOR_PREFIX}{schedule.id}"


class ScheduleEngine:
    """
    Owns one background task; start() and stop() are idempotent.

    run_once(now) performs a single scan and can be driven directly.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: WebhookDispatcher,
        interval: float = 60.0,
    ) -> None:
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._interval = interval
        self._running: bool = False
        self._task: Optional[asyncio.Task] = None
        self._scans: int = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def scans(self) -> int:
        return self._scans

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        service_metrics.set_gauge("scheduler_running", 1)
        logger.info("ScheduleEngine started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        if not self._running and self._task is None:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        service_metrics.set_gauge("scheduler_running", 0)
        logger.info("ScheduleEngine stopped after %d scan(s)", self._scans)

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as exc:
                logger.error("Schedule scan failed: %s", exc, exc_info=True)
            await asyncio.sleep(self._interval)

    # ── Scan ────────────────────────────────────────────────────

    async def run_once(self, now: Optional[datetime] = None) -> List[uuid.UUID]:
        """
        Scan once at `now` and return the ids of schedules that fired.

        Schedules run concurrently; one failure does not stop the others.
        """
        now = now or datetime.now(timezone.utc)
        self._scans += 1

        async with self._session_factory() as session:
            schedules = await ScheduleRepository(session).list_active()

        due = [s for s in schedules if s.next_run_at <= now]
        if not due:
            return []

        results = await asyncio.gather(*(self._run_schedule(s, now) for s in due))
        fired = [s.id for s, ok in zip(due, results) if ok]
        logger.info("Schedule scan: %d due, %d fired", len(due), len(fired))
        return fired

    async def _run_schedule(self, schedule: Schedule, now: datetime) -> bool:
        log_extra = {"schedule_id": str(schedule.id)}
        try:
            if schedule.end_at is not None and schedule.end_at <= now:
                async with self._session_factory() as session:
                    await ScheduleRepository(session).mark_expired(schedule.id, now)
                    await session.commit()
                logger.info("Schedule %s expired (end_at=%s)", schedule.id, schedule.end_at, extra=log_extra)
                return False

            async with self._session_factory() as session:
                webhook = await WebhookRepository(session).get(schedule.webhook_id)
            if webhook is None or not webhook.enabled:
                logger.warning(
                    "Schedule %s skipped: webhook %s missing or disabled",
                    schedule.id, schedule.webhook_id, extra=log_extra,
                )
                return False

            result = await self._dispatcher.trigger(
                webhook.resource_type,
                webhook.resource_id,
                schedule.content,
                triggered_by=schedule_actor(schedule),
                headers=None,
                target_webhook_ids=[webhook.id],
            )

            async with self._session_factory() as session:
                await ScheduleRepository(session).record_run(
                    schedule.id, last_run_at=now, next_run_at=next_run_at(schedule.frequency, now),
                )
                await session.commit()

            service_metrics.inc("schedules_fired")
            logger.info(
                "Schedule %s fired: run %s (%d success, %d failure)",
                schedule.id, result.run_id, result.success, result.failure, extra=log_extra,
            )
            return True
        except Exception as exc:
            service_metrics.inc("schedule_errors")
            logger.error("Schedule %s failed: %s", schedule.id, exc, exc_info=True, extra=log_extra)
            return False
