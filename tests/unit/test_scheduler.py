# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.
"""Unit tests for ScheduleEngine."""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from hookflow.core.metrics import service_metrics
from hookflow.kernel.scheduler import ScheduleEngine
from hookflow.runtime.dispatcher import TriggerResult, WebhookDispatcher
from hookflow.storage.repositories import (
    ScheduleRepository,
    WebhookRepository,
    WebhookRunRepository,
)

HOOK_BASE = "http://hooks.test"
UTC = timezone.utc
NOW = datetime(2026, 3, 1, 12, 0, 30, tzinfo=UTC)


async def register(session_factory, path="/ok", enabled=True):
    async with session_factory() as session:
        webhook = await WebhookRepository(session).create(
            resource_type="invoice",
            resource_id="inv-1",
            owner_type="organization",
            owner_id="org-1",
            webhook_type="http",
            webhook_url=f"{HOOK_BASE}{path}",
            headers={"X-Token": "stored"},
            connection_timeout=2,
            request_timeout=5,
            enabled=enabled,
        )
        await session.commit()
        return webhook


async def add_schedule(session_factory, webhook_id, **overrides):
    fields = dict(
        webhook_id=webhook_id,
        frequency="* * * * *",
        content={"kind": "tick"},
        enabled=True,
        end_at=None,
        triggered_by=None,
        next_run_at=NOW - timedelta(seconds=30),
        last_run_at=None,
    )
    fields.update(overrides)
    async with session_factory() as session:
        schedule = await ScheduleRepository(session).create(**fields)
        await session.commit()
        return schedule


async def reload(session_factory, schedule_id):
    async with session_factory() as session:
        return await ScheduleRepository(session).get(schedule_id)


@pytest.fixture
def engine(session_factory, caller):
    return ScheduleEngine(session_factory, WebhookDispatcher(session_factory, caller), interval=0.05)


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_due_schedule_fires_and_advances(self, engine, session_factory, delivered):
        webhook = await register(session_factory)
        schedule = await add_schedule(session_factory, webhook.id)

        fired = await engine.run_once(NOW)

        assert fired == [schedule.id]
        assert len(delivered) == 1
        assert delivered[0].headers["X-Token"] == "stored"

        schedule = await reload(session_factory, schedule.id)
        assert schedule.last_run_at == NOW
        assert schedule.next_run_at == datetime(2026, 3, 1, 12, 1, tzinfo=UTC)
        assert service_metrics.get_counter("schedules_fired") == 1

    @pytest.mark.asyncio
    async def test_default_actor_is_schedule_id(self, engine, session_factory):
        webhook = await register(session_factory)
        schedule = await add_schedule(session_factory, webhook.id)
        await engine.run_once(NOW)

        async with session_factory() as session:
            rows, total = await WebhookRunRepository(session).search_with_counts()
        assert total == 1
        assert rows[0]["run"].triggered_by == f"schedule_{schedule.id}"
        assert rows[0]["run"].headers is None
        assert rows[0]["success_count"] == 1

    @pytest.mark.asyncio
    async def test_triggered_by_override(self, engine, session_factory):
        webhook = await register(session_factory)
        await add_schedule(session_factory, webhook.id, triggered_by="billing-bot")
        await engine.run_once(NOW)

        async with session_factory() as session:
            rows, _ = await WebhookRunRepository(session).search_with_counts()
        assert rows[0]["run"].triggered_by == "billing-bot"

    @pytest.mark.asyncio
    async def test_not_yet_due_is_skipped(self, engine, session_factory, delivered):
        webhook = await register(session_factory)
        await add_schedule(session_factory, webhook.id, next_run_at=NOW + timedelta(minutes=5))
        assert await engine.run_once(NOW) == []
        assert delivered == []

    @pytest.mark.asyncio
    async def test_disabled_schedule_is_skipped(self, engine, session_factory, delivered):
        webhook = await register(session_factory)
        await add_schedule(session_factory, webhook.id, enabled=False)
        assert await engine.run_once(NOW) == []
        assert delivered == []

    @pytest.mark.asyncio
    async def test_disabled_webhook_is_skipped(self, engine, session_factory, delivered):
        webhook = await register(session_factory, enabled=False)
        schedule = await add_schedule(session_factory, webhook.id)
        assert await engine.run_once(NOW) == []
        assert delivered == []
        assert (await reload(session_factory, schedule.id)).last_run_at is None

    @pytest.mark.asyncio
    async def test_ended_schedule_expires_and_leaves_scan(self, engine, session_factory, delivered):
        webhook = await register(session_factory)
        schedule = await add_schedule(session_factory, webhook.id, end_at=NOW - timedelta(seconds=1))

        assert await engine.run_once(NOW) == []
        assert delivered == []
        assert (await reload(session_factory, schedule.id)).expired_at == NOW

        async with session_factory() as session:
            assert await ScheduleRepository(session).list_active() == []

    @pytest.mark.asyncio
    async def test_failed_delivery_still_advances(self, engine, session_factory):
        webhook = await register(session_factory, path="/fail")
        schedule = await add_schedule(session_factory, webhook.id)

        assert await engine.run_once(NOW) == [schedule.id]
        assert (await reload(session_factory, schedule.id)).last_run_at == NOW

    @pytest.mark.asyncio
    async def test_one_failing_schedule_does_not_stop_others(self, session_factory):
        dispatcher = AsyncMock(spec=WebhookDispatcher)
        good_result = TriggerResult(success=1, failure=0, run_id=None)
        dispatcher.trigger.side_effect = [RuntimeError("db down"), good_result]
        engine = ScheduleEngine(session_factory, dispatcher)

        webhook = await register(session_factory)
        first = await add_schedule(session_factory, webhook.id, next_run_at=NOW - timedelta(minutes=2))
        second = await add_schedule(session_factory, webhook.id, next_run_at=NOW - timedelta(minutes=1))

        fired = await engine.run_once(NOW)

        assert len(fired) == 1
        assert dispatcher.trigger.await_count == 2
        assert service_metrics.get_counter("schedule_errors") == 1
        last_runs = {
            s.id: (await reload(session_factory, s.id)).last_run_at for s in (first, second)
        }
        assert sorted(v is None for v in last_runs.values()) == [False, True]

    @pytest.mark.asyncio
    async def test_due_schedules_fire_concurrently(self, session_factory):
        async def slow_trigger(*args, **kwargs):
            await asyncio.sleep(0.4)
            return TriggerResult(success=1, failure=0, run_id=None)

        dispatcher = AsyncMock(spec=WebhookDispatcher)
        dispatcher.trigger.side_effect = slow_trigger
        engine = ScheduleEngine(session_factory, dispatcher)

        webhook = await register(session_factory)
        first = await add_schedule(session_factory, webhook.id)
        second = await add_schedule(session_factory, webhook.id)

        started = time.monotonic()
        fired = await engine.run_once(NOW)
        elapsed = time.monotonic() - started

        assert sorted(fired, key=str) == sorted([first.id, second.id], key=str)
        assert elapsed < 0.75


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_is_idempotent_and_stop_cancels(self, engine):
        await engine.start()
        task = engine._task
        await engine.start()
        assert engine._task is task
        assert engine.running is True

        await asyncio.sleep(0.12)
        await engine.stop()
        assert engine.running is False
        assert engine._task is None
        assert task.cancelled() or task.done()
        assert engine.scans >= 1
        assert service_metrics.get_gauge("scheduler_running") == 0

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, engine):
        await engine.stop()
        await engine.stop()
        assert engine.running is False

    @pytest.mark.asyncio
    async def test_loop_fires_due_schedules(self, engine, session_factory, delivered):
        webhook = await register(session_factory)
        await add_schedule(session_factory, webhook.id, next_run_at=datetime.now(UTC) - timedelta(seconds=1))

        await engine.start()
        await asyncio.sleep(0.15)
        await engine.stop()

        assert len(delivered) >= 1
