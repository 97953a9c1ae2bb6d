# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Webhook Dispatcher — Fans one trigger out to every matching subscriber.

    trigger ─→ run row (committed) ─→ deliveries (concurrent) ─→ executions (one batch) ─→ completed_at

The run row exists before any delivery starts, so a crash mid-fan-out
leaves a run with completed_at NULL rather than no trace at all.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hookflow.core.metrics import service_metrics
from hookflow.protocols.states import DeliveryResult
from hookflow.runtime.webhook import DeliveryOutcome, WebhookCaller, merge_headers
from hookflow.storage.models import RegisteredWebhook, WebhookExecution
from hookflow.storage.repositories import (
    WebhookExecutionRepository,
    WebhookRepository,
    WebhookRunRepository,
)

logger = logging.getLogger("hookflow.dispatcher")


@dataclass(frozen=True)
class TriggerResult:
    success: int
    failure: int
    run_id: uuid.UUID


class WebhookDispatcher:
    """
    Delivers trigger content to subscribers and records the outcome.

    Uses its own sessions: the run row is committed before delivery,
    executions and completion in a second transaction afterwards.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        caller: Optional[WebhookCaller] = None,
    ) -> None:
        self._session_factory = session_factory
        self._caller = caller or WebhookCaller()

    async def trigger(
        self,
        resource_type: str,
        resource_id: str,
        content: Any,
        triggered_by: str,
        headers: Optional[Dict[str, Any]] = None,
        target_webhook_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> TriggerResult:
        """
        Deliver content to every enabled subscriber of the resource.

        Delivery failures are counted, never raised. Only persistence
        errors escape.
        """
        triggered_at = datetime.now(timezone.utc)

        async with self._session_factory() as session:
            webhooks = await WebhookRepository(session).list_enabled_for_resource(
                resource_type, resource_id, webhook_ids=target_webhook_ids,
            )
            run = await WebhookRunRepository(session).create(
                resource_type=resource_type,
                resource_id=resource_id,
                content=content,
                headers=headers,
                triggered_by=triggered_by,
                triggered_at=triggered_at,
            )
            if not webhooks:
                await WebhookRunRepository(session).mark_completed(run.id, triggered_at)
            await session.commit()
            run_id = run.id

        service_metrics.inc("webhook_runs")
        logger.info(
            "Webhook run %s: %s/%s → %d subscriber(s) (by %s)",
            run_id, resource_type, resource_id, len(webhooks), triggered_by,
            extra={"run_id": str(run_id)},
        )
        if not webhooks:
            return TriggerResult(success=0, failure=0, run_id=run_id)

        outcomes: List[DeliveryOutcome] = await asyncio.gather(
            *(self._deliver(webhook, content, headers) for webhook in webhooks)
        )

        executions = [
            self._execution(run_id, webhook, merge_headers(webhook.headers, headers), outcome)
            for webhook, outcome in zip(webhooks, outcomes)
        ]
        async with self._session_factory() as session:
            await WebhookExecutionRepository(session).add_all(executions)
            await WebhookRunRepository(session).mark_completed(run_id, datetime.now(timezone.utc))
            await session.commit()

        success = sum(1 for outcome in outcomes if outcome.success)
        failure = len(outcomes) - success
        service_metrics.inc("webhook_deliveries_success", success)
        service_metrics.inc("webhook_deliveries_failure", failure)
        logger.info(
            "Webhook run %s completed: %d success, %d failure",
            run_id, success, failure,
            extra={"run_id": str(run_id)},
        )
        return TriggerResult(success=success, failure=failure, run_id=run_id)

    async def _deliver(
        self,
        webhook: RegisteredWebhook,
        content: Any,
        override_headers: Optional[Dict[str, Any]],
    ) -> DeliveryOutcome:
        outcome = await self._caller.call(
            webhook.webhook_url,
            content,
            headers=merge_headers(webhook.headers, override_headers),
            request_timeout=webhook.request_timeout,
            connection_timeout=webhook.connection_timeout,
        )
        service_metrics.observe("webhook_delivery_ms", outcome.latency_ms)
        return outcome

    @staticmethod
    def _execution(
        run_id: uuid.UUID,
        webhook: RegisteredWebhook,
        effective_headers: Dict[str, str],
        outcome: DeliveryOutcome,
    ) -> WebhookExecution:
        return WebhookExecution(
            webhook_run_id=run_id,
            webhook_id=webhook.id,
            owner_type=webhook.owner_type,
            owner_id=webhook.owner_id,
            webhook_type=webhook.webhook_type,
            webhook_url=webhook.webhook_url,
            headers=effective_headers,
            result=(DeliveryResult.SUCCESS if outcome.success else DeliveryResult.FAILURE).value,
            status_code=outcome.status_code,
            response=outcome.response,
            started_at=outcome.started_at,
            ended_at=outcome.ended_at,
        )
