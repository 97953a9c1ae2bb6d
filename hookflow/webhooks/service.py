# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Webhook Service — Subscriptions, schedules and delivery history.

Subscriptions and schedules are scoped to the caller's owner identity;
looking up someone else's webhook is indistinguishable from a missing one.
Delivery itself lives in WebhookDispatcher.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from hookflow.core.errors import AuthorizationError, NotFoundError, ValidationError
from hookflow.core.owner import OwnerContext
from hookflow.kernel.cron import next_run_at, validate_frequency
from hookflow.protocols.states import SUPPORTED_WEBHOOK_TYPES
from hookflow.storage.models import RegisteredWebhook, Schedule, WebhookExecution
from hookflow.storage.repositories import (
    ScheduleRepository,
    WebhookExecutionRepository,
    WebhookRepository,
    WebhookRunRepository,
)

logger = logging.getLogger("hookflow.webhooks")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class WebhookService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.webhooks = WebhookRepository(db)
        self.runs = WebhookRunRepository(db)
        self.executions = WebhookExecutionRepository(db)
        self.schedules = ScheduleRepository(db)

    # ── Subscriptions ───────────────────────────────────────────

    @staticmethod
    def _check_type(webhook_type: str) -> None:
        if webhook_type not in SUPPORTED_WEBHOOK_TYPES:
            raise ValidationError(
                f"Unsupported webhook type '{webhook_type}'",
                details={"supported": sorted(SUPPORTED_WEBHOOK_TYPES)},
            )

    async def _ensure_unique(self, fields: Dict[str, Any], exclude_id: Optional[uuid.UUID] = None) -> None:
        duplicate = await self.webhooks.find_duplicate(
            fields["resource_type"],
            fields["resource_id"],
            fields["owner_type"],
            fields["owner_id"],
            fields["webhook_url"],
            exclude_id=exclude_id,
        )
        if duplicate is not None:
            raise ValidationError(
                "Webhook already exists for this resource/owner/endpoint",
                details={"existing_id": str(duplicate.id)},
            )

    async def register(self, owner: OwnerContext, fields: Dict[str, Any]) -> RegisteredWebhook:
        """
        Create a subscription owned by the caller.

        The body may repeat the owner identity but cannot name a different one.
        """
        fields = dict(fields)
        body_owner = (fields.get("owner_type") or owner.owner_type, fields.get("owner_id") or owner.owner_id)
        if not owner.owns(*body_owner):
            raise AuthorizationError(
                "Webhooks can only be registered for the calling owner",
                status_code=403,
            )
        fields["owner_type"], fields["owner_id"] = owner.owner_type, owner.owner_id
        self._check_type(fields.get("webhook_type", "http"))
        await self._ensure_unique(fields)

        webhook = await self.webhooks.create(**fields)
        logger.info(
            "Webhook registered: %s %s/%s → %s",
            webhook.id, webhook.resource_type, webhook.resource_id, webhook.webhook_url,
            extra=owner.log_extra(),
        )
        return webhook

    async def get(self, owner: OwnerContext, webhook_id: uuid.UUID) -> RegisteredWebhook:
        webhook = await self.webhooks.get(webhook_id)
        if webhook is None or not owner.owns(webhook.owner_type, webhook.owner_id):
            raise NotFoundError("Webhook", webhook_id)
        return webhook

    async def search(
        self,
        owner: OwnerContext,
        filters: Dict[str, Any],
        limit: int = 10,
        offset: int = 0,
        order_by: str = "id",
        order_dir: str = "DESC",
    ) -> Tuple[List[RegisteredWebhook], int]:
        """Search the caller's subscriptions; foreign owner filters match nothing."""
        filters = dict(filters)
        for key, mine in (("owner_type", owner.owner_type), ("owner_id", owner.owner_id)):
            if filters.get(key) not in (None, mine):
                return [], 0
            filters[key] = mine
        return await self.webhooks.search(
            filters, limit=limit, offset=offset, order_by=order_by, order_dir=order_dir,
        )

    async def update(self, owner: OwnerContext, webhook_id: uuid.UUID, changes: Dict[str, Any]) -> RegisteredWebhook:
        """Partial update; the id never changes and the result must stay unique."""
        changes = {k: v for k, v in changes.items() if v is not None or k == "headers"}
        if not changes:
            raise ValidationError("No fields to update")
        webhook = await self.get(owner, webhook_id)
        if "webhook_type" in changes:
            self._check_type(changes["webhook_type"])

        merged = {
            key: changes.get(key, getattr(webhook, key))
            for key in ("resource_type", "resource_id", "owner_type", "owner_id", "webhook_url")
        }
        await self._ensure_unique(merged, exclude_id=webhook.id)
        await self.webhooks.update(webhook, changes)
        logger.info("Webhook updated: %s (%s)", webhook_id, ", ".join(sorted(changes)), extra=owner.log_extra())
        return webhook

    # ── Schedules ───────────────────────────────────────────────

    async def create_schedule(
        self,
        owner: OwnerContext,
        webhook_id: uuid.UUID,
        frequency: str,
        content: Dict[str, Any],
        enabled: bool = True,
        end_at: Optional[datetime] = None,
        triggered_by: Optional[str] = None,
    ) -> Schedule:
        """Bind a cron schedule to one of the caller's webhooks."""
        await self.get(owner, webhook_id)
        expression = validate_frequency(frequency)
        schedule = await self.schedules.create(
            webhook_id=webhook_id,
            frequency=expression,
            content=content,
            enabled=enabled,
            end_at=_as_utc(end_at),
            triggered_by=triggered_by,
            next_run_at=next_run_at(expression, _utcnow()),
            last_run_at=None,
        )
        logger.info(
            "Schedule created: %s '%s' → webhook %s (next %s)",
            schedule.id, expression, webhook_id, schedule.next_run_at,
            extra=owner.log_extra(),
        )
        return schedule

    async def get_schedule(self, owner: OwnerContext, schedule_id: uuid.UUID) -> Schedule:
        schedule = await self.schedules.get(schedule_id)
        if schedule is None:
            raise NotFoundError("Schedule", schedule_id)
        webhook = await self.webhooks.get(schedule.webhook_id)
        if webhook is None or not owner.owns(webhook.owner_type, webhook.owner_id):
            raise NotFoundError("Schedule", schedule_id)
        return schedule

    async def update_schedule(self, owner: OwnerContext, schedule_id: uuid.UUID, changes: Dict[str, Any]) -> Schedule:
        """
        Partial update. next_run_at is always recomputed from now.

        Pushing end_at into the future, clearing it, or re-enabling the
        schedule revives an expired one.
        """
        changes = {k: v for k, v in changes.items() if v is not None or k in ("end_at", "triggered_by")}
        if not changes:
            raise ValidationError("No fields to update")
        schedule = await self.get_schedule(owner, schedule_id)
        now = _utcnow()

        if "frequency" in changes:
            changes["frequency"] = validate_frequency(changes["frequency"])
        if "end_at" in changes:
            changes["end_at"] = _as_utc(changes["end_at"])
            if changes["end_at"] is None or changes["end_at"] > now:
                changes["expired_at"] = None
        if changes.get("enabled") is True:
            changes["expired_at"] = None

        changes["next_run_at"] = next_run_at(changes.get("frequency", schedule.frequency), now)
        await self.schedules.update(schedule, changes)
        logger.info("Schedule updated: %s (next %s)", schedule_id, schedule.next_run_at, extra=owner.log_extra())
        return schedule

    async def search_schedules(
        self,
        owner: OwnerContext,
        webhook_id: Optional[uuid.UUID] = None,
        enabled: Optional[bool] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[Schedule], int]:
        owned = await self.webhooks.owned_ids(owner)
        if webhook_id is not None:
            owned = [wid for wid in owned if wid == webhook_id]
        return await self.schedules.search(owned, enabled=enabled, limit=limit, offset=offset)

    # ── Delivery History ────────────────────────────────────────

    async def search_runs(
        self,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
        order_by: str = "id",
        order_dir: str = "DESC",
    ) -> Tuple[List[Dict[str, Any]], int]:
        return await self.runs.search_with_counts(
            resource_type=resource_type,
            resource_id=resource_id,
            limit=limit,
            offset=offset,
            order_by=order_by,
            order_dir=order_dir,
        )

    async def search_executions(
        self,
        owner: OwnerContext,
        webhook_run_id: Optional[uuid.UUID] = None,
        webhook_id: Optional[uuid.UUID] = None,
        result: Optional[str] = None,
        status_code: Optional[int] = None,
        limit: int = 10,
        offset: int = 0,
        order_by: str = "id",
        order_dir: str = "DESC",
    ) -> Tuple[List[WebhookExecution], int]:
        """Deliveries made to the caller's own subscriptions."""
        return await self.executions.search(
            owner,
            webhook_run_id=webhook_run_id,
            webhook_id=webhook_id,
            result=result,
            status_code=status_code,
            limit=limit,
            offset=offset,
            order_by=order_by,
            order_dir=order_dir,
        )
