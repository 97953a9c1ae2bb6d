# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Repository Layer — Data access for all HookFlow tables.

Each repository takes an AsyncSession and provides typed access.
Repositories flush but never commit; the caller owns the transaction.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hookflow.core.errors import ValidationError
from hookflow.core.owner import OwnerContext
from hookflow.protocols.states import ApprovalStatus, DeliveryResult
from hookflow.storage.models import (
    ApprovalTask,
    ApprovalTaskAction,
    RegisteredWebhook,
    Schedule,
    WebhookExecution,
    WebhookRun,
    Workflow,
    WorkflowApprovalLevel,
)


def _order_clause(column, direction: str):
    if direction.upper() == "ASC":
        return column.asc()
    return column.desc()


def _resolve_order(columns: Dict[str, Any], order_by: str):
    if order_by not in columns:
        raise ValidationError(
            f"Cannot order by '{order_by}'",
            details={"allowed": sorted(columns)},
        )
    return columns[order_by]


# ── Workflow Repository ─────────────────────────────────────

class WorkflowRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        owner: OwnerContext,
        name: str,
        resource_type: str,
        levels: Iterable[Dict[str, Any]],
        enabled: bool = True,
    ) -> Workflow:
        """Create a workflow together with its approval levels."""
        workflow = Workflow(
            name=name,
            resource_type=resource_type,
            owner_type=owner.owner_type,
            owner_id=owner.owner_id,
            enabled=enabled,
        )
        workflow.approvals = [
            WorkflowApprovalLevel(
                name=lvl["name"],
                level=lvl["level"],
                allowed_roles=list(lvl["allowed_roles"]),
                approval_counts_required=lvl.get("approval_counts_required", 1),
            )
            for lvl in sorted(levels, key=lambda lvl: lvl["level"])
        ]
        self.db.add(workflow)
        await self.db.flush()
        return workflow

    async def get(self, workflow_id: uuid.UUID) -> Optional[Workflow]:
        result = await self.db.execute(
            select(Workflow)
            .where(Workflow.id == workflow_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_owned(self, workflow_id: uuid.UUID, owner: OwnerContext) -> Optional[Workflow]:
        """Get a workflow only if the caller owns it."""
        workflow = await self.get(workflow_id)
        if workflow is None or not owner.owns(workflow.owner_type, workflow.owner_id):
            return None
        return workflow

    async def list_owned(
        self,
        owner: OwnerContext,
        search: Optional[str] = None,
        resource_type: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[Workflow], int]:
        """List the caller's workflows, newest first."""
        conditions = [
            Workflow.owner_type == owner.owner_type,
            Workflow.owner_id == owner.owner_id,
        ]
        if resource_type:
            conditions.append(Workflow.resource_type == resource_type)
        if search:
            conditions.append(func.lower(Workflow.name).contains(search.lower()))

        total = await self.db.scalar(select(func.count(Workflow.id)).where(*conditions))
        result = await self.db.execute(
            select(Workflow)
            .where(*conditions)
            .order_by(Workflow.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def update(
        self,
        workflow: Workflow,
        name: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> Workflow:
        if name is not None:
            workflow.name = name
        if enabled is not None:
            workflow.enabled = enabled
        await self.db.flush()
        return workflow


# ── Approval Task Repository ────────────────────────────────

class ApprovalTaskRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_many(self, workflow_id: uuid.UUID, resource_ids: Sequence[str]) -> List[ApprovalTask]:
        """Create tasks at their initial state (Pending, level 1)."""
        tasks = [
            ApprovalTask(
                workflow_id=workflow_id,
                resource_id=resource_id,
                status=ApprovalStatus.PENDING.value,
                next_review_level=1,
                version=1,
            )
            for resource_id in resource_ids
        ]
        self.db.add_all(tasks)
        await self.db.flush()
        return [await self.get(task.id) for task in tasks]

    async def get(self, task_id: uuid.UUID) -> Optional[ApprovalTask]:
        """Get a task with its workflow and history freshly loaded."""
        result = await self.db.execute(
            select(ApprovalTask)
            .where(ApprovalTask.id == task_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_owned(
        self,
        owner: OwnerContext,
        workflow_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        resource_id: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[ApprovalTask], int]:
        """List tasks whose workflow the caller owns, newest first."""
        conditions = [
            Workflow.owner_type == owner.owner_type,
            Workflow.owner_id == owner.owner_id,
        ]
        if workflow_id is not None:
            conditions.append(ApprovalTask.workflow_id == workflow_id)
        if status:
            conditions.append(ApprovalTask.status == status)
        if resource_id:
            conditions.append(ApprovalTask.resource_id == resource_id)

        total = await self.db.scalar(
            select(func.count(ApprovalTask.id))
            .join(Workflow, Workflow.id == ApprovalTask.workflow_id)
            .where(*conditions)
        )
        result = await self.db.execute(
            select(ApprovalTask)
            .join(Workflow, Workflow.id == ApprovalTask.workflow_id)
            .where(*conditions)
            .order_by(ApprovalTask.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def compare_and_set(
        self,
        task_id: uuid.UUID,
        expected_version: int,
        status: str,
        next_review_level: Optional[int],
        now: datetime,
    ) -> bool:
        """
        Apply a transition only if nobody else has since.

        Returns False when the stored version no longer matches.
        """
        result = await self.db.execute(
            update(ApprovalTask)
            .where(
                ApprovalTask.id == task_id,
                ApprovalTask.version == expected_version,
            )
            .values(
                status=status,
                next_review_level=next_review_level,
                version=expected_version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def append_action(self, task_id: uuid.UUID, sequence: int, **fields: Any) -> ApprovalTaskAction:
        """Append one immutable history entry."""
        action = ApprovalTaskAction(task_id=task_id, sequence=sequence, **fields)
        self.db.add(action)
        await self.db.flush()
        return action


# ── Webhook Repository ──────────────────────────────────────

WEBHOOK_ORDER_COLUMNS = {
    "id": RegisteredWebhook.id,
    "resourceType": RegisteredWebhook.resource_type,
    "resourceId": RegisteredWebhook.resource_id,
    "ownerType": RegisteredWebhook.owner_type,
    "ownerId": RegisteredWebhook.owner_id,
    "webhookUrl": RegisteredWebhook.webhook_url,
    "enabled": RegisteredWebhook.enabled,
    "createdAt": RegisteredWebhook.created_at,
}

WEBHOOK_FILTER_COLUMNS = {
    "id": RegisteredWebhook.id,
    "resource_type": RegisteredWebhook.resource_type,
    "resource_id": RegisteredWebhook.resource_id,
    "owner_type": RegisteredWebhook.owner_type,
    "owner_id": RegisteredWebhook.owner_id,
    "webhook_type": RegisteredWebhook.webhook_type,
    "webhook_url": RegisteredWebhook.webhook_url,
    "enabled": RegisteredWebhook.enabled,
}


class WebhookRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, **fields: Any) -> RegisteredWebhook:
        webhook = RegisteredWebhook(**fields)
        self.db.add(webhook)
        await self.db.flush()
        return webhook

    async def get(self, webhook_id: uuid.UUID) -> Optional[RegisteredWebhook]:
        result = await self.db.execute(
            select(RegisteredWebhook).where(RegisteredWebhook.id == webhook_id)
        )
        return result.scalar_one_or_none()

    async def find_duplicate(
        self,
        resource_type: str,
        resource_id: str,
        owner_type: str,
        owner_id: str,
        webhook_url: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> Optional[RegisteredWebhook]:
        """Find a subscription with the same resource, owner and endpoint."""
        query = select(RegisteredWebhook).where(
            RegisteredWebhook.resource_type == resource_type,
            RegisteredWebhook.resource_id == resource_id,
            RegisteredWebhook.owner_type == owner_type,
            RegisteredWebhook.owner_id == owner_id,
            RegisteredWebhook.webhook_url == webhook_url,
        )
        if exclude_id is not None:
            query = query.where(RegisteredWebhook.id != exclude_id)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def search(
        self,
        filters: Dict[str, Any],
        limit: int = 10,
        offset: int = 0,
        order_by: str = "id",
        order_dir: str = "DESC",
    ) -> Tuple[List[RegisteredWebhook], int]:
        """Filter by exact column values; None-valued filters are ignored."""
        conditions = [
            WEBHOOK_FILTER_COLUMNS[key] == value
            for key, value in filters.items()
            if value is not None
        ]
        column = _resolve_order(WEBHOOK_ORDER_COLUMNS, order_by)
        total = await self.db.scalar(select(func.count(RegisteredWebhook.id)).where(*conditions))
        result = await self.db.execute(
            select(RegisteredWebhook)
            .where(*conditions)
            .order_by(_order_clause(column, order_dir))
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def owned_ids(self, owner: OwnerContext) -> List[uuid.UUID]:
        result = await self.db.execute(
            select(RegisteredWebhook.id).where(
                RegisteredWebhook.owner_type == owner.owner_type,
                RegisteredWebhook.owner_id == owner.owner_id,
            )
        )
        return list(result.scalars().all())

    async def list_enabled_for_resource(
        self,
        resource_type: str,
        resource_id: str,
        webhook_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> List[RegisteredWebhook]:
        """Enabled subscribers of a resource, optionally restricted to given ids."""
        query = select(RegisteredWebhook).where(
            RegisteredWebhook.resource_type == resource_type,
            RegisteredWebhook.resource_id == resource_id,
            RegisteredWebhook.enabled.is_(True),
        )
        if webhook_ids:
            query = query.where(RegisteredWebhook.id.in_(list(webhook_ids)))
        result = await self.db.execute(query.order_by(RegisteredWebhook.created_at.asc()))
        return list(result.scalars().all())

    async def update(self, webhook: RegisteredWebhook, changes: Dict[str, Any]) -> RegisteredWebhook:
        for key, value in changes.items():
            setattr(webhook, key, value)
        await self.db.flush()
        return webhook


# ── Webhook Run Repository ──────────────────────────────────

class WebhookRunRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        resource_type: str,
        resource_id: str,
        content: Dict[str, Any],
        headers: Optional[Dict[str, Any]],
        triggered_by: str,
        triggered_at: datetime,
    ) -> WebhookRun:
        run = WebhookRun(
            resource_type=resource_type,
            resource_id=resource_id,
            content=content,
            headers=headers,
            triggered_by=triggered_by,
            triggered_at=triggered_at,
            completed_at=None,
        )
        self.db.add(run)
        await self.db.flush()
        return run

    async def get(self, run_id: uuid.UUID) -> Optional[WebhookRun]:
        result = await self.db.execute(
            select(WebhookRun)
            .where(WebhookRun.id == run_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def mark_completed(self, run_id: uuid.UUID, completed_at: datetime) -> None:
        await self.db.execute(
            update(WebhookRun)
            .where(WebhookRun.id == run_id)
            .values(completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )

    async def search_with_counts(
        self,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
        order_by: str = "id",
        order_dir: str = "DESC",
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Runs joined with their per-result execution counts."""
        success_count = (
            select(func.count(WebhookExecution.id))
            .where(
                WebhookExecution.webhook_run_id == WebhookRun.id,
                WebhookExecution.result == DeliveryResult.SUCCESS.value,
            )
            .correlate(WebhookRun)
            .scalar_subquery()
            .label("success_count")
        )
        failure_count = (
            select(func.count(WebhookExecution.id))
            .where(
                WebhookExecution.webhook_run_id == WebhookRun.id,
                WebhookExecution.result == DeliveryResult.FAILURE.value,
            )
            .correlate(WebhookRun)
            .scalar_subquery()
            .label("failure_count")
        )
        order_columns = {
            "id": WebhookRun.id,
            "resourceType": WebhookRun.resource_type,
            "resourceId": WebhookRun.resource_id,
            "triggeredAt": WebhookRun.triggered_at,
            "successCount": success_count,
            "failureCount": failure_count,
        }
        column = _resolve_order(order_columns, order_by)

        conditions = []
        if resource_type is not None:
            conditions.append(WebhookRun.resource_type == resource_type)
        if resource_id is not None:
            conditions.append(WebhookRun.resource_id == resource_id)

        total = await self.db.scalar(select(func.count(WebhookRun.id)).where(*conditions))
        result = await self.db.execute(
            select(WebhookRun, success_count, failure_count)
            .where(*conditions)
            .order_by(_order_clause(column, order_dir))
            .limit(limit)
            .offset(offset)
        )
        rows = [
            {"run": run, "success_count": int(succ or 0), "failure_count": int(fail or 0)}
            for run, succ, fail in result.all()
        ]
        return rows, int(total or 0)


# ── Webhook Execution Repository ────────────────────────────

EXECUTION_ORDER_COLUMNS = {
    "id": WebhookExecution.id,
    "webhookRunId": WebhookExecution.webhook_run_id,
    "webhookId": WebhookExecution.webhook_id,
    "result": WebhookExecution.result,
    "statusCode": WebhookExecution.status_code,
    "startedAt": WebhookExecution.started_at,
    "endedAt": WebhookExecution.ended_at,
}


class WebhookExecutionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_all(self, executions: List[WebhookExecution]) -> None:
        """Persist every execution of a run in one batch."""
        self.db.add_all(executions)
        await self.db.flush()

    async def list_for_run(self, run_id: uuid.UUID) -> List[WebhookExecution]:
        result = await self.db.execute(
            select(WebhookExecution)
            .where(WebhookExecution.webhook_run_id == run_id)
            .order_by(WebhookExecution.started_at.asc())
        )
        return list(result.scalars().all())

    async def search(
        self,
        owner: Optional[OwnerContext] = None,
        webhook_run_id: Optional[uuid.UUID] = None,
        webhook_id: Optional[uuid.UUID] = None,
        result: Optional[str] = None,
        status_code: Optional[int] = None,
        limit: int = 10,
        offset: int = 0,
        order_by: str = "id",
        order_dir: str = "DESC",
    ) -> Tuple[List[WebhookExecution], int]:
        conditions = []
        if owner is not None:
            conditions.append(WebhookExecution.owner_type == owner.owner_type)
            conditions.append(WebhookExecution.owner_id == owner.owner_id)
        if webhook_run_id is not None:
            conditions.append(WebhookExecution.webhook_run_id == webhook_run_id)
        if webhook_id is not None:
            conditions.append(WebhookExecution.webhook_id == webhook_id)
        if result is not None:
            conditions.append(WebhookExecution.result == result)
        if status_code is not None:
            conditions.append(WebhookExecution.status_code == status_code)
        column = _resolve_order(EXECUTION_ORDER_COLUMNS, order_by)

        total = await self.db.scalar(select(func.count(WebhookExecution.id)).where(*conditions))
        rows = await self.db.execute(
            select(WebhookExecution)
            .where(*conditions)
            .order_by(_order_clause(column, order_dir))
            .limit(limit)
            .offset(offset)
        )
        return list(rows.scalars().all()), int(total or 0)


# ── Schedule Repository ─────────────────────────────────────

class ScheduleRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, **fields: Any) -> Schedule:
        schedule = Schedule(**fields)
        self.db.add(schedule)
        await self.db.flush()
        return schedule

    async def get(self, schedule_id: uuid.UUID) -> Optional[Schedule]:
        result = await self.db.execute(
            select(Schedule)
            .where(Schedule.id == schedule_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_active(self) -> List[Schedule]:
        """Enabled schedules that have not expired."""
        result = await self.db.execute(
            select(Schedule)
            .where(Schedule.enabled.is_(True), Schedule.expired_at.is_(None))
            .order_by(Schedule.next_run_at.asc())
        )
        return list(result.scalars().all())

    async def search(
        self,
        webhook_ids: Sequence[uuid.UUID],
        enabled: Optional[bool] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[Schedule], int]:
        """Schedules bound to any of the given webhooks."""
        if not webhook_ids:
            return [], 0
        conditions = [Schedule.webhook_id.in_(list(webhook_ids))]
        if enabled is not None:
            conditions.append(Schedule.enabled.is_(enabled))
        total = await self.db.scalar(select(func.count(Schedule.id)).where(*conditions))
        result = await self.db.execute(
            select(Schedule)
            .where(*conditions)
            .order_by(Schedule.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def record_run(self, schedule_id: uuid.UUID, last_run_at: datetime, next_run_at: datetime) -> None:
        await self.db.execute(
            update(Schedule)
            .where(Schedule.id == schedule_id)
            .values(last_run_at=last_run_at, next_run_at=next_run_at)
            .execution_options(synchronize_session=False)
        )

    async def mark_expired(self, schedule_id: uuid.UUID, expired_at: datetime) -> None:
        await self.db.execute(
            update(Schedule)
            .where(Schedule.id == schedule_id)
            .values(expired_at=expired_at)
            .execution_options(synchronize_session=False)
        )

    async def update(self, schedule: Schedule, changes: Dict[str, Any]) -> Schedule:
        for key, value in changes.items():
            setattr(schedule, key, value)
        await self.db.flush()
        return schedule
