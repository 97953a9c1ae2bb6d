# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Approval Service — Workflows, tasks and review actions.

Every operation takes the caller's OwnerContext explicitly. Task
transitions are computed by ApprovalStateMachine and written with a
version compare-and-set, so two reviewers racing on one task cannot both
win; the loser gets ConflictError.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from hookflow.approvals.fsm import ApprovalStateMachine, Transition
from hookflow.approvals.levels import validate_levels
from hookflow.core.config import settings
from hookflow.core.errors import (
    AuthorizationError,
    ConflictError,
    HookflowError,
    NotFoundError,
    ValidationError,
)
from hookflow.core.metrics import service_metrics
from hookflow.core.owner import OwnerContext
from hookflow.protocols.states import RejectPolicy
from hookflow.storage.models import RESOURCE_ID_LENGTH, ApprovalTask, Workflow
from hookflow.storage.repositories import ApprovalTaskRepository, WorkflowRepository

logger = logging.getLogger("hookflow.approvals")


@dataclass
class BulkCreateOutcome:
    """Per-element partition of a bulk task creation."""

    created: List[ApprovalTask] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class DiscardOutcome:
    """Per-task partition of a bulk discard."""

    discarded: List[ApprovalTask] = field(default_factory=list)
    errors: List[Dict[str, str]] = field(default_factory=list)


def _parse_task_id(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str):
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def default_state_machine() -> ApprovalStateMachine:
    return ApprovalStateMachine(RejectPolicy(settings.REJECT_POLICY))


class ApprovalService:
    def __init__(
        self,
        db: AsyncSession,
        state_machine: Optional[ApprovalStateMachine] = None,
    ) -> None:
        self.db = db
        self.fsm = state_machine or default_state_machine()
        self.workflows = WorkflowRepository(db)
        self.tasks = ApprovalTaskRepository(db)

    # ── Workflows ───────────────────────────────────────────────

    async def create_workflow(
        self,
        owner: OwnerContext,
        name: str,
        resource_type: str,
        approvals: Sequence[Dict[str, Any]],
        enabled: bool = True,
    ) -> Workflow:
        """Validate level numbering, then persist the workflow and its levels."""
        validate_levels(approvals)
        workflow = await self.workflows.create(
            owner, name=name, resource_type=resource_type, levels=approvals, enabled=enabled,
        )
        logger.info("Workflow created: %s (%d levels)", workflow.id, len(approvals), extra=owner.log_extra())
        return await self.workflows.get(workflow.id)

    async def get_workflow(self, owner: OwnerContext, workflow_id: uuid.UUID) -> Workflow:
        workflow = await self.workflows.get_owned(workflow_id, owner)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)
        return workflow

    async def list_workflows(
        self,
        owner: OwnerContext,
        search: Optional[str] = None,
        resource_type: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Workflow], int]:
        offset = (max(page, 1) - 1) * limit
        return await self.workflows.list_owned(
            owner, search=search, resource_type=resource_type, limit=limit, offset=offset,
        )

    async def update_workflow(
        self,
        owner: OwnerContext,
        workflow_id: uuid.UUID,
        name: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> Workflow:
        """Only name and enabled are mutable; levels are fixed at creation."""
        if name is None and enabled is None:
            raise ValidationError("At least one field (name or enabled) must be provided")
        workflow = await self.get_workflow(owner, workflow_id)
        await self.workflows.update(workflow, name=name, enabled=enabled)
        logger.info("Workflow updated: %s", workflow_id, extra=owner.log_extra())
        return await self.workflows.get(workflow_id)

    # ── Tasks ───────────────────────────────────────────────────

    async def _enabled_workflow(self, owner: OwnerContext, workflow_id: uuid.UUID) -> Workflow:
        workflow = await self.workflows.get_owned(workflow_id, owner)
        if workflow is None or not workflow.enabled:
            raise ValidationError(
                "Workflow not found or not enabled",
                details={"workflow_id": str(workflow_id)},
            )
        return workflow

    @staticmethod
    def _check_resource_id(value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("resourceId must be a non-empty string")
        if len(value) > RESOURCE_ID_LENGTH:
            raise ValidationError(f"resourceId exceeds {RESOURCE_ID_LENGTH} characters")
        return value

    async def create_task(self, owner: OwnerContext, workflow_id: uuid.UUID, resource_id: str) -> ApprovalTask:
        resource_id = self._check_resource_id(resource_id)
        workflow = await self._enabled_workflow(owner, workflow_id)
        tasks = await self.tasks.create_many(workflow.id, [resource_id])
        service_metrics.inc("approval_tasks_created")
        logger.info("Created approval task %s on workflow %s", tasks[0].id, workflow.id, extra=owner.log_extra())
        return tasks[0]

    async def create_tasks(
        self,
        owner: OwnerContext,
        workflow_id: uuid.UUID,
        resource_ids: Sequence[Any],
    ) -> BulkCreateOutcome:
        """
        One workflow check, then one Pending task per valid resource id.

        Malformed ids are reported per element; the rest are still created.
        """
        if not resource_ids:
            raise ValidationError("At least one resourceId is required")
        workflow = await self._enabled_workflow(owner, workflow_id)

        outcome = BulkCreateOutcome()
        valid: List[str] = []
        for index, value in enumerate(resource_ids):
            try:
                valid.append(self._check_resource_id(value))
            except ValidationError as exc:
                outcome.errors.append({"index": index, "resourceId": value, "error": exc.message})

        if valid:
            outcome.created = await self.tasks.create_many(workflow.id, valid)
            service_metrics.inc("approval_tasks_created", len(outcome.created))
        logger.info(
            "Bulk create on workflow %s: %d created, %d errors",
            workflow.id, len(outcome.created), len(outcome.errors),
            extra=owner.log_extra(),
        )
        return outcome

    async def get_task(self, owner: OwnerContext, task_id: uuid.UUID) -> ApprovalTask:
        task = await self.tasks.get(task_id)
        if task is None or not owner.owns(task.workflow.owner_type, task.workflow.owner_id):
            raise NotFoundError("ApprovalTask", task_id)
        return task

    async def list_tasks(
        self,
        owner: OwnerContext,
        workflow_id: Optional[uuid.UUID] = None,
        status: Optional[str] = None,
        resource_id: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> Tuple[List[ApprovalTask], int]:
        return await self.tasks.list_owned(
            owner, workflow_id=workflow_id, status=status, resource_id=resource_id,
            limit=limit, offset=offset,
        )

    # ── Review Actions ──────────────────────────────────────────

    async def _load_for_action(self, owner: OwnerContext, task_id: uuid.UUID) -> ApprovalTask:
        task = await self.tasks.get(task_id)
        if task is None:
            raise NotFoundError("ApprovalTask", task_id)
        if not owner.owns(task.workflow.owner_type, task.workflow.owner_id):
            raise AuthorizationError(
                "Caller does not own this task's workflow",
                details={"task_id": str(task_id)},
                status_code=403,
            )
        return task

    async def _apply(
        self,
        task: ApprovalTask,
        transition: Transition,
        reviewer_id: str,
        reviewer_roles: Sequence[str],
        comment: Optional[str],
        expected_version: Optional[int] = None,
    ) -> None:
        version = task.version if expected_version is None else expected_version
        now = datetime.now(timezone.utc)
        applied = await self.tasks.compare_and_set(
            task.id,
            expected_version=version,
            status=transition.next_status.value,
            next_review_level=transition.next_level,
            now=now,
        )
        if not applied:
            service_metrics.inc("approval_conflicts")
            raise ConflictError("ApprovalTask", task.id, version)

        await self.tasks.append_action(
            task.id,
            sequence=len(task.actions) + 1,
            reviewer_id=reviewer_id,
            reviewer_roles=list(reviewer_roles),
            action_type=transition.action.value,
            comment=comment,
            current_level=transition.current_level,
            next_level=transition.next_level,
            current_status=transition.current_status.value,
            next_status=transition.next_status.value,
            created_at=now,
        )
        service_metrics.inc(f"approval_{transition.action.value}")

    @staticmethod
    def _require_roles(reviewer_roles: Sequence[str]) -> None:
        if not reviewer_roles:
            raise ValidationError("reviewerRoles must not be empty")

    async def approve(
        self,
        owner: OwnerContext,
        task_id: uuid.UUID,
        reviewer_id: str,
        reviewer_roles: Sequence[str],
        comment: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ApprovalTask:
        """Advance the task one level, or complete it at the final level."""
        self._require_roles(reviewer_roles)
        task = await self._load_for_action(owner, task_id)
        transition = self.fsm.approve(task.status, task.next_review_level, task.workflow, reviewer_roles)
        await self._apply(task, transition, reviewer_id, reviewer_roles, comment, expected_version)
        logger.info("Task %s approved by %s", task_id, reviewer_id, extra=owner.log_extra())
        return await self.tasks.get(task_id)

    async def reject(
        self,
        owner: OwnerContext,
        task_id: uuid.UUID,
        reviewer_id: str,
        reviewer_roles: Sequence[str],
        comment: str,
        expected_version: Optional[int] = None,
    ) -> ApprovalTask:
        """Reject at level 1 ends the task; above level 1 it steps back (per policy)."""
        self._require_roles(reviewer_roles)
        if not comment or not comment.strip():
            raise ValidationError("A comment is required to reject a task")
        task = await self._load_for_action(owner, task_id)
        transition = self.fsm.reject(task.status, task.next_review_level, task.workflow, reviewer_roles)
        await self._apply(task, transition, reviewer_id, reviewer_roles, comment, expected_version)
        logger.info(
            "Task %s rejected by %s (policy=%s)", task_id, reviewer_id, self.fsm.reject_policy.value,
            extra=owner.log_extra(),
        )
        return await self.tasks.get(task_id)

    async def discard(
        self,
        owner: OwnerContext,
        task_ids: Sequence[Any],
        reviewer_id: str,
        reviewer_roles: Sequence[str],
        comment: Optional[str] = None,
    ) -> DiscardOutcome:
        """
        Discard many tasks; each id succeeds or fails on its own.

        Failures (malformed or unknown id, foreign owner, terminal state,
        role mismatch, lost race) are collected, never raised.
        """
        self._require_roles(reviewer_roles)
        outcome = DiscardOutcome()
        discarded_ids: List[uuid.UUID] = []
        pending: Dict[uuid.UUID, None] = {}

        for raw in task_ids:
            task_id = _parse_task_id(raw)
            if task_id is None:
                outcome.errors.append({"taskId": str(raw), "error": f"Invalid task id '{raw}'"})
            else:
                pending.setdefault(task_id, None)

        for task_id in pending:
            try:
                task = await self.tasks.get(task_id)
                if task is None or not owner.owns(task.workflow.owner_type, task.workflow.owner_id):
                    raise NotFoundError("ApprovalTask", task_id)
                transition = self.fsm.discard(
                    task.status, task.next_review_level, task.workflow, reviewer_roles,
                )
                await self._apply(task, transition, reviewer_id, reviewer_roles, comment)
                discarded_ids.append(task_id)
            except HookflowError as exc:
                outcome.errors.append({"taskId": str(task_id), "error": exc.message})

        for task_id in discarded_ids:
            outcome.discarded.append(await self.tasks.get(task_id))

        logger.info(
            "Bulk discard by %s: %d discarded, %d errors",
            reviewer_id, len(outcome.discarded), len(outcome.errors),
            extra=owner.log_extra(),
        )
        return outcome
