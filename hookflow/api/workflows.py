# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Workflow API — Approval workflows, tasks and review actions.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from hookflow.api.deps import get_approval_service, get_current_owner
from hookflow.approvals.fsm import next_review_roles
from hookflow.approvals.service import ApprovalService
from hookflow.core.config import settings
from hookflow.core.owner import OwnerContext
from hookflow.protocols.states import ApprovalStatus
from hookflow.storage.models import ApprovalTask, Workflow

router = APIRouter(tags=["workflows"])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StrictCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# ── Request Models ──────────────────────────────────────────

class ApprovalLevelIn(StrictCamelModel):
    name: str = Field(min_length=1)
    level: int
    allowed_roles: List[str] = Field(min_length=1)
    approval_counts_required: int = Field(default=1, ge=1)


class CreateWorkflowRequest(StrictCamelModel):
    name: str = Field(min_length=1)
    resource_type: str = Field(min_length=1)
    approvals: List[ApprovalLevelIn] = Field(min_length=1)
    enabled: bool = True


class UpdateWorkflowRequest(StrictCamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    enabled: Optional[bool] = None


class CreateTaskRequest(StrictCamelModel):
    workflow_id: uuid.UUID
    resource_id: str = Field(min_length=1)


class BulkCreateTasksRequest(StrictCamelModel):
    workflow_id: uuid.UUID
    # Checked per element by the service
    resource_ids: List[Any] = Field(min_length=1)


class ApproveRequest(StrictCamelModel):
    reviewer_id: str = Field(min_length=1)
    reviewer_roles: List[str] = Field(min_length=1)
    comment: Optional[str] = None
    expected_version: Optional[int] = None


class RejectRequest(StrictCamelModel):
    reviewer_id: str = Field(min_length=1)
    reviewer_roles: List[str] = Field(min_length=1)
    comment: str = Field(min_length=1)
    expected_version: Optional[int] = None


class DiscardRequest(StrictCamelModel):
    task_ids: List[Any] = Field(min_length=1)
    reviewer_id: str = Field(min_length=1)
    reviewer_roles: List[str] = Field(min_length=1)
    comment: Optional[str] = None


# ── Response Models ─────────────────────────────────────────

class ApprovalLevelOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: uuid.UUID
    name: str
    level: int
    allowed_roles: List[str]
    approval_counts_required: int


class WorkflowOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: uuid.UUID
    name: str
    resource_type: str
    owner_type: str
    owner_id: str
    enabled: bool
    created_at: datetime
    approvals: List[ApprovalLevelOut]


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class WorkflowListResponse(CamelModel):
    data: List[WorkflowOut]
    pagination: Pagination


class TaskActionOut(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    sequence: int
    reviewer_id: str
    reviewer_roles: List[str]
    action_type: str
    comment: Optional[str] = None
    current_level: Optional[int] = None
    next_level: Optional[int] = None
    current_status: str
    next_status: str
    created_at: datetime


class TaskOut(CamelModel):
    id: uuid.UUID
    workflow_id: uuid.UUID
    resource_id: str
    status: ApprovalStatus
    next_review_level: Optional[int] = None
    next_review_roles: List[str]
    version: int
    created_at: datetime
    updated_at: datetime
    action_history: List[TaskActionOut]


class TaskListResponse(CamelModel):
    items: List[TaskOut]
    total: int
    limit: int
    offset: int


class BulkCreateError(CamelModel):
    index: int
    resource_id: Any = None
    error: str


class BulkCreateResponse(CamelModel):
    created: List[TaskOut]
    errors: List[BulkCreateError]


class DiscardError(CamelModel):
    task_id: str
    error: str


class DiscardResponse(CamelModel):
    discarded: List[TaskOut]
    errors: List[DiscardError]


def _task_out(task: ApprovalTask) -> TaskOut:
    return TaskOut(
        id=task.id,
        workflow_id=task.workflow_id,
        resource_id=task.resource_id,
        status=ApprovalStatus(task.status),
        next_review_level=task.next_review_level,
        next_review_roles=next_review_roles(task.workflow, task.next_review_level),
        version=task.version,
        created_at=task.created_at,
        updated_at=task.updated_at,
        action_history=[TaskActionOut.model_validate(a) for a in task.actions],
    )


def _workflow_out(workflow: Workflow) -> WorkflowOut:
    return WorkflowOut.model_validate(workflow)


def _levels(req: CreateWorkflowRequest) -> List[Dict[str, Any]]:
    return [level.model_dump() for level in req.approvals]


# ── Workflows ───────────────────────────────────────────────

@router.post("/workflows", response_model=WorkflowOut, status_code=201)
async def create_workflow(
    req: CreateWorkflowRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: ApprovalService = Depends(get_approval_service),
):
    """Create a workflow; levels must be numbered 1..N without gaps."""
    workflow = await service.create_workflow(
        owner, name=req.name, resource_type=req.resource_type,
        approvals=_levels(req), enabled=req.enabled,
    )
    return _workflow_out(workflow)


@router.get("/workflows", response_model=WorkflowListResponse)
async def list_workflows(
    search: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None, alias="resourceType"),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    owner: OwnerContext = Depends(get_current_owner),
    service: ApprovalService = Depends(get_approval_service),
):
    workflows, total = await service.list_workflows(
        owner, search=search, resource_type=resource_type, page=page, limit=limit,
    )
    return WorkflowListResponse(
        data=[_workflow_out(w) for w in workflows],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.get("/workflows/{workflow_id}", response_model=WorkflowOut)
async def get_workflow(
    workflow_id: uuid.UUID,
    owner: OwnerContext = Depends(get_current_owner),
    service: ApprovalService = Depends(get_approval_service),
):
    return _workflow_out(await service.get_workflow(owner, workflow_id))


@router.patch("/workflows/{workflow_id}", response_model=WorkflowOut)
async def update_workflow(
    workflow_id: uuid.UUID,
    req: UpdateWorkflowRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: ApprovalService = Depends(get_approval_service),
):
    """Rename or enable/disable a workflow. Levels cannot be changed."""
    workflow = await service.update_workflow(owner, workflow_id, name=req.name, enabled=req.enabled)
    return _workflow_out(workflow)


# ── Tasks ───────────────────────────────────────────────────

@router.post("/tasks", response_model=TaskOut, status_code=201)
async def create_task(
    req: CreateTaskRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: ApprovalService = Depends(get_approval_service),
):
    return _task_out(await service.create_task(owner, req.workflow_id, req.resource_id))


@router.post("/tasks/bulk", response_model=BulkCreateResponse, status_code=201)
async def create_tasks_bulk(
    req: BulkCreateTasksRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: ApprovalService = Depends(get_approval_service),
):
    """Create one task per resource id; malformed ids are reported per element."""
    outcome = await service.create_tasks(owner, req.workflow_id, req.resource_ids)
    return BulkCreateResponse(
        created=[_task_out(t) for t in outcome.created],
        errors=[
            BulkCreateError(index=e["index"], resource_id=e["resourceId"], error=e["error"])
            for e in outcome.errors
        ],
    )


@router.post("/tasks/discard", response_model=DiscardResponse)
async def discard_tasks(
    req: DiscardRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: ApprovalService = Depends(get_approval_service),
):
    """Discard many tasks; failures are reported per task, not raised."""
    outcome = await service.discard(
        owner, req.task_ids, reviewer_id=req.reviewer_id,
        reviewer_roles=req.reviewer_roles, comment=req.comment,
    )
    return DiscardResponse(
        discarded=[_task_out(t) for t in outcome.discarded],
        errors=[DiscardError(task_id=e["taskId"], error=e["error"]) for e in outcome.errors],
    )


@router.get("/tasks", response_model=TaskListResponse)
async def list_tasks(
    workflow_id: Optional[uuid.UUID] = Query(None, alias="workflowId"),
    status: Optional[ApprovalStatus] = Query(None),
    resource_id: Optional[str] = Query(None, alias="resourceId"),
    limit: int = Query(settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    offset: int = Query(0, ge=0),
    owner: OwnerContext = Depends(get_current_owner),
    service: ApprovalService = Depends(get_approval_service),
):
    tasks, total = await service.list_tasks(
        owner,
        workflow_id=workflow_id,
        status=status.value if status else None,
        resource_id=resource_id,
        limit=limit,
        offset=offset,
    )
    return TaskListResponse(items=[_task_out(t) for t in tasks], total=total, limit=limit, offset=offset)


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: uuid.UUID,
    owner: OwnerContext = Depends(get_current_owner),
    service: ApprovalService = Depends(get_approval_service),
):
    return _task_out(await service.get_task(owner, task_id))


@router.post("/tasks/{task_id}/approve", response_model=TaskOut)
async def approve_task(
    task_id: uuid.UUID,
    req: ApproveRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: ApprovalService = Depends(get_approval_service),
):
    task = await service.approve(
        owner, task_id, reviewer_id=req.reviewer_id, reviewer_roles=req.reviewer_roles,
        comment=req.comment, expected_version=req.expected_version,
    )
    return _task_out(task)


@router.post("/tasks/{task_id}/reject", response_model=TaskOut)
async def reject_task(
    task_id: uuid.UUID,
    req: RejectRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: ApprovalService = Depends(get_approval_service),
):
    """Reject with a mandatory comment."""
    task = await service.reject(
        owner, task_id, reviewer_id=req.reviewer_id, reviewer_roles=req.reviewer_roles,
        comment=req.comment, expected_version=req.expected_version,
    )
    return _task_out(task)
