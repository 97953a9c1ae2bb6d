# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Webhook API — Subscriptions, triggers, schedules and delivery history.

Static paths (register, search, trigger, schedules, runs, executions) are
declared before /webhooks/{webhook_id}.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from hookflow.api.deps import get_context, get_current_owner
from hookflow.core.config import settings
from hookflow.core.context import AppContext
from hookflow.core.owner import OwnerContext
from hookflow.protocols.states import DeliveryResult
from hookflow.storage.database import get_db
from hookflow.webhooks.service import WebhookService

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

OrderDir = Literal["ASC", "DESC"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StrictCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class OrmCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PageParams(StrictCamelModel):
    limit: int = Field(default=settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT)
    offset: int = Field(default=0, ge=0)
    order_by: str = "id"
    order_by_dir: OrderDir = "DESC"


# ── Request Models ──────────────────────────────────────────

class RegisterWebhookRequest(StrictCamelModel):
    resource_type: str = Field(min_length=1)
    resource_id: str = Field(min_length=1)
    owner_type: Optional[str] = Field(default=None, min_length=1)
    owner_id: Optional[str] = Field(default=None, min_length=1)
    webhook_type: Literal["http"] = "http"
    webhook_url: AnyHttpUrl
    headers: Optional[Dict[str, Any]] = None
    connection_timeout: int = Field(gt=0)
    request_timeout: int = Field(gt=0)


class SearchWebhooksRequest(PageParams):
    id: Optional[uuid.UUID] = None
    resource_type: Optional[str] = Field(default=None, min_length=1)
    resource_id: Optional[str] = Field(default=None, min_length=1)
    owner_type: Optional[str] = Field(default=None, min_length=1)
    owner_id: Optional[str] = Field(default=None, min_length=1)
    webhook_type: Optional[Literal["http"]] = None
    webhook_url: Optional[AnyHttpUrl] = None
    enabled: Optional[bool] = None


class PatchWebhookRequest(StrictCamelModel):
    resource_type: Optional[str] = Field(default=None, min_length=1)
    resource_id: Optional[str] = Field(default=None, min_length=1)
    webhook_type: Optional[Literal["http"]] = None
    webhook_url: Optional[AnyHttpUrl] = None
    headers: Optional[Dict[str, Any]] = None
    connection_timeout: Optional[int] = Field(default=None, gt=0)
    request_timeout: Optional[int] = Field(default=None, gt=0)
    enabled: Optional[bool] = None


class TriggerRequest(StrictCamelModel):
    resource_type: str = Field(min_length=1)
    resource_id: str = Field(min_length=1)
    content: Dict[str, Any]
    headers: Optional[Dict[str, Any]] = None
    triggered_by: str = Field(min_length=1)


class CreateScheduleRequest(StrictCamelModel):
    webhook_id: uuid.UUID
    frequency: str = Field(min_length=1)
    content: Dict[str, Any]
    enabled: bool = True
    end_at: Optional[datetime] = None
    triggered_by: Optional[str] = Field(default=None, min_length=1)


class UpdateScheduleRequest(StrictCamelModel):
    frequency: Optional[str] = Field(default=None, min_length=1)
    content: Optional[Dict[str, Any]] = None
    enabled: Optional[bool] = None
    end_at: Optional[datetime] = None
    triggered_by: Optional[str] = Field(default=None, min_length=1)


class SearchSchedulesRequest(StrictCamelModel):
    webhook_id: Optional[uuid.UUID] = None
    enabled: Optional[bool] = None
    limit: int = Field(default=settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT)
    offset: int = Field(default=0, ge=0)


class SearchRunsRequest(PageParams):
    resource_type: Optional[str] = Field(default=None, min_length=1)
    resource_id: Optional[str] = Field(default=None, min_length=1)


class SearchExecutionsRequest(PageParams):
    webhook_run_id: Optional[uuid.UUID] = None
    webhook_id: Optional[uuid.UUID] = None
    result: Optional[DeliveryResult] = None
    status_code: Optional[int] = None


# ── Response Models ─────────────────────────────────────────

class WebhookOut(OrmCamelModel):
    id: uuid.UUID
    resource_type: str
    resource_id: str
    owner_type: str
    owner_id: str
    webhook_type: str
    webhook_url: str
    headers: Optional[Dict[str, Any]] = None
    connection_timeout: int
    request_timeout: int
    enabled: bool
    created_at: datetime


class ScheduleOut(OrmCamelModel):
    id: uuid.UUID
    webhook_id: uuid.UUID
    frequency: str
    content: Dict[str, Any]
    enabled: bool
    end_at: Optional[datetime] = None
    triggered_by: Optional[str] = None
    next_run_at: datetime
    last_run_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    created_at: datetime


class RunOut(OrmCamelModel):
    id: uuid.UUID
    resource_type: str
    resource_id: str
    content: Dict[str, Any]
    headers: Optional[Dict[str, Any]] = None
    triggered_at: datetime
    triggered_by: str
    completed_at: Optional[datetime] = None
    success_count: int = 0
    failure_count: int = 0


class ExecutionOut(OrmCamelModel):
    id: uuid.UUID
    webhook_run_id: uuid.UUID
    webhook_id: uuid.UUID
    owner_type: str
    owner_id: str
    webhook_type: str
    webhook_url: str
    headers: Optional[Dict[str, Any]] = None
    result: DeliveryResult
    status_code: Optional[int] = None
    response: Optional[str] = None
    started_at: datetime
    ended_at: datetime


class TriggerResponse(CamelModel):
    message: str
    success: int
    failure: int
    run_id: uuid.UUID


class Page(CamelModel):
    total: int
    limit: int
    offset: int


class WebhookPage(Page):
    items: List[WebhookOut]


class SchedulePage(Page):
    items: List[ScheduleOut]


class RunPage(Page):
    items: List[RunOut]


class ExecutionPage(Page):
    items: List[ExecutionOut]


async def get_webhook_service(db: AsyncSession = Depends(get_db)) -> WebhookService:
    return WebhookService(db)


def _fields(req: BaseModel, **kwargs: Any) -> Dict[str, Any]:
    """Snake-case dict of a request model, with URLs as plain strings."""
    data = req.model_dump(**kwargs)
    if data.get("webhook_url") is not None:
        data["webhook_url"] = str(data["webhook_url"])
    return data


# ── Subscriptions ───────────────────────────────────────────

@router.post("/register", response_model=WebhookOut, status_code=201)
async def register_webhook(
    req: RegisterWebhookRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: WebhookService = Depends(get_webhook_service),
):
    """Subscribe an endpoint to a resource's trigger events."""
    webhook = await service.register(owner, _fields(req))
    return WebhookOut.model_validate(webhook)


@router.post("/search", response_model=WebhookPage)
async def search_webhooks(
    req: SearchWebhooksRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: WebhookService = Depends(get_webhook_service),
):
    filters = _fields(req, exclude={"limit", "offset", "order_by", "order_by_dir"})
    webhooks, total = await service.search(
        owner, filters, limit=req.limit, offset=req.offset,
        order_by=req.order_by, order_dir=req.order_by_dir,
    )
    return WebhookPage(
        items=[WebhookOut.model_validate(w) for w in webhooks],
        total=total, limit=req.limit, offset=req.offset,
    )


@router.post("/trigger", response_model=TriggerResponse)
async def trigger_webhooks(
    req: TriggerRequest,
    owner: OwnerContext = Depends(get_current_owner),
    ctx: AppContext = Depends(get_context),
):
    """Deliver content to every enabled subscriber of the resource and wait for all outcomes."""
    result = await ctx.dispatcher.trigger(
        req.resource_type,
        req.resource_id,
        req.content,
        triggered_by=req.triggered_by,
        headers=req.headers,
    )
    return TriggerResponse(
        message="Trigger completed",
        success=result.success,
        failure=result.failure,
        run_id=result.run_id,
    )


# ── Schedules ───────────────────────────────────────────────

@router.post("/schedules", response_model=ScheduleOut, status_code=201)
async def create_schedule(
    req: CreateScheduleRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: WebhookService = Depends(get_webhook_service),
):
    schedule = await service.create_schedule(
        owner,
        req.webhook_id,
        frequency=req.frequency,
        content=req.content,
        enabled=req.enabled,
        end_at=req.end_at,
        triggered_by=req.triggered_by,
    )
    return ScheduleOut.model_validate(schedule)


@router.post("/schedules/search", response_model=SchedulePage)
async def search_schedules(
    req: SearchSchedulesRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: WebhookService = Depends(get_webhook_service),
):
    schedules, total = await service.search_schedules(
        owner, webhook_id=req.webhook_id, enabled=req.enabled, limit=req.limit, offset=req.offset,
    )
    return SchedulePage(
        items=[ScheduleOut.model_validate(s) for s in schedules],
        total=total, limit=req.limit, offset=req.offset,
    )


@router.patch("/schedules/{schedule_id}", response_model=ScheduleOut)
async def update_schedule(
    schedule_id: uuid.UUID,
    req: UpdateScheduleRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: WebhookService = Depends(get_webhook_service),
):
    """Partial update; nextRunAt is recomputed from now."""
    schedule = await service.update_schedule(owner, schedule_id, req.model_dump(exclude_unset=True))
    return ScheduleOut.model_validate(schedule)


# ── Delivery History ────────────────────────────────────────

@router.post("/runs/search", response_model=RunPage)
async def search_runs(
    req: SearchRunsRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: WebhookService = Depends(get_webhook_service),
):
    rows, total = await service.search_runs(
        resource_type=req.resource_type,
        resource_id=req.resource_id,
        limit=req.limit,
        offset=req.offset,
        order_by=req.order_by,
        order_dir=req.order_by_dir,
    )
    items = [
        RunOut.model_validate(row["run"]).model_copy(
            update={"success_count": row["success_count"], "failure_count": row["failure_count"]}
        )
        for row in rows
    ]
    return RunPage(items=items, total=total, limit=req.limit, offset=req.offset)


@router.post("/executions/search", response_model=ExecutionPage)
async def search_executions(
    req: SearchExecutionsRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: WebhookService = Depends(get_webhook_service),
):
    executions, total = await service.search_executions(
        owner,
        webhook_run_id=req.webhook_run_id,
        webhook_id=req.webhook_id,
        result=req.result.value if req.result else None,
        status_code=req.status_code,
        limit=req.limit,
        offset=req.offset,
        order_by=req.order_by,
        order_dir=req.order_by_dir,
    )
    return ExecutionPage(
        items=[ExecutionOut.model_validate(e) for e in executions],
        total=total, limit=req.limit, offset=req.offset,
    )


# ── Single Subscription ─────────────────────────────────────

@router.get("/{webhook_id}", response_model=WebhookOut)
async def get_webhook(
    webhook_id: uuid.UUID,
    owner: OwnerContext = Depends(get_current_owner),
    service: WebhookService = Depends(get_webhook_service),
):
    return WebhookOut.model_validate(await service.get(owner, webhook_id))


@router.patch("/{webhook_id}", response_model=WebhookOut)
async def patch_webhook(
    webhook_id: uuid.UUID,
    req: PatchWebhookRequest,
    owner: OwnerContext = Depends(get_current_owner),
    service: WebhookService = Depends(get_webhook_service),
):
    """Partial update of a subscription. Owner and id are immutable."""
    webhook = await service.update(owner, webhook_id, _fields(req, exclude_unset=True))
    return WebhookOut.model_validate(webhook)
