# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
ORM Models — Table definitions for HookFlow.

Tables:
  - workflows: Approval workflow definitions, owned by a tenant
  - workflow_approvals: Ordered approval levels of a workflow (cascade-deleted)
  - approval_tasks: One resource progressing through a workflow's levels
  - approval_task_actions: Review history (append-only)
  - registered_webhooks: Webhook subscriptions per resource
  - webhook_runs: One trigger event
  - webhook_executions: One delivery attempt within a run
  - schedules: Cron-driven recurring triggers bound to one webhook
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text,
    UniqueConstraint, Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from hookflow.protocols.states import ApprovalStatus
from hookflow.storage.database import Base

RESOURCE_ID_LENGTH = 256


def _utcnow():
    return datetime.now(timezone.utc)


def _genuuid():
    return uuid.uuid4()


class JSONDocument(TypeDecorator):
    """JSONB on PostgreSQL, plain JSON elsewhere."""

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetimes, normalized to UTC on the way in and out."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ── Workflows ───────────────────────────────────────────────

class Workflow(Base):
    __tablename__ = "workflows"

    id = Column(Uuid, primary_key=True, default=_genuuid)
    name = Column(String(256), nullable=False)
    resource_type = Column(String(128), nullable=False)
    owner_type = Column(String(64), nullable=False)
    owner_id = Column(String(128), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)

    approvals = relationship(
        "WorkflowApprovalLevel",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowApprovalLevel.level",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_workflows_owner", "owner_type", "owner_id", "created_at"),
    )

    @property
    def max_level(self) -> int:
        return max((a.level for a in self.approvals), default=0)

    def get_level(self, number):
        """Return the approval level with this number, or None."""
        if number is None:
            return None
        for approval in self.approvals:
            if approval.level == number:
                return approval
        return None

    def __repr__(self):
        return f"<Workflow {self.id} levels={len(self.approvals)}>"


class WorkflowApprovalLevel(Base):
    __tablename__ = "workflow_approvals"

    id = Column(Uuid, primary_key=True, default=_genuuid)
    workflow_id = Column(Uuid, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(256), nullable=False)
    level = Column(Integer, nullable=False, default=1)
    allowed_roles = Column(JSONDocument, nullable=False, default=list)
    approval_counts_required = Column(Integer, nullable=False, default=1)  # stored, not enforced
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)

    workflow = relationship("Workflow", back_populates="approvals")

    __table_args__ = (
        UniqueConstraint("workflow_id", "level", name="uq_workflow_approvals_level"),
    )

    def __repr__(self):
        return f"<ApprovalLevel {self.level} roles={self.allowed_roles}>"


# ── Approval Tasks ──────────────────────────────────────────

class ApprovalTask(Base):
    __tablename__ = "approval_tasks"

    id = Column(Uuid, primary_key=True, default=_genuuid)
    workflow_id = Column(Uuid, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    resource_id = Column(String(RESOURCE_ID_LENGTH), nullable=False)
    status = Column(String(32), nullable=False, default=ApprovalStatus.PENDING.value)
    next_review_level = Column(Integer, nullable=True, default=1)  # NULL iff terminal
    version = Column(Integer, nullable=False, default=1)  # bumped by every transition
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    workflow = relationship("Workflow", lazy="selectin")
    actions = relationship(
        "ApprovalTaskAction",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="ApprovalTaskAction.sequence",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<ApprovalTask {self.id} {self.status} level={self.next_review_level}>"


class ApprovalTaskAction(Base):
    __tablename__ = "approval_task_actions"

    id = Column(Uuid, primary_key=True, default=_genuuid)
    task_id = Column(Uuid, ForeignKey("approval_tasks.id", ondelete="CASCADE"), nullable=False)
    sequence = Column(Integer, nullable=False)
    reviewer_id = Column(String(128), nullable=False)
    reviewer_roles = Column(JSONDocument, nullable=False, default=list)
    action_type = Column(String(16), nullable=False)  # approve/reject/discard
    comment = Column(Text, nullable=True)
    current_level = Column(Integer, nullable=True)
    next_level = Column(Integer, nullable=True)
    current_status = Column(String(32), nullable=False)
    next_status = Column(String(32), nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)

    task = relationship("ApprovalTask", back_populates="actions")

    __table_args__ = (
        UniqueConstraint("task_id", "sequence", name="uq_task_actions_sequence"),
    )

    def __repr__(self):
        return f"<Action {self.action_type} {self.current_status}→{self.next_status}>"


# ── Webhooks ────────────────────────────────────────────────

class RegisteredWebhook(Base):
    __tablename__ = "registered_webhooks"

    id = Column(Uuid, primary_key=True, default=_genuuid)
    resource_type = Column(String(128), nullable=False)
    resource_id = Column(String(RESOURCE_ID_LENGTH), nullable=False)
    owner_type = Column(String(64), nullable=False)
    owner_id = Column(String(128), nullable=False)
    webhook_type = Column(String(16), nullable=False, default="http")
    webhook_url = Column(String(2048), nullable=False)
    headers = Column(JSONDocument, nullable=True)
    connection_timeout = Column(Integer, nullable=False)  # seconds
    request_timeout = Column(Integer, nullable=False)     # seconds
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_webhooks_resource", "resource_type", "resource_id", "enabled"),
    )

    def __repr__(self):
        return f"<Webhook {self.id} {self.resource_type}/{self.resource_id} → {self.webhook_url}>"


class WebhookRun(Base):
    __tablename__ = "webhook_runs"

    id = Column(Uuid, primary_key=True, default=_genuuid)
    resource_type = Column(String(128), nullable=False)
    resource_id = Column(String(RESOURCE_ID_LENGTH), nullable=False)
    content = Column(JSONDocument, nullable=False, default=dict)
    headers = Column(JSONDocument, nullable=True)
    triggered_at = Column(UTCDateTime, nullable=False, default=_utcnow)
    triggered_by = Column(String(256), nullable=False)
    completed_at = Column(UTCDateTime, nullable=True)  # set once every execution is stored

    __table_args__ = (
        Index("idx_runs_resource", "resource_type", "resource_id", "triggered_at"),
    )

    def __repr__(self):
        return f"<WebhookRun {self.id} {self.resource_type}/{self.resource_id}>"


class WebhookExecution(Base):
    __tablename__ = "webhook_executions"

    id = Column(Uuid, primary_key=True, default=_genuuid)
    webhook_run_id = Column(Uuid, ForeignKey("webhook_runs.id"), nullable=False, index=True)
    webhook_id = Column(Uuid, nullable=False, index=True)
    owner_type = Column(String(64), nullable=False)
    owner_id = Column(String(128), nullable=False)
    webhook_type = Column(String(16), nullable=False)
    webhook_url = Column(String(2048), nullable=False)
    headers = Column(JSONDocument, nullable=True)
    result = Column(String(16), nullable=False)  # success/failure
    status_code = Column(Integer, nullable=True)
    response = Column(Text, nullable=True)
    started_at = Column(UTCDateTime, nullable=False)
    ended_at = Column(UTCDateTime, nullable=False)

    def __repr__(self):
        return f"<WebhookExecution {self.id} {self.result} ({self.status_code})>"


# ── Schedules ───────────────────────────────────────────────

class Schedule(Base):
    __tablename__ = "schedules"

    id = Column(Uuid, primary_key=True, default=_genuuid)
    webhook_id = Column(Uuid, nullable=False, index=True)
    frequency = Column(String(128), nullable=False)  # 5-field cron
    content = Column(JSONDocument, nullable=False, default=dict)
    enabled = Column(Boolean, nullable=False, default=True)
    end_at = Column(UTCDateTime, nullable=True)
    triggered_by = Column(String(256), nullable=True)
    next_run_at = Column(UTCDateTime, nullable=False)
    last_run_at = Column(UTCDateTime, nullable=True)
    expired_at = Column(UTCDateTime, nullable=True)  # set once end_at has passed; excluded from scans
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<Schedule {self.id} '{self.frequency}' next={self.next_run_at}>"
