# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Approval State Machine — Level-gated transitions.

Pure logic: given a task's current status/level and its workflow's
approval levels, compute the transition an action produces or raise why
it is not allowed. Persistence lives in the service layer.

    Pending ─approve→ InProgress ─approve→ … ─approve(last level)→ Completed
       │                  │
       └──reject(level 1)─┴→ Rejected        reject(level k>1) → InProgress @ k-1
    any non-terminal ─discard→ Discarded
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from hookflow.core.errors import ConfigError, InvalidStateError, PermissionDeniedError
from hookflow.protocols.states import ApprovalAction, ApprovalStatus, RejectPolicy

logger = logging.getLogger("hookflow.approvals.fsm")


@dataclass(frozen=True)
class Transition:
    """Before/after snapshot of one approval action."""

    action: ApprovalAction
    current_status: ApprovalStatus
    next_status: ApprovalStatus
    current_level: Optional[int]
    next_level: Optional[int]


def next_review_roles(workflow, next_review_level: Optional[int]) -> List[str]:
    """Roles allowed to act on the task's current level; empty if none."""
    level = workflow.get_level(next_review_level) if workflow is not None else None
    if level is None:
        return []
    return list(level.allowed_roles or [])


class ApprovalStateMachine:
    """Computes approve/reject/discard transitions against a workflow."""

    def __init__(self, reject_policy: RejectPolicy = RejectPolicy.STEP_BACK) -> None:
        self._reject_policy = RejectPolicy(reject_policy)

    @property
    def reject_policy(self) -> RejectPolicy:
        return self._reject_policy

    # ── Guards ──────────────────────────────────────────────────

    @staticmethod
    def ensure_actionable(status: ApprovalStatus, next_level: Optional[int]) -> None:
        if status.is_terminal:
            raise InvalidStateError(
                f"Task is already {status.value}",
                details={"status": status.value},
            )
        if next_level is None:
            raise InvalidStateError(
                "Task has no pending review level",
                details={"status": status.value},
            )

    @staticmethod
    def resolve_level(workflow, next_level: int):
        level = workflow.get_level(next_level)
        if level is None:
            raise ConfigError(
                f"Workflow has no approval level {next_level}",
                details={"workflow_id": str(workflow.id), "level": next_level},
                status_code=500,
            )
        return level

    @staticmethod
    def check_roles(level, reviewer_roles: Iterable[str]) -> None:
        presented = set(reviewer_roles)
        allowed = set(level.allowed_roles or [])
        if not presented & allowed:
            raise PermissionDeniedError(allowed, presented)

    # ── Transitions ─────────────────────────────────────────────

    def approve(self, status, next_level, workflow, reviewer_roles) -> Transition:
        status = ApprovalStatus(status)
        self.ensure_actionable(status, next_level)
        level = self.resolve_level(workflow, next_level)
        self.check_roles(level, reviewer_roles)

        if next_level >= workflow.max_level:
            new_status, new_level = ApprovalStatus.COMPLETED, None
        else:
            new_status, new_level = ApprovalStatus.IN_PROGRESS, next_level + 1
        return self._transition(ApprovalAction.APPROVE, status, new_status, next_level, new_level)

    def reject(self, status, next_level, workflow, reviewer_roles) -> Transition:
        status = ApprovalStatus(status)
        self.ensure_actionable(status, next_level)
        level = self.resolve_level(workflow, next_level)
        self.check_roles(level, reviewer_roles)

        if next_level <= 1 or self._reject_policy is RejectPolicy.TERMINATE:
            new_status, new_level = ApprovalStatus.REJECTED, None
        else:
            new_status, new_level = ApprovalStatus.IN_PROGRESS, next_level - 1
        return self._transition(ApprovalAction.REJECT, status, new_status, next_level, new_level)

    def discard(self, status, next_level, workflow, reviewer_roles) -> Transition:
        status = ApprovalStatus(status)
        if status.is_terminal:
            raise InvalidStateError(
                f"Task is already {status.value}",
                details={"status": status.value},
            )
        # Role gate applies only when the current level exists and names roles
        level = workflow.get_level(next_level) if workflow is not None else None
        if level is not None and level.allowed_roles:
            self.check_roles(level, reviewer_roles)
        return self._transition(ApprovalAction.DISCARD, status, ApprovalStatus.DISCARDED, next_level, None)

    @staticmethod
    def _transition(action, current_status, next_status, current_level, next_level) -> Transition:
        logger.info(
            "Approval transition: %s@%s -[%s]-> %s@%s",
            current_status.value, current_level, action.value, next_status.value, next_level,
        )
        return Transition(
            action=action,
            current_status=current_status,
            next_status=next_status,
            current_level=current_level,
            next_level=next_level,
        )
