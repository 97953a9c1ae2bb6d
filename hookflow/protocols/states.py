# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
State Constants — The vocabulary of approvals and deliveries.

Values are persisted verbatim; never rename a member without a migration.
"""

from __future__ import annotations

from enum import Enum


class ApprovalStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    REJECTED = "Rejected"
    DISCARDED = "Discarded"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ApprovalStatus.COMPLETED,
    ApprovalStatus.REJECTED,
    ApprovalStatus.DISCARDED,
})


class ApprovalAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    DISCARD = "discard"


class RejectPolicy(str, Enum):
    STEP_BACK = "step_back"   # level k>1 returns to k-1, level 1 rejects
    TERMINATE = "terminate"   # any reject ends the task


class DeliveryResult(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


# --- Webhooks ---
WEBHOOK_TYPE_HTTP = "http"
SUPPORTED_WEBHOOK_TYPES = {WEBHOOK_TYPE_HTTP}

# Status recorded when a delivery exceeds its request timeout
TIMEOUT_STATUS_CODE = 408

# Actor prefix used when a schedule has no triggeredBy override
SCHEDULE_ACTOR_PREFIX = "schedule_"
