# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Owner Context — The authenticated caller.

Every workflow and webhook belongs to an owner (type + id pair).
OwnerContext carries that identity through every core operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class OwnerContext:
    """Immutable caller identity for request-scoped operations."""

    owner_type: str
    owner_id: str
    trace_id: Optional[str] = None

    def __post_init__(self):
        if not self.owner_type or not self.owner_id:
            raise ValueError("owner_type and owner_id must not be empty")

    def owns(self, owner_type: str, owner_id: str) -> bool:
        return self.owner_type == owner_type and self.owner_id == owner_id

    def log_extra(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "owner_type": self.owner_type,
            "owner_id": self.owner_id,
        }

    def __repr__(self) -> str:
        return f"OwnerContext(type={self.owner_type!r}, id={self.owner_id!r})"
