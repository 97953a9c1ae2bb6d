# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
API Dependencies — FastAPI dependency injection.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from hookflow.approvals.service import ApprovalService
from hookflow.core.context import AppContext, get_app_context
from hookflow.core.errors import AuthorizationError
from hookflow.core.owner import OwnerContext
from hookflow.storage.database import get_db


async def get_current_owner(
    request: Request,
    x_owner_type: Optional[str] = Header(None, alias="X-Owner-Type"),
    x_owner_id: Optional[str] = Header(None, alias="X-Owner-Id"),
) -> OwnerContext:
    """
    Extract the owner principal from request headers.

    Headers:
      - X-Owner-Type: owner kind, e.g. "organization" (required)
      - X-Owner-Id:   owner identifier (required)
    """
    if not x_owner_type or not x_owner_id:
        raise AuthorizationError("Missing X-Owner-Type or X-Owner-Id header")
    return OwnerContext(
        owner_type=x_owner_type,
        owner_id=x_owner_id,
        trace_id=getattr(request.state, "trace_id", None),
    )


async def get_approval_service(db: AsyncSession = Depends(get_db)) -> ApprovalService:
    return ApprovalService(db)


def get_context() -> AppContext:
    return get_app_context()
