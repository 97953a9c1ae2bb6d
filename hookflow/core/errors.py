# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Domain Errors — The failure vocabulary shared by approvals and webhooks.

Each error carries a machine code and the HTTP status the API layer
translates it to. Services raise these; they never build HTTP responses.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class HookflowError(Exception):
    """Base error with a machine code and HTTP status."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(HookflowError):
    code = "VALIDATION_ERROR"
    status_code = 400


class AuthorizationError(HookflowError):
    code = "UNAUTHORIZED"
    status_code = 401


class PermissionDeniedError(AuthorizationError):
    """Caller is known but lacks a role the current approval level requires."""

    code = "PERMISSION_DENIED"
    status_code = 403

    def __init__(self, required_roles, presented_roles=None):
        required = sorted(required_roles)
        super().__init__(
            f"Reviewer needs one of the roles: {', '.join(required)}",
            details={
                "required_roles": required,
                "presented_roles": sorted(presented_roles or []),
            },
        )


class NotFoundError(HookflowError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, kind: str, ident: Any):
        super().__init__(f"{kind} '{ident}' not found", details={"kind": kind, "id": str(ident)})


class InvalidStateError(HookflowError):
    code = "INVALID_STATE"
    status_code = 400


class ConfigError(HookflowError):
    code = "CONFIG_ERROR"
    status_code = 400


class ConflictError(HookflowError):
    """Raised when an optimistic update loses a race with a concurrent writer."""

    code = "CONFLICT"
    status_code = 409

    def __init__(self, kind: str, ident: Any, expected_version: int):
        self.expected_version = expected_version
        super().__init__(
            f"{kind} '{ident}' was modified concurrently (expected version {expected_version})",
            details={"kind": kind, "id": str(ident), "expected_version": expected_version},
        )
