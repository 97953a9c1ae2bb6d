# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Webhook Caller — HTTP client for subscriber endpoints.

One call = one POST of a run's content to one subscriber. The caller never
raises for delivery problems; it reports them as a DeliveryOutcome.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from hookflow.core.config import settings
from hookflow.protocols.states import TIMEOUT_STATUS_CODE

logger = logging.getLogger("hookflow.webhook")


@dataclass
class DeliveryOutcome:
    success: bool
    status_code: Optional[int]
    response: Optional[str]
    started_at: datetime
    ended_at: datetime

    @property
    def latency_ms(self) -> float:
        return (self.ended_at - self.started_at).total_seconds() * 1000


def merge_headers(
    stored: Optional[Dict[str, Any]],
    override: Optional[Dict[str, Any]],
) -> Dict[str, str]:
    """Subscription headers overlaid with trigger headers; the trigger wins."""
    merged: Dict[str, str] = {}
    for source in (stored or {}, override or {}):
        for key, value in source.items():
            merged[str(key)] = str(value)
    return merged


class WebhookCaller:
    """Sends trigger content to subscriber endpoints."""

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_response_chars: Optional[int] = None,
    ):
        self._transport = transport
        self._max_response_chars = max_response_chars or settings.WEBHOOK_MAX_RESPONSE_CHARS

    def _truncate(self, text: Optional[str]) -> Optional[str]:
        if text is None:
            return None
        return text[: self._max_response_chars]

    async def call(
        self,
        url: str,
        content: Any,
        headers: Dict[str, str],
        request_timeout: float,
        connection_timeout: Optional[float] = None,
    ) -> DeliveryOutcome:
        """
        POST content as JSON to url.

        Any non-2xx status is a failure carrying the upstream code and body.
        A timeout is a failure with status 408. Connection errors are a
        failure with no status.
        """
        timeout = httpx.Timeout(request_timeout, connect=connection_timeout or request_timeout)
        started_at = datetime.now(timezone.utc)
        t0 = time.monotonic()
        status_code: Optional[int] = None
        body: Optional[str] = None
        success = False

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                resp = await client.post(url, json=content, headers=headers)
                resp.raise_for_status()
                status_code, body, success = resp.status_code, resp.text, True
        except httpx.TimeoutException as e:
            status_code = TIMEOUT_STATUS_CODE
            logger.warning("Webhook timed out: %s (%.1fs): %s", url, request_timeout, e)
        except httpx.HTTPStatusError as e:
            status_code, body = e.response.status_code, e.response.text
            logger.warning("Webhook rejected: %s → %d", url, status_code)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error("Webhook call failed: %s: %s", url, e)

        ended_at = datetime.now(timezone.utc)
        logger.info(
            "Webhook call: %s → %s (%.0fms)",
            url, status_code, (time.monotonic() - t0) * 1000,
        )
        return DeliveryOutcome(
            success=success,
            status_code=status_code,
            response=self._truncate(body),
            started_at=started_at,
            ended_at=ended_at,
        )
