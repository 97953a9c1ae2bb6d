# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Cron Evaluation — 5-field expressions to next fire instants.
"""

from __future__ import annotations

from datetime import datetime, timezone

from croniter import CroniterBadCronError, CroniterBadDateError, CroniterNotAlphaError, croniter

from hookflow.core.errors import ConfigError

CRON_FIELDS = 5


def validate_frequency(frequency: str) -> str:
    """Return the normalized expression or raise ConfigError."""
    expression = " ".join((frequency or "").split())
    if len(expression.split(" ")) != CRON_FIELDS or not croniter.is_valid(expression):
        raise ConfigError(
            f"Invalid cron expression: '{frequency}'",
            details={"frequency": frequency, "expected_fields": CRON_FIELDS},
        )
    return expression


def next_run_at(frequency: str, after: datetime) -> datetime:
    """
    Earliest instant strictly after `after` matching the expression, in UTC.

    Naive datetimes are taken as UTC.
    """
    expression = validate_frequency(frequency)
    if after.tzinfo is None:
        after = after.replace(tzinfo=timezone.utc)
    try:
        nxt = croniter(expression, after.astimezone(timezone.utc)).get_next(datetime)
    except (CroniterBadCronError, CroniterBadDateError, CroniterNotAlphaError) as e:
        raise ConfigError(
            f"Invalid cron expression: '{frequency}'",
            details={"frequency": frequency, "reason": str(e)},
        ) from e
    return nxt.astimezone(timezone.utc)
