# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Approval Level Validation.

A workflow's level numbers, sorted, must be exactly 1..N: no duplicates,
no gaps, no zero or negatives. Checked once, at workflow creation.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Sequence

from hookflow.core.errors import ValidationError


def _field(level: Any, name: str) -> Any:
    if isinstance(level, dict):
        return level.get(name)
    return getattr(level, name, None)


def level_violations(levels: Sequence[Any]) -> Dict[str, List]:
    """
    Describe everything wrong with a proposed level list.

    Returns an empty dict when the levels are valid.
    """
    numbers = [_field(lvl, "level") for lvl in levels]
    problems: Dict[str, List] = {}

    if not numbers:
        problems["empty"] = ["at least one approval level is required"]
        return problems

    non_positive = [n for n in numbers if not isinstance(n, int) or n < 1]
    if non_positive:
        problems["invalid"] = non_positive

    counts = Counter(numbers)
    duplicates = [n for n, c in counts.items() if c > 1]
    if duplicates:
        problems["duplicates"] = duplicates

    valid = {n for n in numbers if isinstance(n, int) and n >= 1}
    if valid:
        missing = sorted(set(range(1, max(valid) + 1)) - valid)
        if missing:
            problems["missing"] = missing

    roleless = [_field(lvl, "level") for lvl in levels if not _field(lvl, "allowed_roles")]
    if roleless:
        problems["no_roles"] = roleless

    return problems


def validate_levels(levels: Sequence[Any]) -> List[int]:
    """
    Validate a workflow's approval levels.

    Raises ValidationError enumerating the violations; returns the sorted
    level numbers on success.
    """
    problems = level_violations(levels)
    if problems:
        raise ValidationError(
            "Approval levels must be consecutive integers starting from 1 "
            "with no duplicates or gaps (e.g. [1, 2, 3])",
            details={"levels": [_field(lvl, "level") for lvl in levels], **problems},
        )
    return sorted(_field(lvl, "level") for lvl in levels)
