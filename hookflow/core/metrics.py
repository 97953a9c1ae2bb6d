# Copyright (c) 2026 HookFlow Contributors. All Rights Reserved.

"""
Metrics — In-process counters for service observability.

Counters track approval actions and webhook deliveries, gauges hold
point-in-time values (scheduler state), histograms keep a bounded window
of latency observations.
"""

from __future__ import annotations

import time
from collections import defaultdict, deque
from typing import Any, Deque, Dict

HISTOGRAM_WINDOW = 1000


class Metrics:
    """Simple in-memory metrics collector."""

    def __init__(self):
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=HISTOGRAM_WINDOW)
        )
        self._start_time = time.time()

    def inc(self, name: str, amount: int = 1) -> None:
        self._counters[name] += amount

    def get_counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    def set_gauge(self, name: str, value: float) -> None:
        self._gauges[name] = value

    def get_gauge(self, name: str) -> float:
        return self._gauges.get(name, 0.0)

    def observe(self, name: str, value: float) -> None:
        """Record an observation (e.g. delivery latency in ms)."""
        self._histograms[name].append(value)

    def reset(self) -> None:
        self._counters.clear()
        self._gauges.clear()
        self._histograms.clear()

    def snapshot(self) -> Dict[str, Any]:
        """Export all metrics as a dict."""
        result: Dict[str, Any] = {
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
        }
        for name, values in self._histograms.items():
            if values:
                result[f"histogram_{name}"] = {
                    "count": len(values),
                    "avg": round(sum(values) / len(values), 2),
                    "max": round(max(values), 2),
                    "min": round(min(values), 2),
                }
        return result


# Global singleton
service_metrics = Metrics()
