# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Metrics — In-memory counters for version, integrity and sweep activity.

Counters accept labels and are stored under a flattened series name:
    inc("versions_created", collection="consents") -> "versions_created{collection=consents}"
"""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any, Dict, List


def series_name(name: str, labels: Dict[str, str]) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{k}={labels[k]}" for k in sorted(labels))
    return f"{name}{{{rendered}}}"


class Metrics:
    """Labelled in-memory metrics collector."""

    def __init__(self, max_samples: int = 500):
        self._counters: Dict[str, int] = defaultdict(int)
        self._gauges: Dict[str, float] = {}
        self._samples: Dict[str, List[float]] = defaultdict(list)
        self._max_samples = max_samples
        self._start_time = time.time()

    def inc(self, name: str, amount: int = 1, **labels: str) -> None:
        self._counters[series_name(name, labels)] += amount

    def get_counter(self, name: str, **labels: str) -> int:
        return self._counters.get(series_name(name, labels), 0)

    def set_gauge(self, name: str, value: float, **labels: str) -> None:
        self._gauges[series_name(name, labels)] = value

    def get_gauge(self, name: str, **labels: str) -> float:
        return self._gauges.get(series_name(name, labels), 0.0)

    def observe(self, name: str, value: float, **labels: str) -> None:
        """Record a duration sample in milliseconds."""
        bucket = self._samples[series_name(name, labels)]
        bucket.append(value)
        if len(bucket) > self._max_samples:
            del bucket[: len(bucket) - self._max_samples]

    def snapshot(self) -> Dict[str, Any]:
        durations = {
            key: {
                "count": len(values),
                "avg_ms": round(sum(values) / len(values), 2),
                "max_ms": round(max(values), 2),
            }
            for key, values in self._samples.items()
            if values
        }
        return {
            "uptime_seconds": round(time.time() - self._start_time, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "durations": durations,
        }

    def reset(self) -> None:
        self._counters.clear()
        self._gauges.clear()
        self._samples.clear()


# Global singleton
vault_metrics = Metrics()
