"""
Rolling latency telemetry for extraction calls.
"""
from __future__ import annotations
from typing import Optional

from sensing.models import PerformanceMetrics


class PerformanceTelemetry:
    """Streaming count / mean latency, plus min, max and last sample."""
    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.count = 0
        self.avg_ms = 0.0
        self.min_ms: Optional[float] = None
        self.max_ms = 0.0
        self.last_ms = 0.0

    def record(self, elapsed_ms: float) -> None:
        elapsed_ms = max(0.0, float(elapsed_ms))
        self.count += 1
        self.avg_ms += (elapsed_ms - self.avg_ms) / self.count
        self.min_ms = elapsed_ms if self.min_ms is None else min(self.min_ms, elapsed_ms)
        self.max_ms = max(self.max_ms, elapsed_ms)
        self.last_ms = elapsed_ms

    def snapshot(self) -> PerformanceMetrics:
        return PerformanceMetrics(
            count=self.count,
            avg_ms=max(0.0, self.avg_ms),
            min_ms=self.min_ms or 0.0,
            max_ms=self.max_ms,
            last_ms=self.last_ms,
        )
