"""Per-stage timing for the motion pipeline.

Every detector runs inside the capture callback, so a slow stage drops
frames. ``PipelineProfiler`` keeps a rolling window of timings per stage
and counts frames that blew the frame budget.
"""

from __future__ import annotations

import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

import numpy as np


@dataclass
class StageStats:
    """Timing statistics for a single pipeline stage."""
    name: str
    avg_ms: float
    max_ms: float
    p95_ms: float
    call_count: int


class PipelineProfiler:
    """Rolling timings per stage plus a whole-frame budget check.

    Usage:
        profiler = PipelineProfiler(frame_budget_ms=33.3)

        with profiler.frame():
            with profiler.stage("fusion"):
                fused = fusion.fuse(primary, secondary)
            with profiler.stage("walk"):
                events = walk.update(skeleton, ctx, now)

        profiler.summary()["walk"]["p95_ms"]
    """

    STAGES = ("fusion", "smoothing", "walk", "turn", "punch")

    def __init__(self, window_size: int = 120, frame_budget_ms: float = 33.3):
        self.frame_budget_ms = frame_budget_ms
        self._window_size = window_size
        self._timings: dict[str, deque[float]] = {}
        self._counts: dict[str, int] = {}
        self.frames = 0
        self.over_budget = 0
        self.enabled = True
        self.reset()

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time one stage. Unknown stage names are added on first use."""
        if not self.enabled:
            yield
            return

        t0 = time.perf_counter()
        try:
            yield
        finally:
            self._add(name, (time.perf_counter() - t0) * 1000.0)

    @contextmanager
    def frame(self) -> Iterator[None]:
        """Time a whole frame and count it if it exceeds the budget."""
        if not self.enabled:
            yield
            return

        t0 = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - t0) * 1000.0
            self._add("frame", elapsed_ms)
            self.frames += 1
            if elapsed_ms > self.frame_budget_ms:
                self.over_budget += 1

    def _add(self, name: str, elapsed_ms: float):
        if name not in self._timings:
            self._timings[name] = deque(maxlen=self._window_size)
            self._counts[name] = 0
        self._timings[name].append(elapsed_ms)
        self._counts[name] += 1

    def get_stage_stats(self, name: str) -> Optional[StageStats]:
        timings = self._timings.get(name)
        if not timings:
            return None
        values = np.fromiter(timings, dtype=np.float64)
        return StageStats(
            name=name,
            avg_ms=float(values.mean()),
            max_ms=float(values.max()),
            p95_ms=float(np.percentile(values, 95)),
            call_count=self._counts[name],
        )

    def slowest_stage(self) -> Optional[str]:
        """Stage with the highest average time, excluding the frame total."""
        stats = [self.get_stage_stats(n) for n in self._timings if n != "frame"]
        stats = [s for s in stats if s is not None]
        if not stats:
            return None
        return max(stats, key=lambda s: s.avg_ms).name

    def summary(self) -> dict[str, dict]:
        result = {}
        for name in self._timings:
            stats = self.get_stage_stats(name)
            if stats is not None:
                result[name] = {
                    "avg_ms": round(stats.avg_ms, 3),
                    "max_ms": round(stats.max_ms, 3),
                    "p95_ms": round(stats.p95_ms, 3),
                    "calls": stats.call_count,
                }
        if self.frames:
            result["budget"] = {
                "frame_budget_ms": self.frame_budget_ms,
                "frames": self.frames,
                "over_budget": self.over_budget,
            }
        return result

    def reset(self):
        self._timings = {s: deque(maxlen=self._window_size) for s in self.STAGES}
        self._counts = {s: 0 for s in self.STAGES}
        self.frames = 0
        self.over_budget = 0
