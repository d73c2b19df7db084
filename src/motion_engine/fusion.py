"""Keypoint fusion and temporal smoothing.

The two pose sources run at different rates and disagree on indexing and
scale. ``KeypointFusionEngine`` merges whatever arrived this frame into a
single canonical skeleton; ``SmoothingFilter`` then damps single-frame
jumps before any detector sees the data.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from motion_engine.keypoints import (
    CONFIDENCE_THRESHOLD,
    NUM_KEYPOINTS,
    FusedSkeleton,
    Skeleton,
)


class KeypointFusionEngine:
    """Confidence-gated blend of a primary and a secondary skeleton.

    Per canonical keypoint:
    - primary usable only → primary
    - secondary usable only → secondary
    - both usable → per-axis average
    - neither → previous fused value, marked stale
    """

    def __init__(self, confidence_threshold: float = CONFIDENCE_THRESHOLD):
        self.confidence_threshold = confidence_threshold
        self._fused = FusedSkeleton.empty()

    def fuse(
        self,
        primary: Optional[Skeleton],
        secondary: Optional[Skeleton],
    ) -> FusedSkeleton:
        prev = self._fused
        points = prev.points.copy()
        confidence = prev.confidence.copy()
        fresh = np.zeros(NUM_KEYPOINTS, dtype=bool)

        p_ok = self._usable_mask(primary)
        s_ok = self._usable_mask(secondary)

        both = p_ok & s_ok
        only_p = p_ok & ~s_ok
        only_s = s_ok & ~p_ok

        if primary is not None:
            points[only_p] = primary.points[only_p]
            confidence[only_p] = primary.confidence[only_p]
        if secondary is not None:
            points[only_s] = secondary.points[only_s]
            confidence[only_s] = secondary.confidence[only_s]
        if primary is not None and secondary is not None:
            points[both] = (primary.points[both] + secondary.points[both]) / 2.0
            confidence[both] = np.maximum(primary.confidence[both], secondary.confidence[both])

        fresh[p_ok | s_ok] = True
        self._fused = FusedSkeleton(points=points, confidence=confidence, fresh=fresh)
        return self._fused

    def _usable_mask(self, skeleton: Optional[Skeleton]) -> np.ndarray:
        if skeleton is None:
            return np.zeros(NUM_KEYPOINTS, dtype=bool)
        return skeleton.confidence > self.confidence_threshold

    @property
    def current(self) -> FusedSkeleton:
        return self._fused

    def reset(self):
        self._fused = FusedSkeleton.empty()


class SmoothingFilter:
    """Per-keypoint, per-axis exponential moving average.

    ``smoothed = alpha * prev + (1 - alpha) * new``. Only fresh keypoints
    with finite coordinates are updated; the first observation after a reset
    seeds the average.
    """

    def __init__(self, alpha: float = 0.7):
        self.alpha = alpha
        self._state = np.zeros((NUM_KEYPOINTS, 3), dtype=np.float32)
        self._seeded = np.zeros(NUM_KEYPOINTS, dtype=bool)

    def update(self, skeleton: FusedSkeleton) -> FusedSkeleton:
        fresh = skeleton.fresh & np.isfinite(skeleton.points).all(axis=1)
        seed = fresh & ~self._seeded
        blend = fresh & self._seeded

        self._state[seed] = skeleton.points[seed]
        self._state[blend] = (
            self.alpha * self._state[blend] + (1.0 - self.alpha) * skeleton.points[blend]
        )
        self._seeded |= fresh

        return FusedSkeleton(
            points=self._state.copy(),
            confidence=skeleton.confidence.copy(),
            fresh=fresh.copy(),
        )

    @property
    def state(self) -> np.ndarray:
        return self._state.copy()

    def reset(self):
        self._state[:] = 0.0
        self._seeded[:] = False
