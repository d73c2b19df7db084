"""Canonical body keypoints and adapters for the two pose sources.

Everything downstream of fusion works on ``Skeleton`` arrays indexed by
``KeypointId``. The adapters here are the only code that knows about the
source-specific layouts:

- primary: MediaPipe Pose, 33 landmarks, normalized x/y, ``visibility``
- secondary: MoveNet, 17 keypoints, pixel x/y, ``score``
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Iterable, Optional

import numpy as np

from motion_engine.errors import InputFault

CONFIDENCE_THRESHOLD = 0.5


class KeypointId(IntEnum):
    """Canonical landmark index."""
    NOSE = 0
    LEFT_EYE = 1
    RIGHT_EYE = 2
    LEFT_EAR = 3
    RIGHT_EAR = 4
    LEFT_SHOULDER = 5
    RIGHT_SHOULDER = 6
    LEFT_ELBOW = 7
    RIGHT_ELBOW = 8
    LEFT_WRIST = 9
    RIGHT_WRIST = 10
    LEFT_HIP = 11
    RIGHT_HIP = 12
    LEFT_KNEE = 13
    RIGHT_KNEE = 14
    LEFT_ANKLE = 15
    RIGHT_ANKLE = 16
    LEFT_HEEL = 17
    RIGHT_HEEL = 18
    LEFT_FOOT_INDEX = 19
    RIGHT_FOOT_INDEX = 20


NUM_KEYPOINTS = len(KeypointId)

# MediaPipe Pose landmark index -> canonical id. Face detail, hand and
# mouth landmarks are dropped.
PRIMARY_MAP: dict[int, KeypointId] = {
    0: KeypointId.NOSE,
    2: KeypointId.LEFT_EYE,
    5: KeypointId.RIGHT_EYE,
    7: KeypointId.LEFT_EAR,
    8: KeypointId.RIGHT_EAR,
    11: KeypointId.LEFT_SHOULDER,
    12: KeypointId.RIGHT_SHOULDER,
    13: KeypointId.LEFT_ELBOW,
    14: KeypointId.RIGHT_ELBOW,
    15: KeypointId.LEFT_WRIST,
    16: KeypointId.RIGHT_WRIST,
    23: KeypointId.LEFT_HIP,
    24: KeypointId.RIGHT_HIP,
    25: KeypointId.LEFT_KNEE,
    26: KeypointId.RIGHT_KNEE,
    27: KeypointId.LEFT_ANKLE,
    28: KeypointId.RIGHT_ANKLE,
    29: KeypointId.LEFT_HEEL,
    30: KeypointId.RIGHT_HEEL,
    31: KeypointId.LEFT_FOOT_INDEX,
    32: KeypointId.RIGHT_FOOT_INDEX,
}

# MoveNet keypoint id -> canonical id. Only the limbs the detectors use.
SECONDARY_MAP: dict[int, KeypointId] = {
    5: KeypointId.LEFT_SHOULDER,
    6: KeypointId.RIGHT_SHOULDER,
    7: KeypointId.LEFT_ELBOW,
    8: KeypointId.RIGHT_ELBOW,
    9: KeypointId.LEFT_WRIST,
    10: KeypointId.RIGHT_WRIST,
    11: KeypointId.LEFT_HIP,
    12: KeypointId.RIGHT_HIP,
    13: KeypointId.LEFT_KNEE,
    14: KeypointId.RIGHT_KNEE,
}

MOVENET_NAMES = [
    "nose", "left_eye", "right_eye", "left_ear", "right_ear",
    "left_shoulder", "right_shoulder", "left_elbow", "right_elbow",
    "left_wrist", "right_wrist", "left_hip", "right_hip",
    "left_knee", "right_knee", "left_ankle", "right_ankle",
]


@dataclass
class Keypoint:
    """One landmark: normalized position, relative depth and confidence."""
    id: KeypointId
    x: float
    y: float
    z: float
    confidence: float

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float32)


@dataclass
class Skeleton:
    """Fixed-length keypoint arrays indexed by ``KeypointId``.

    ``points`` is (N, 3) x/y/z, ``confidence`` is (N,). Absent keypoints
    are zero with zero confidence.
    """
    points: np.ndarray
    confidence: np.ndarray

    @classmethod
    def empty(cls) -> Skeleton:
        return cls(
            points=np.zeros((NUM_KEYPOINTS, 3), dtype=np.float32),
            confidence=np.zeros(NUM_KEYPOINTS, dtype=np.float32),
        )

    def __len__(self) -> int:
        return len(self.points)

    def usable(self, kid: KeypointId, threshold: float = CONFIDENCE_THRESHOLD) -> bool:
        return bool(self.confidence[kid] > threshold)

    def all_usable(self, kids: Iterable[KeypointId], threshold: float = CONFIDENCE_THRESHOLD) -> bool:
        return all(self.usable(k, threshold) for k in kids)

    def get(self, kid: KeypointId) -> np.ndarray:
        return self.points[kid]

    def keypoint(self, kid: KeypointId) -> Keypoint:
        x, y, z = (float(v) for v in self.points[kid])
        return Keypoint(kid, x, y, z, float(self.confidence[kid]))

    def set(self, kid: KeypointId, x: float, y: float, z: float = 0.0, confidence: float = 1.0):
        self.points[kid] = (x, y, z)
        self.confidence[kid] = confidence

    def copy(self) -> Skeleton:
        return Skeleton(self.points.copy(), self.confidence.copy())


@dataclass
class FusedSkeleton(Skeleton):
    """Fusion output. ``fresh`` marks entries updated in the current frame;
    stale entries hold the last fused value and are never usable."""
    fresh: np.ndarray

    @classmethod
    def empty(cls) -> FusedSkeleton:
        return cls(
            points=np.zeros((NUM_KEYPOINTS, 3), dtype=np.float32),
            confidence=np.zeros(NUM_KEYPOINTS, dtype=np.float32),
            fresh=np.zeros(NUM_KEYPOINTS, dtype=bool),
        )

    def usable(self, kid: KeypointId, threshold: float = CONFIDENCE_THRESHOLD) -> bool:
        return bool(self.fresh[kid]) and super().usable(kid, threshold)

    def copy(self) -> FusedSkeleton:
        return FusedSkeleton(self.points.copy(), self.confidence.copy(), self.fresh.copy())


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a landmark object or dict."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _set_finite(skeleton: Skeleton, kid: KeypointId, x: float, y: float, z: float, confidence: float):
    if not all(math.isfinite(v) for v in (x, y, z, confidence)):
        return
    skeleton.set(kid, x, y, z, confidence)


def primary_to_skeleton(landmarks: Optional[Iterable[Any]]) -> Skeleton:
    """Convert MediaPipe Pose landmarks to a canonical skeleton.

    Accepts ``NormalizedLandmark`` objects or dicts with x, y, z and
    visibility. Missing visibility counts as zero confidence. Keypoints with
    NaN or infinite values are left absent. Raises ``InputFault`` on
    non-numeric coordinates.
    """
    skeleton = Skeleton.empty()
    if landmarks is None:
        return skeleton

    for mp_index, lm in enumerate(landmarks):
        kid = PRIMARY_MAP.get(mp_index)
        if kid is None:
            continue
        try:
            _set_finite(
                skeleton,
                kid,
                float(_field(lm, "x", 0.0)),
                float(_field(lm, "y", 0.0)),
                float(_field(lm, "z", 0.0) or 0.0),
                float(_field(lm, "visibility", 0.0) or 0.0),
            )
        except (TypeError, ValueError) as e:
            raise InputFault(f"bad primary landmark {mp_index}: {e}") from e
    return skeleton


def _movenet_id(kp: Any, position: int) -> Optional[int]:
    kp_id = _field(kp, "id")
    if kp_id is not None:
        return int(kp_id)
    name = _field(kp, "name")
    if name in MOVENET_NAMES:
        return MOVENET_NAMES.index(name)
    return position


def secondary_to_skeleton(
    keypoints: Optional[Iterable[Any]],
    frame_size: tuple[int, int],
) -> Skeleton:
    """Convert MoveNet keypoints (pixel space) to a canonical skeleton.

    Coordinates are divided by frame width/height. Keypoints whose id is not
    in ``SECONDARY_MAP`` are ignored, as are keypoints with NaN or
    infinite values. Raises ``InputFault`` on a degenerate
    frame size or non-numeric values.
    """
    skeleton = Skeleton.empty()
    if keypoints is None:
        return skeleton

    width, height = frame_size
    if width <= 0 or height <= 0:
        raise InputFault(f"invalid frame size {frame_size}")

    for position, kp in enumerate(keypoints):
        try:
            kid = SECONDARY_MAP.get(_movenet_id(kp, position))
            if kid is None:
                continue
            _set_finite(
                skeleton,
                kid,
                float(_field(kp, "x", 0.0)) / width,
                float(_field(kp, "y", 0.0)) / height,
                float(_field(kp, "z", 0.0) or 0.0),
                float(_field(kp, "score", 0.0) or 0.0),
            )
        except (TypeError, ValueError) as e:
            raise InputFault(f"bad secondary keypoint {position}: {e}") from e
    return skeleton
