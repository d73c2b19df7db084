"""Primary pose source: MediaPipe Pose landmark extraction."""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from motion_engine.errors import AcquisitionFault

try:
    import mediapipe as mp
except ImportError:
    mp = None


def landmarks_to_dicts(landmarks: Any) -> list[dict]:
    """Flatten MediaPipe ``NormalizedLandmark`` objects to plain dicts.

    The dicts are what ``PoseFrame.primary`` and the recorder store.
    """
    return [
        {
            "x": float(lm.x),
            "y": float(lm.y),
            "z": float(lm.z),
            "visibility": float(getattr(lm, "visibility", 0.0)),
        }
        for lm in landmarks
    ]


class PoseDetector:
    """Extracts the 33 MediaPipe Pose landmarks for one person per frame.

    Landmarks are x/y normalized to [0, 1] of the image, z relative to the
    hips, plus a per-landmark visibility used as fusion confidence.
    """

    NUM_LANDMARKS = 33

    def __init__(
        self,
        model_complexity: int = 1,
        min_detection_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
        static_image_mode: bool = False,
    ):
        self.model_complexity = model_complexity
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self.static_image_mode = static_image_mode
        self._pose = None

    def open(self):
        if self._pose is not None:
            return
        if mp is None:
            raise AcquisitionFault(
                "mediapipe is required. Install with: pip install motion-engine[capture]"
            )
        try:
            self._pose = mp.solutions.pose.Pose(
                static_image_mode=self.static_image_mode,
                model_complexity=self.model_complexity,
                smooth_landmarks=True,
                min_detection_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence,
            )
        except (RuntimeError, OSError) as e:
            raise AcquisitionFault(f"could not initialize MediaPipe Pose: {e}") from e

    def detect(self, frame_rgb: np.ndarray) -> Optional[list[dict]]:
        """Detect a pose and return landmark dicts.

        Args:
            frame_rgb: RGB image as numpy array (H, W, 3), uint8.

        Returns:
            List of 33 landmark dicts, or None if no person was found.
        """
        if self._pose is None:
            self.open()

        results = self._pose.process(frame_rgb)
        if not results.pose_landmarks:
            return None
        return landmarks_to_dicts(results.pose_landmarks.landmark)

    def close(self):
        """Release MediaPipe resources."""
        if self._pose is not None:
            self._pose.close()
            self._pose = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *args):
        self.close()
