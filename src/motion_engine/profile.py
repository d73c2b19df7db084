"""Personal calibration profile backed by rolling sample windows.

Detectors report measurements through ``record_sample``. Outside of a
tutorial every sample immediately recomputes the thresholds as window
means. During a tutorial the profile is frozen: samples still accumulate,
the pending step counts its gesture, and the recompute happens once when
the last step completes.
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

import numpy as np

from motion_engine.storage import PROFILE_KEY, KeyValueStore, MemoryStore, load_json, persist

if TYPE_CHECKING:
    from motion_engine.classifier import OnlineClassifier

logger = logging.getLogger("motion_engine.profile")


class SampleKind(Enum):
    SHOULDER_DISTANCE = "shoulder_distance"
    WALK = "walk"
    TURN = "turn"
    PUNCH_VELOCITY = "punch_velocity"
    PUNCH_ELBOW_ANGLE = "punch_elbow_angle"

    @classmethod
    def parse(cls, kind: SampleKind | str) -> Optional[SampleKind]:
        if isinstance(kind, cls):
            return kind
        key = _ALIASES.get(kind, kind)
        try:
            return cls(key)
        except ValueError:
            return None

    @property
    def index(self) -> int:
        return list(SampleKind).index(self)


_ALIASES = {
    "shoulderDistance": "shoulder_distance",
    "punchVelocity": "punch_velocity",
    "punchElbowAngle": "punch_elbow_angle",
}

# Which window each kind feeds. Turn samples are shoulder distances.
WINDOW_FOR_KIND = {
    SampleKind.SHOULDER_DISTANCE: "shoulder_distance",
    SampleKind.TURN: "shoulder_distance",
    SampleKind.WALK: "walking_cadence",
    SampleKind.PUNCH_VELOCITY: "punch_velocity",
    SampleKind.PUNCH_ELBOW_ANGLE: "punch_elbow_angle",
}

# Which tutorial action a kind counts toward.
ACTION_FOR_KIND = {
    SampleKind.WALK: "walk",
    SampleKind.TURN: "turn",
    SampleKind.PUNCH_VELOCITY: "punch",
}

# window name -> (profile field, default)
THRESHOLDS = {
    "shoulder_distance": ("baseline_shoulder_distance", 0.2),
    "punch_velocity": ("punch_velocity_threshold", 0.5),
    "punch_elbow_angle": ("punch_elbow_angle_threshold", 20.0),
    "walking_cadence": ("walking_cadence", 0.5),
}


class SampleWindow:
    """Fixed-capacity ring buffer; the oldest value is dropped when full."""

    def __init__(self, capacity: int = 100):
        self.capacity = capacity
        self._values: deque[float] = deque(maxlen=capacity)

    def append(self, value: float):
        self._values.append(value)

    def mean(self) -> Optional[float]:
        if not self._values:
            return None
        return float(np.mean(self._values))

    @property
    def last(self) -> Optional[float]:
        return self._values[-1] if self._values else None

    def values(self) -> list[float]:
        return list(self._values)

    def clear(self):
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)


@dataclass
class TutorialStep:
    action: str
    target_count: int
    message: str
    current_count: int = 0
    complete: bool = False

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "current": self.current_count,
            "target": self.target_count,
            "complete": self.complete,
            "message": self.message,
        }


class TutorialState:
    """Ordered calibration steps. Only the first incomplete step counts."""

    def __init__(self, steps: list[TutorialStep]):
        self.steps = steps

    @classmethod
    def default(cls, count: int = 10) -> TutorialState:
        return cls([
            TutorialStep("walk", count, f"Walk in place {count} times to calibrate movement."),
            TutorialStep("turn", count, f"Twist your torso left and right {count} times to calibrate turning."),
            TutorialStep("punch", count, f"Throw {count} forward punches to calibrate punching."),
        ])

    @property
    def pending(self) -> Optional[TutorialStep]:
        for step in self.steps:
            if not step.complete:
                return step
        return None

    @property
    def complete(self) -> bool:
        return self.pending is None

    def advance(self, action: str) -> bool:
        """Count one repetition of ``action`` if it is the pending step."""
        step = self.pending
        if step is None or step.action != action:
            return False
        step.current_count += 1
        if step.current_count >= step.target_count:
            step.complete = True
            logger.info("Tutorial step '%s' complete", step.action)
        return True


class CalibrationProfile:
    """Personalized thresholds for the gesture detectors.

    Args:
        store: Key/value store the profile is loaded from and saved to.
        classifier: Optional online classifier fed one example per sample.
        window_capacity: Ring buffer size per metric.
        tutorial_count: Repetitions per tutorial step.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        classifier: Optional[OnlineClassifier] = None,
        window_capacity: int = 100,
        tutorial_count: int = 10,
    ):
        self._store = store if store is not None else MemoryStore()
        self.classifier = classifier
        self.tutorial_count = tutorial_count
        self.windows: dict[str, SampleWindow] = {
            name: SampleWindow(window_capacity) for name in THRESHOLDS
        }
        self.tutorial: Optional[TutorialState] = None

        self.baseline_shoulder_distance = THRESHOLDS["shoulder_distance"][1]
        self.punch_velocity_threshold = THRESHOLDS["punch_velocity"][1]
        self.punch_elbow_angle_threshold = THRESHOLDS["punch_elbow_angle"][1]
        self.walking_cadence = THRESHOLDS["walking_cadence"][1]
        self.last_updated = time.time()

        self._load()

    def record_sample(self, kind: SampleKind | str, value: float) -> bool:
        """Add one measurement. Returns False if the call was ignored."""
        parsed = SampleKind.parse(kind)
        if parsed is None:
            logger.warning("Ignoring sample of unknown kind: %s", kind)
            return False
        value = float(value)
        if not math.isfinite(value):
            logger.warning("Ignoring non-finite %s sample", parsed.value)
            return False

        self.windows[WINDOW_FOR_KIND[parsed]].append(value)

        if self.tutorial is not None:
            action = ACTION_FOR_KIND.get(parsed)
            if action is not None:
                self.tutorial.advance(action)
            if self.tutorial.complete:
                self.tutorial = None
                logger.info("Tutorial complete, recalibrating")
                self.recompute()
        else:
            self.recompute()

        self._feed_classifier(parsed)
        return True

    def recompute(self):
        """Set each threshold to its window mean (default when empty) and save."""
        for name, (attr, default) in THRESHOLDS.items():
            mean = self.windows[name].mean()
            setattr(self, attr, default if mean is None else mean)
        self.last_updated = time.time()
        self.save()
        logger.debug("Profile updated: %s", self.to_dict())

    def set_baseline_shoulder_distance(self, distance: float):
        """Store a freshly bootstrapped shoulder baseline."""
        self.baseline_shoulder_distance = float(distance)
        self.last_updated = time.time()
        self.save()

    def start_tutorial(self):
        self.tutorial = TutorialState.default(self.tutorial_count)
        logger.info("Tutorial started: %s", self.tutorial.pending.message)

    @property
    def tutorial_active(self) -> bool:
        return self.tutorial is not None

    def is_live(self, action: str) -> bool:
        """True if ``action`` is calibrated, i.e. not still being learned."""
        if self.tutorial is None:
            return True
        return any(s.action == action and s.complete for s in self.tutorial.steps)

    def tutorial_status(self) -> dict:
        if self.tutorial is None:
            return {"active": False, "pending": None, "message": "", "steps": [],
                    "live": ["walk", "turn", "punch"]}
        step = self.tutorial.pending
        return {
            "active": True,
            "pending": step.action if step else None,
            "message": f"{step.message} ({step.current_count}/{step.target_count})" if step else "",
            "steps": [s.to_dict() for s in self.tutorial.steps],
            "live": [s.action for s in self.tutorial.steps if s.complete],
        }

    def features(self, kind: SampleKind) -> list[float]:
        """Classifier input: latest value of each metric plus the kind index."""
        feats = []
        for name in ("shoulder_distance", "punch_velocity", "punch_elbow_angle", "walking_cadence"):
            last = self.windows[name].last
            feats.append(last if last is not None else getattr(self, THRESHOLDS[name][0]))
        feats.append(float(kind.index))
        return feats

    def _feed_classifier(self, kind: SampleKind):
        if self.classifier is None:
            return
        if kind is SampleKind.WALK:
            label = "walk"
        elif kind in (SampleKind.PUNCH_VELOCITY, SampleKind.PUNCH_ELBOW_ANGLE):
            label = "punch"
        else:
            label = "other"
        self.classifier.add_example(self.features(kind), label)
        self.classifier.maybe_retrain()

    def to_dict(self) -> dict:
        return {
            "baseline_shoulder_distance": self.baseline_shoulder_distance,
            "punch_velocity_threshold": self.punch_velocity_threshold,
            "punch_elbow_angle_threshold": self.punch_elbow_angle_threshold,
            "walking_cadence": self.walking_cadence,
            "last_updated": self.last_updated,
        }

    def save(self) -> bool:
        return persist(self._store, PROFILE_KEY, self.to_dict())

    def _load(self):
        data = load_json(self._store, PROFILE_KEY)
        if not isinstance(data, dict):
            return
        for attr, default in list(THRESHOLDS.values()) + [("last_updated", self.last_updated)]:
            value = data.get(attr)
            try:
                value = float(value)
            except (TypeError, ValueError):
                continue
            if math.isfinite(value):
                setattr(self, attr, value)
        logger.info("Profile loaded: %s", self.to_dict())
