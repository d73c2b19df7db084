"""Control events produced by the gesture detectors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import numpy as np


class EventType(Enum):
    STEP = "step"
    TURN = "turn"
    PUNCH = "punch"


@dataclass
class GestureEvent(ABC):
    """Base for all detector output. ``timestamp`` is the frame capture time."""
    timestamp: float

    @property
    @abstractmethod
    def type(self) -> EventType:
        ...

    def to_dict(self) -> dict:
        return {"type": self.type.value, "timestamp": self.timestamp}


@dataclass
class StepEvent(GestureEvent):
    """A walking step: apply ``impulse`` as the character's new velocity."""
    impulse: np.ndarray
    leg: str  # "left" or "right"
    source: str = "knee"  # "knee" or "hip" fallback

    @property
    def type(self) -> EventType:
        return EventType.STEP

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "impulse": [float(v) for v in self.impulse],
            "leg": self.leg,
            "source": self.source,
        }


@dataclass
class TurnEvent(GestureEvent):
    """Continuous yaw adjustment (radians, positive turns left)."""
    yaw_delta: float
    target_yaw: float
    ratio: float
    clamped: bool = False

    @property
    def type(self) -> EventType:
        return EventType.TURN

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "yaw_delta": self.yaw_delta,
            "target_yaw": self.target_yaw,
            "ratio": self.ratio,
            "clamped": self.clamped,
        }


@dataclass
class PunchHit:
    """One object inside the punch radius."""
    category: str  # "resources", "hostiles" or "fauna"
    handle: Any
    position: np.ndarray


@dataclass
class PunchEvent(GestureEvent):
    hand: str
    position: np.ndarray
    velocity: float
    elbow_angle: float
    hits: list[PunchHit] = field(default_factory=list)

    @property
    def type(self) -> EventType:
        return EventType.PUNCH

    def to_dict(self) -> dict:
        return {
            **super().to_dict(),
            "hand": self.hand,
            "position": [float(v) for v in self.position],
            "velocity": self.velocity,
            "elbow_angle": self.elbow_angle,
            "hits": [
                {"category": h.category, "handle": str(h.handle),
                 "position": [float(v) for v in h.position]}
                for h in self.hits
            ],
        }
