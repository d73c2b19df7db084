"""Explicit per-session context handed to the detectors.

Holds the player state the detectors read (yaw, speed, body anchor) and
write (target yaw), the world collections punches are tested against, and
the calibration profile and experience ledger they report to.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator

import numpy as np

if TYPE_CHECKING:
    from motion_engine.experience import ExperienceLedger
    from motion_engine.profile import CalibrationProfile

FACING_AWAY = math.pi  # yaw when the player faces away from the camera


@dataclass
class PlayerState:
    position: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=np.float32))
    yaw: float = FACING_AWAY
    target_yaw: float = FACING_AWAY
    speed: float = 1.0

    @property
    def forward(self) -> np.ndarray:
        return np.array([math.sin(self.yaw), 0.0, math.cos(self.yaw)], dtype=np.float32)


@dataclass
class WorldObject:
    """Anything a punch can hit. ``handle`` is opaque to the engine."""
    handle: Any
    position: np.ndarray

    def __post_init__(self):
        self.position = np.asarray(self.position, dtype=np.float32)


@dataclass
class World:
    resources: list[WorldObject] = field(default_factory=list)
    hostiles: list[WorldObject] = field(default_factory=list)
    fauna: list[WorldObject] = field(default_factory=list)

    CATEGORIES = ("resources", "hostiles", "fauna")

    def categories(self) -> Iterator[tuple[str, list[WorldObject]]]:
        for name in self.CATEGORIES:
            yield name, getattr(self, name)


@dataclass
class DetectionContext:
    profile: CalibrationProfile
    ledger: ExperienceLedger
    player: PlayerState = field(default_factory=PlayerState)
    world: World = field(default_factory=World)
