"""Tunable constants for the motion pipeline.

Defaults match the values the detectors were tuned with. Override them from
a YAML file:

    smoothing_factor: 0.6
    step_cooldown: 0.25
    hand_priority: [right, left]
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

import yaml

from motion_engine.errors import ConfigFault

logger = logging.getLogger("motion_engine.config")


@dataclass
class EngineConfig:
    """All thresholds, gains and capacities used by the pipeline."""

    # Fusion / smoothing
    confidence_threshold: float = 0.5
    smoothing_factor: float = 0.7

    # Walking
    knee_threshold: float = -0.05
    hip_threshold: float = 0.02
    step_cooldown: float = 0.3  # seconds
    character_speed: float = 1.0
    stride_steps: int = 2112  # ~1 mile of steps
    stride_bonus_xp: int = 100

    # Turning
    turn_ratio_threshold: float = 0.9
    deep_turn_ratio: float = 0.5
    turn_gain: float = 0.1  # radians per frame at intensity 1
    bootstrap_samples: int = 10

    # Punching
    arm_reach: float = 0.8
    punch_radius: float = 0.8
    hand_priority: list[str] = field(default_factory=lambda: ["left", "right"])
    record_punch_metrics_every_frame: bool = False

    # Calibration / training
    window_capacity: int = 100
    training_capacity: int = 1000
    retrain_interval: float = 5.0  # seconds
    retrain_min_examples: int = 10
    training_epochs: int = 10
    training_xp_scale: float = 50.0

    def __post_init__(self):
        if not 0.0 <= self.smoothing_factor < 1.0:
            raise ConfigFault(f"smoothing_factor must be in [0, 1), got {self.smoothing_factor}")
        if sorted(self.hand_priority) != ["left", "right"]:
            raise ConfigFault(f"hand_priority must order 'left' and 'right', got {self.hand_priority}")
        if self.window_capacity < 1 or self.training_capacity < 1:
            raise ConfigFault("capacities must be positive")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> EngineConfig:
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        for key in sorted(unknown):
            logger.warning("Ignoring unknown config key: %s", key)
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_yaml(cls, path: str | Path) -> EngineConfig:
        """Load config from a YAML file. Missing keys keep their defaults."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigFault(f"{path}: expected a mapping at top level")
        return cls.from_dict(data)

    def to_yaml(self, path: str | Path):
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
