"""Stateful gesture detectors: walking in place, torso turning, punching.

Each detector is a small finite-state machine driven by smoothed skeletons.
A frame missing the keypoints a detector needs is skipped by that detector
only, and leaves its state (cooldowns, oscillation flags, bootstrap
samples) untouched.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

import numpy as np

from motion_engine.config import EngineConfig
from motion_engine.context import FACING_AWAY, DetectionContext, World
from motion_engine.events import GestureEvent, PunchEvent, PunchHit, StepEvent, TurnEvent
from motion_engine.keypoints import FusedSkeleton, KeypointId
from motion_engine.profile import SampleKind

logger = logging.getLogger("motion_engine.detectors")

K = KeypointId


class GestureDetector(ABC):
    """Common interface for the per-frame detectors."""

    name: str = "detector"

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()

    @abstractmethod
    def update(
        self, skeleton: FusedSkeleton, ctx: DetectionContext, timestamp: float
    ) -> list[GestureEvent]:
        ...

    @abstractmethod
    def reset(self):
        """Forget all session state (timers, bootstrap windows, counters)."""


# ---------------------------------------------------------------------------
# Walking
# ---------------------------------------------------------------------------

class LegState(Enum):
    IDLE = "idle"
    RAISED = "raised"


class LegSignal(Enum):
    UP = "up"
    DOWN = "down"


# (state, signal) -> next state. IDLE + UP is only taken when the step
# cooldown has elapsed; otherwise the leg stays IDLE.
LEG_TRANSITIONS = {
    (LegState.IDLE, LegSignal.UP): LegState.RAISED,
    (LegState.IDLE, LegSignal.DOWN): LegState.IDLE,
    (LegState.RAISED, LegSignal.UP): LegState.RAISED,
    (LegState.RAISED, LegSignal.DOWN): LegState.IDLE,
}

LEGS = {
    "left": (K.LEFT_HIP, K.LEFT_KNEE),
    "right": (K.RIGHT_HIP, K.RIGHT_KNEE),
}


class WalkDetector(GestureDetector):
    """Detects steps from knee raises while walking in place.

    Primary signal is ``knee.y - hip.y`` per leg (negative when the knee
    rises above the threshold). When the knees are not visible but the hips
    are, the frame-to-frame vertical hip delta is used instead.

    Each IDLE→RAISED edge outside the cooldown is one step: a ``StepEvent``
    along the current facing, a ``walk`` calibration sample (seconds since
    the previous step), +1 walking XP and a stride bonus every
    ``stride_steps`` steps.
    """

    name = "walk"

    def __init__(self, config: Optional[EngineConfig] = None):
        super().__init__(config)
        self.legs: dict[str, LegState] = {}
        self.reset()

    def reset(self):
        self.legs = {leg: LegState.IDLE for leg in LEGS}
        self._last_step: Optional[float] = None
        self._last_cadence: Optional[float] = None
        self._last_hip_y: Optional[dict[str, float]] = None
        self.hip_oscillations = 0

    def update(
        self, skeleton: FusedSkeleton, ctx: DetectionContext, timestamp: float
    ) -> list[StepEvent]:
        hips = (K.LEFT_HIP, K.RIGHT_HIP)
        knees = (K.LEFT_KNEE, K.RIGHT_KNEE)
        if not skeleton.all_usable(hips):
            return []

        hip_y = {leg: float(skeleton.get(hip)[1]) for leg, (hip, _) in LEGS.items()}

        if skeleton.all_usable(knees):
            source = "knee"
            signals = {}
            for leg, (hip, knee) in LEGS.items():
                knee_height = float(skeleton.get(knee)[1] - skeleton.get(hip)[1])
                signals[leg] = LegSignal.UP if knee_height < self.config.knee_threshold else LegSignal.DOWN
        else:
            source = "hip"
            signals = {}
            for leg in LEGS:
                prev = self._last_hip_y[leg] if self._last_hip_y else hip_y[leg]
                delta = hip_y[leg] - prev
                signals[leg] = LegSignal.UP if delta > self.config.hip_threshold else LegSignal.DOWN

        self._last_hip_y = hip_y

        events = []
        for leg in LEGS:
            event = self._advance_leg(leg, signals[leg], source, ctx, timestamp)
            if event is not None:
                events.append(event)
        return events

    def _cooldown_elapsed(self, timestamp: float) -> bool:
        return self._last_step is None or timestamp - self._last_step > self.config.step_cooldown

    def _advance_leg(
        self,
        leg: str,
        signal: LegSignal,
        source: str,
        ctx: DetectionContext,
        timestamp: float,
    ) -> Optional[StepEvent]:
        state = self.legs[leg]
        if state is LegState.IDLE and signal is LegSignal.UP and not self._cooldown_elapsed(timestamp):
            return None

        new_state = LEG_TRANSITIONS[(state, signal)]
        self.legs[leg] = new_state
        if not (state is LegState.IDLE and new_state is LegState.RAISED):
            return None

        return self._accept_step(leg, source, ctx, timestamp)

    def _accept_step(
        self, leg: str, source: str, ctx: DetectionContext, timestamp: float
    ) -> StepEvent:
        self._last_step = timestamp
        if source == "hip":
            self.hip_oscillations += 1

        if self._last_cadence is None:
            cadence = ctx.profile.walking_cadence
        else:
            cadence = timestamp - self._last_cadence
        self._last_cadence = timestamp
        ctx.profile.record_sample(SampleKind.WALK, cadence)

        ctx.ledger.award_xp("walking", 1)
        if ctx.ledger.count_step() >= self.config.stride_steps:
            ctx.ledger.award_xp("walking", self.config.stride_bonus_xp)
            ctx.ledger.reset_steps()
            logger.info("Stride milestone reached, +%d walking XP", self.config.stride_bonus_xp)

        impulse = ctx.player.forward * ctx.player.speed
        return StepEvent(timestamp=timestamp, impulse=impulse, leg=leg, source=source)


# ---------------------------------------------------------------------------
# Turning
# ---------------------------------------------------------------------------

class TurnState(Enum):
    BOOTSTRAP = "bootstrap"
    ACTIVE = "active"


class TurnDetector(GestureDetector):
    """Turns the player by twisting the torso.

    Twisting foreshortens the shoulders in the image, so the inter-shoulder
    distance drops below the user's baseline. The first
    ``bootstrap_samples`` distances set that baseline. Afterwards a ratio
    below ``turn_ratio_threshold`` rotates ``ctx.player.target_yaw`` in the
    direction of the shoulder that moved most, clamped to ±90° around
    facing-away unless the ratio is below ``deep_turn_ratio``.
    """

    name = "turn"

    def __init__(self, config: Optional[EngineConfig] = None):
        super().__init__(config)
        self.reset()

    def reset(self):
        self.state = TurnState.BOOTSTRAP
        self.baseline: Optional[float] = None
        self._samples: list[float] = []
        self._last_left_x: Optional[float] = None
        self._last_right_x: Optional[float] = None

    @staticmethod
    def shoulder_distance(skeleton: FusedSkeleton) -> Optional[float]:
        if not skeleton.all_usable((K.LEFT_SHOULDER, K.RIGHT_SHOULDER)):
            return None
        delta = skeleton.get(K.RIGHT_SHOULDER)[:2] - skeleton.get(K.LEFT_SHOULDER)[:2]
        return float(np.hypot(delta[0], delta[1]))

    def distance_ratio(self, skeleton: FusedSkeleton, ctx: DetectionContext) -> Optional[float]:
        """Current shoulder distance over the baseline, or None if unknown."""
        distance = self.shoulder_distance(skeleton)
        if distance is None:
            return None
        baseline = self.baseline if self.baseline is not None else ctx.profile.baseline_shoulder_distance
        if baseline <= 0:
            return None
        return distance / baseline

    def update(
        self, skeleton: FusedSkeleton, ctx: DetectionContext, timestamp: float
    ) -> list[TurnEvent]:
        distance = self.shoulder_distance(skeleton)
        if distance is None:
            return []

        left_x = float(skeleton.get(K.LEFT_SHOULDER)[0])
        right_x = float(skeleton.get(K.RIGHT_SHOULDER)[0])
        events: list[TurnEvent] = []

        if self.state is TurnState.BOOTSTRAP:
            self._bootstrap(distance, ctx)
        else:
            event = self._turn(distance, left_x, right_x, ctx, timestamp)
            if event is not None:
                events.append(event)
            ctx.profile.record_sample(SampleKind.SHOULDER_DISTANCE, distance)

        self._last_left_x = left_x
        self._last_right_x = right_x
        return events

    def _bootstrap(self, distance: float, ctx: DetectionContext):
        self._samples.append(distance)
        if len(self._samples) < self.config.bootstrap_samples:
            return
        baseline = float(np.mean(self._samples))
        if baseline <= 0:
            self._samples.clear()
            return
        self.baseline = baseline
        self.state = TurnState.ACTIVE
        ctx.profile.set_baseline_shoulder_distance(baseline)
        logger.info("Baseline shoulder distance set: %.4f", baseline)

    def _turn(
        self,
        distance: float,
        left_x: float,
        right_x: float,
        ctx: DetectionContext,
        timestamp: float,
    ) -> Optional[TurnEvent]:
        ratio = distance / self.baseline
        if ratio >= self.config.turn_ratio_threshold:
            return None

        left_dx = left_x - self._last_left_x if self._last_left_x is not None else 0.0
        right_dx = right_x - self._last_right_x if self._last_right_x is not None else 0.0
        intensity = min((1.0 - ratio) * 2.0, 2.0)

        rotation = 0.0
        if abs(left_dx) > abs(right_dx) and left_dx > 0:
            rotation = -intensity * self.config.turn_gain  # turn right
        elif abs(right_dx) > abs(left_dx) and right_dx < 0:
            rotation = intensity * self.config.turn_gain  # turn left

        ctx.profile.record_sample(SampleKind.TURN, distance)
        if rotation == 0.0:
            return None

        player = ctx.player
        before = player.target_yaw
        wanted = before + rotation
        clamped = False
        if ratio < self.config.deep_turn_ratio:
            player.target_yaw = wanted
        else:
            low, high = FACING_AWAY - math.pi / 2, FACING_AWAY + math.pi / 2
            player.target_yaw = min(max(wanted, low), high)
            clamped = player.target_yaw != wanted

        applied = player.target_yaw - before
        if applied == 0.0:
            return None
        return TurnEvent(
            timestamp=timestamp,
            yaw_delta=applied,
            target_yaw=player.target_yaw,
            ratio=ratio,
            clamped=clamped,
        )


# ---------------------------------------------------------------------------
# Punching
# ---------------------------------------------------------------------------

ARMS = {
    "left": (K.LEFT_SHOULDER, K.LEFT_ELBOW, K.LEFT_WRIST),
    "right": (K.RIGHT_SHOULDER, K.RIGHT_ELBOW, K.RIGHT_WRIST),
}


def hand_position(wrist: np.ndarray, anchor: np.ndarray, reach: float) -> np.ndarray:
    """Project a normalized wrist landmark into world space around ``anchor``.

    The horizontal axis is mirrored so the on-screen hand matches the user.
    """
    offset = np.array([
        (0.5 - wrist[0]) * reach,
        (0.5 - wrist[1]) * reach,
        wrist[2] * reach,
    ], dtype=np.float32)
    return np.asarray(anchor, dtype=np.float32) + offset


def elbow_angle(shoulder: np.ndarray, elbow: np.ndarray, wrist: np.ndarray) -> Optional[float]:
    """Angle in degrees between upper arm and forearm directions.

    0° means the forearm continues straight along the upper arm.
    """
    upper = np.asarray(elbow, dtype=np.float64) - shoulder
    fore = np.asarray(wrist, dtype=np.float64) - elbow
    n_upper = np.linalg.norm(upper)
    n_fore = np.linalg.norm(fore)
    if n_upper < 1e-8 or n_fore < 1e-8:
        return None
    cos_angle = np.dot(upper / n_upper, fore / n_fore)
    return math.degrees(math.acos(float(np.clip(cos_angle, -1.0, 1.0))))


class PunchDetector(GestureDetector):
    """Detects forward punches and hit-tests them against the world.

    A hand punches when its forward velocity exceeds the profile's
    velocity threshold, its elbow angle exceeds the profile's angle
    threshold, and the torso is twisted (shoulder ratio below
    ``turn_ratio_threshold``). At most one punch resolves per frame, with
    hands tried in ``hand_priority`` order.
    """

    name = "punch"

    def __init__(self, config: Optional[EngineConfig] = None):
        super().__init__(config)
        self.reset()

    def reset(self):
        self._prev_pos: dict[str, Optional[np.ndarray]] = {hand: None for hand in ARMS}
        self._prev_time: dict[str, Optional[float]] = {hand: None for hand in ARMS}
        self.hand_positions: dict[str, np.ndarray] = {}

    def update(
        self,
        skeleton: FusedSkeleton,
        ctx: DetectionContext,
        timestamp: float,
        shoulder_ratio: Optional[float] = None,
    ) -> list[PunchEvent]:
        measured = {}
        for hand in self.config.hand_priority:
            m = self._measure(hand, skeleton, ctx, timestamp)
            if m is not None:
                measured[hand] = m

        if self.config.record_punch_metrics_every_frame:
            for _, velocity, angle in measured.values():
                self._record(ctx, velocity, angle)

        if shoulder_ratio is None or shoulder_ratio >= self.config.turn_ratio_threshold:
            return []

        profile = ctx.profile
        for hand in self.config.hand_priority:
            if hand not in measured:
                continue
            position, velocity, angle = measured[hand]
            if velocity > profile.punch_velocity_threshold and angle > profile.punch_elbow_angle_threshold:
                return [self._fire(hand, position, velocity, angle, ctx, timestamp)]
        return []

    def _measure(
        self, hand: str, skeleton: FusedSkeleton, ctx: DetectionContext, timestamp: float
    ) -> Optional[tuple[np.ndarray, float, float]]:
        joints = ARMS[hand]
        if not skeleton.all_usable(joints):
            return None

        shoulder, elbow, wrist = (skeleton.get(k) for k in joints)
        position = hand_position(wrist, ctx.player.position, self.config.arm_reach)
        self.hand_positions[hand] = position

        prev_pos, prev_time = self._prev_pos[hand], self._prev_time[hand]
        self._prev_pos[hand] = position
        self._prev_time[hand] = timestamp
        if prev_pos is None or prev_time is None:
            return None

        dt = timestamp - prev_time
        if dt <= 0:
            return None

        velocity = float(np.dot(position - prev_pos, ctx.player.forward) / dt)
        angle = elbow_angle(shoulder, elbow, wrist)
        if angle is None:
            return None
        return position, velocity, angle

    def _fire(
        self,
        hand: str,
        position: np.ndarray,
        velocity: float,
        angle: float,
        ctx: DetectionContext,
        timestamp: float,
    ) -> PunchEvent:
        hits = self.hit_test(position, ctx.world)
        for hit in hits:
            logger.info(
                "Punched %s with %s hand at (%.2f, %.2f, %.2f)",
                hit.category, hand, *hit.position,
            )

        if not self.config.record_punch_metrics_every_frame:
            self._record(ctx, velocity, angle)

        ctx.ledger.award_xp("punching", 1)
        mined = sum(1 for h in hits if h.category == "resources")
        if mined:
            ctx.ledger.award_xp("mining", mined)

        return PunchEvent(
            timestamp=timestamp,
            hand=hand,
            position=position,
            velocity=velocity,
            elbow_angle=angle,
            hits=hits,
        )

    def hit_test(self, position: np.ndarray, world: World) -> list[PunchHit]:
        hits = []
        for category, objects in world.categories():
            for obj in objects:
                if np.linalg.norm(obj.position - position) < self.config.punch_radius:
                    hits.append(PunchHit(category=category, handle=obj.handle, position=obj.position))
        return hits

    @staticmethod
    def _record(ctx: DetectionContext, velocity: float, angle: float):
        ctx.profile.record_sample(SampleKind.PUNCH_VELOCITY, velocity)
        ctx.profile.record_sample(SampleKind.PUNCH_ELBOW_ANGLE, angle)
