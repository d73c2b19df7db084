"""Per-frame motion pipeline: pose sources → fusion → smoothing → detectors.

    pipeline = MotionPipeline(store=JsonFileStore("~/.motion_engine.json"))
    pipeline.on_event(lambda e: print(e.type.value))
    pipeline.start_tracking()
    for frame in frames:
        pipeline.process_frame(frame)
    pipeline.stop_tracking()
"""

from __future__ import annotations

import logging
import time
from collections import Counter, deque
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Protocol

from motion_engine.classifier import OnlineClassifier
from motion_engine.config import EngineConfig
from motion_engine.context import DetectionContext, PlayerState, World
from motion_engine.detectors import PunchDetector, TurnDetector, WalkDetector
from motion_engine.errors import AcquisitionFault, InputFault
from motion_engine.events import GestureEvent
from motion_engine.experience import ExperienceLedger
from motion_engine.fusion import KeypointFusionEngine, SmoothingFilter
from motion_engine.keypoints import FusedSkeleton, primary_to_skeleton, secondary_to_skeleton
from motion_engine.profile import CalibrationProfile
from motion_engine.profiler import PipelineProfiler
from motion_engine.storage import KeyValueStore, MemoryStore

logger = logging.getLogger("motion_engine.pipeline")


@dataclass
class PoseFrame:
    """Raw output of both pose estimators for one captured frame.

    ``primary`` is a list of MediaPipe-style landmarks (x, y, z,
    visibility); ``secondary`` a list of MoveNet-style keypoints (pixel
    x, y, id or name, score). Either may be None when that source had
    nothing new for this frame.
    """
    timestamp: float
    primary: Optional[list[Any]] = None
    secondary: Optional[list[Any]] = None
    frame_size: tuple[int, int] = (640, 480)


class PoseSource(Protocol):
    def open(self) -> None: ...

    def close(self) -> None: ...


@dataclass
class PipelineStats:
    """Runtime performance statistics."""
    fps: float
    avg_latency_ms: float
    total_frames: int
    total_events: int
    tracking: bool
    enabled: bool
    event_counts: dict = field(default_factory=dict)
    profiler_summary: dict = field(default_factory=dict)


class MotionPipeline:
    """End-to-end pipeline turning pose frames into control events.

    Owns one instance of each component and the ``DetectionContext`` they
    share. All persisted state goes through ``store``.

    Args:
        config: Tunables; defaults to ``EngineConfig()``.
        store: Key/value store for profile, XP, training queue and model.
        source: Optional pose source opened by ``start_tracking``.
        world: Punchable objects; the caller may mutate its lists freely.
        classifier_executor: Executor for background retraining.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[KeyValueStore] = None,
        source: Optional[PoseSource] = None,
        world: Optional[World] = None,
        player: Optional[PlayerState] = None,
        classifier_executor: Optional[Executor] = None,
        enable_profiling: bool = True,
    ):
        self.config = config or EngineConfig()
        self.store = store if store is not None else MemoryStore()
        self.source = source

        self.ledger = ExperienceLedger(self.store)
        self.classifier = OnlineClassifier(
            store=self.store,
            ledger=self.ledger,
            capacity=self.config.training_capacity,
            retrain_interval=self.config.retrain_interval,
            min_examples=self.config.retrain_min_examples,
            epochs=self.config.training_epochs,
            xp_scale=self.config.training_xp_scale,
            executor=classifier_executor,
        )
        self.profile = CalibrationProfile(
            store=self.store,
            classifier=self.classifier,
            window_capacity=self.config.window_capacity,
        )
        self.context = DetectionContext(
            profile=self.profile,
            ledger=self.ledger,
            player=player or PlayerState(speed=self.config.character_speed),
            world=world or World(),
        )

        self.fusion = KeypointFusionEngine(self.config.confidence_threshold)
        self.smoothing = SmoothingFilter(self.config.smoothing_factor)
        self.walk = WalkDetector(self.config)
        self.turn = TurnDetector(self.config)
        self.punch = PunchDetector(self.config)

        self.profiler = PipelineProfiler()
        self.profiler.enabled = enable_profiling

        self._callbacks: list[Callable[[GestureEvent], None]] = []
        self._frame_times: deque = deque(maxlen=60)
        self._event_counts: Counter = Counter()
        self._total_frames = 0
        self._tracking = False
        self.enabled = True
        self.last_skeleton: Optional[FusedSkeleton] = None

    def on_event(self, callback: Callable[[GestureEvent], None]):
        """Register a callback for every emitted event."""
        self._callbacks.append(callback)

    @property
    def tracking(self) -> bool:
        return self._tracking

    def start_tracking(self) -> bool:
        """Open the pose source and begin accepting frames.

        If the source cannot be opened the pipeline is disabled and every
        frame is ignored until a later ``start_tracking`` succeeds.
        """
        if self._tracking:
            return True
        if self.source is not None:
            try:
                self.source.open()
            except AcquisitionFault as e:
                logger.error("Pose source unavailable, motion disabled: %s", e)
                self.enabled = False
                return False
        self.enabled = True
        self._tracking = True
        logger.info("Motion tracking started")
        return True

    def stop_tracking(self):
        """Stop and reset session state. Repeated calls are no-ops."""
        if not self._tracking:
            return
        self._tracking = False
        if self.source is not None:
            self.source.close()
        self.reset_session()
        logger.info("Motion tracking stopped")

    def reset_session(self):
        """Clear debounce timers, bootstrap windows and smoothing state."""
        self.fusion.reset()
        self.smoothing.reset()
        self.walk.reset()
        self.turn.reset()
        self.punch.reset()
        self.last_skeleton = None

    def start_tutorial(self):
        self.profile.start_tutorial()

    def process_frame(self, frame: PoseFrame) -> list[GestureEvent]:
        """Run one frame through fusion, smoothing and all detectors."""
        if not self._tracking or not self.enabled:
            return []

        t_start = time.monotonic()
        self._total_frames += 1
        try:
            with self.profiler.frame():
                events = self._run_detectors(frame)
        except InputFault as e:
            logger.debug("Skipping frame at %.3f: %s", frame.timestamp, e)
            return []

        for event in events:
            self._event_counts[event.type.value] += 1
            for cb in self._callbacks:
                cb(event)

        self._frame_times.append(time.monotonic() - t_start)
        return events

    def _run_detectors(self, frame: PoseFrame) -> list[GestureEvent]:
        primary = primary_to_skeleton(frame.primary) if frame.primary is not None else None
        secondary = (
            secondary_to_skeleton(frame.secondary, frame.frame_size)
            if frame.secondary is not None else None
        )

        with self.profiler.stage("fusion"):
            fused = self.fusion.fuse(primary, secondary)
        with self.profiler.stage("smoothing"):
            skeleton = self.smoothing.update(fused)
        self.last_skeleton = skeleton

        ctx = self.context
        events: list[GestureEvent] = []
        with self.profiler.stage("walk"):
            events.extend(self.walk.update(skeleton, ctx, frame.timestamp))
        with self.profiler.stage("turn"):
            events.extend(self.turn.update(skeleton, ctx, frame.timestamp))
        with self.profiler.stage("punch"):
            ratio = self.turn.distance_ratio(skeleton, ctx)
            events.extend(self.punch.update(skeleton, ctx, frame.timestamp, ratio))

        self.classifier.poll()
        return events

    def process_frames(self, frames: Iterable[PoseFrame]) -> list[GestureEvent]:
        events = []
        for frame in frames:
            events.extend(self.process_frame(frame))
        return events

    @property
    def stats(self) -> PipelineStats:
        if self._frame_times:
            avg_latency = sum(self._frame_times) / len(self._frame_times)
            fps = 1.0 / avg_latency if avg_latency > 0 else 0
        else:
            avg_latency = 0
            fps = 0

        return PipelineStats(
            fps=fps,
            avg_latency_ms=avg_latency * 1000,
            total_frames=self._total_frames,
            total_events=sum(self._event_counts.values()),
            tracking=self._tracking,
            enabled=self.enabled,
            event_counts=dict(self._event_counts),
            profiler_summary=self.profiler.summary(),
        )

    def close(self):
        """Stop tracking and wait for any in-flight retraining."""
        self.stop_tracking()
        self.classifier.shutdown()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
