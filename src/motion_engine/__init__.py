"""MotionEngine - Full-body motion controls from dual pose estimation."""

__version__ = "0.1.0"

from motion_engine.config import EngineConfig
from motion_engine.keypoints import KeypointId, Skeleton, FusedSkeleton
from motion_engine.fusion import KeypointFusionEngine, SmoothingFilter
from motion_engine.events import EventType, GestureEvent, StepEvent, TurnEvent, PunchEvent, PunchHit
from motion_engine.context import DetectionContext, PlayerState, World, WorldObject
from motion_engine.detectors import WalkDetector, TurnDetector, PunchDetector
from motion_engine.profile import CalibrationProfile, SampleKind
from motion_engine.experience import ExperienceLedger
from motion_engine.classifier import OnlineClassifier, RetrainState
from motion_engine.storage import KeyValueStore, MemoryStore, JsonFileStore
from motion_engine.pipeline import MotionPipeline, PoseFrame
from motion_engine.recorder import PoseRecorder, PosePlayer
from motion_engine.profiler import PipelineProfiler
from motion_engine.errors import (
    MotionEngineError,
    InputFault,
    ConfigFault,
    PersistenceFault,
    TrainingFault,
    AcquisitionFault,
)
