"""End-to-end tests for the motion pipeline."""

import numpy as np
import pytest

from motion_engine.config import EngineConfig
from motion_engine.context import World, WorldObject
from motion_engine.detectors import LegState, TurnState
from motion_engine.errors import AcquisitionFault
from motion_engine.events import EventType
from motion_engine.pipeline import MotionPipeline, PoseFrame
from motion_engine.storage import MemoryStore

FPS = 30.0


def make_landmarks(left_lift=0.0, right_lift=0.0, visibility=0.9):
    """MediaPipe-style standing pose; ``*_lift`` raises a knee."""
    lms = [{"x": 0.5, "y": 0.5, "z": 0.0, "visibility": 0.0} for _ in range(33)]

    def put(i, x, y):
        lms[i] = {"x": x, "y": y, "z": 0.0, "visibility": visibility}

    put(11, 0.6, 0.3)
    put(12, 0.4, 0.3)
    put(23, 0.56, 0.6)
    put(24, 0.44, 0.6)
    put(25, 0.56, 0.75 - left_lift)
    put(26, 0.44, 0.75 - right_lift)
    return lms


def make_movenet(left_lift=0.0, width=640, height=480):
    """Same pose as MoveNet pixel keypoints."""
    pose = {
        5: (0.6, 0.3), 6: (0.4, 0.3),
        11: (0.56, 0.6), 12: (0.44, 0.6),
        13: (0.56, 0.75 - left_lift), 14: (0.44, 0.75),
    }
    return [
        {"id": i, "x": x * width, "y": y * height, "score": 0.8}
        for i, (x, y) in pose.items()
    ]


def quiet_config(**kwargs):
    """No background retraining during pipeline tests."""
    return EngineConfig(retrain_min_examples=1_000_000, **kwargs)


def make_pipeline(**kwargs):
    kwargs.setdefault("config", quiet_config())
    kwargs.setdefault("store", MemoryStore())
    pipeline = MotionPipeline(**kwargs)
    return pipeline


def step_frames(start=0, lift=0.3):
    """One standing frame then the left knee held up for 10 frames."""
    frames = [PoseFrame(timestamp=start / FPS, primary=make_landmarks())]
    for i in range(1, 11):
        frames.append(PoseFrame(timestamp=(start + i) / FPS, primary=make_landmarks(left_lift=lift)))
    return frames


def standing_frames(start, count):
    return [PoseFrame(timestamp=(start + i) / FPS, primary=make_landmarks()) for i in range(count)]


class FakeSource:
    def __init__(self, fail=False):
        self.fail = fail
        self.opened = 0
        self.closed = 0

    def open(self):
        if self.fail:
            raise AcquisitionFault("no camera")
        self.opened += 1

    def close(self):
        self.closed += 1


class TestLifecycle:
    def test_frames_ignored_until_tracking(self):
        pipeline = make_pipeline()
        assert pipeline.process_frames(step_frames()) == []
        assert pipeline.stats.total_frames == 0

    def test_source_failure_disables(self):
        pipeline = make_pipeline(source=FakeSource(fail=True))
        assert not pipeline.start_tracking()
        assert not pipeline.enabled
        assert pipeline.process_frames(step_frames()) == []

    def test_start_opens_source_once(self):
        source = FakeSource()
        pipeline = make_pipeline(source=source)
        assert pipeline.start_tracking()
        assert pipeline.start_tracking()
        assert source.opened == 1

    def test_double_stop_is_noop(self):
        source = FakeSource()
        pipeline = make_pipeline(source=source)
        pipeline.start_tracking()
        pipeline.stop_tracking()
        pipeline.stop_tracking()
        assert source.closed == 1
        assert not pipeline.tracking

    def test_stop_resets_session(self):
        pipeline = make_pipeline()
        pipeline.start_tracking()
        pipeline.process_frames(step_frames())
        assert pipeline.walk.legs["left"] is LegState.RAISED
        assert pipeline.turn.state is TurnState.ACTIVE

        pipeline.stop_tracking()
        assert pipeline.walk.legs["left"] is LegState.IDLE
        assert pipeline.turn.state is TurnState.BOOTSTRAP
        assert pipeline.last_skeleton is None

    def test_context_manager_closes(self):
        source = FakeSource()
        with make_pipeline(source=source) as pipeline:
            pipeline.start_tracking()
        assert source.closed == 1


class TestEvents:
    def test_knee_raise_steps_after_smoothing(self):
        pipeline = make_pipeline()
        pipeline.start_tracking()
        events = pipeline.process_frames(step_frames())
        steps = [e for e in events if e.type == EventType.STEP]
        assert len(steps) == 1
        assert steps[0].leg == "left"

    def test_small_lift_is_not_a_step(self):
        pipeline = make_pipeline()
        pipeline.start_tracking()
        assert pipeline.process_frames(step_frames(lift=0.1)) == []

    def test_callbacks_receive_events(self):
        pipeline = make_pipeline()
        received = []
        pipeline.on_event(received.append)
        pipeline.start_tracking()
        events = pipeline.process_frames(step_frames())
        assert received == events

    def test_secondary_source_alone(self):
        pipeline = make_pipeline()
        pipeline.start_tracking()
        frames = [PoseFrame(timestamp=0.0, secondary=make_movenet())]
        frames += [PoseFrame(timestamp=i / FPS, secondary=make_movenet(left_lift=0.3)) for i in range(1, 11)]
        events = pipeline.process_frames(frames)
        assert [e.leg for e in events] == ["left"]

    def test_both_sources_fused(self):
        pipeline = make_pipeline()
        pipeline.start_tracking()
        pipeline.process_frame(PoseFrame(timestamp=0.0, primary=make_landmarks(), secondary=make_movenet()))
        np.testing.assert_allclose(pipeline.last_skeleton.points[11][:2], [0.56, 0.6], atol=1e-5)

    def test_bad_frame_skipped(self):
        pipeline = make_pipeline()
        pipeline.start_tracking()
        frame = PoseFrame(timestamp=0.0, secondary=make_movenet(), frame_size=(0, 0))
        assert pipeline.process_frame(frame) == []
        assert pipeline.process_frames(step_frames(start=1)) != []

    def test_nan_landmark_does_not_stall_walking(self):
        pipeline = make_pipeline()
        pipeline.start_tracking()
        assert len(pipeline.process_frames(step_frames())) == 1
        pipeline.process_frames(standing_frames(11, 20))

        lms = make_landmarks()
        lms[25]["y"] = float("nan")
        pipeline.process_frame(PoseFrame(timestamp=31 / FPS, primary=lms))
        pipeline.process_frames(standing_frames(32, 9))

        events = pipeline.process_frames(step_frames(start=41))
        assert [e.leg for e in events] == ["left"]
        assert np.isfinite(pipeline.smoothing.state).all()

    def test_missing_person_keeps_going(self):
        pipeline = make_pipeline()
        pipeline.start_tracking()
        assert pipeline.process_frame(PoseFrame(timestamp=0.0)) == []
        assert pipeline.process_frame(PoseFrame(timestamp=0.1, primary=make_landmarks(visibility=0.1))) == []

    def test_world_is_shared_with_detectors(self):
        world = World(resources=[WorldObject("rock", [0.0, 0.0, 0.0])])
        pipeline = make_pipeline(world=world)
        assert pipeline.context.world is world


class TestState:
    def test_xp_persists_across_sessions(self):
        store = MemoryStore()
        pipeline = make_pipeline(store=store)
        pipeline.start_tracking()
        pipeline.process_frames(step_frames())
        pipeline.close()

        again = make_pipeline(store=store)
        assert again.ledger.get("walking").total == 1
        assert again.ledger.steps == 1

    def test_turn_baseline_stored_in_profile(self):
        pipeline = make_pipeline()
        pipeline.start_tracking()
        pipeline.process_frames(step_frames())
        assert pipeline.profile.baseline_shoulder_distance == pytest.approx(0.2, rel=1e-3)

    def test_stats(self):
        pipeline = make_pipeline()
        pipeline.start_tracking()
        pipeline.process_frames(step_frames())
        stats = pipeline.stats
        assert stats.total_frames == 11
        assert stats.event_counts == {"step": 1}
        assert stats.tracking
        assert "walk" in stats.profiler_summary
        assert stats.profiler_summary["budget"]["frames"] == 11

    def test_profiling_can_be_disabled(self):
        pipeline = make_pipeline(enable_profiling=False)
        pipeline.start_tracking()
        pipeline.process_frames(step_frames())
        assert pipeline.stats.profiler_summary == {}

    def test_tutorial_gates_calibration(self):
        pipeline = make_pipeline()
        pipeline.start_tracking()
        pipeline.start_tutorial()
        pipeline.process_frames(step_frames())
        status = pipeline.profile.tutorial_status()
        assert status["pending"] == "walk"
        assert status["steps"][0]["current"] == 1
        assert pipeline.profile.walking_cadence == pytest.approx(0.5)
