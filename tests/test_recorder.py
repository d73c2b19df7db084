"""Tests for pose session recording and replay."""

import json
from types import SimpleNamespace

import pytest

from motion_engine.config import EngineConfig
from motion_engine.errors import AcquisitionFault
from motion_engine.events import StepEvent
from motion_engine.pipeline import MotionPipeline, PoseFrame
from motion_engine.recorder import FORMAT_VERSION, PosePlayer, PoseRecorder, RecordedFrame
from motion_engine.storage import MemoryStore


def make_landmarks(left_lift=0.0):
    lms = [{"x": 0.5, "y": 0.5, "z": 0.0, "visibility": 0.0} for _ in range(33)]
    for i, (x, y) in {
        11: (0.6, 0.3), 12: (0.4, 0.3), 23: (0.56, 0.6), 24: (0.44, 0.6),
        25: (0.56, 0.75 - left_lift), 26: (0.44, 0.75),
    }.items():
        lms[i] = {"x": x, "y": y, "z": 0.0, "visibility": 0.9}
    return lms


def make_frames(start=10.0):
    frames = [PoseFrame(timestamp=start, primary=make_landmarks())]
    for i in range(1, 11):
        frames.append(PoseFrame(timestamp=start + i / 30.0, primary=make_landmarks(0.3)))
    return frames


def make_pipeline(source=None):
    config = EngineConfig(retrain_min_examples=1_000_000)
    return MotionPipeline(config=config, store=MemoryStore(), source=source)


class TestRecorder:
    def test_record_and_count(self):
        rec = PoseRecorder()
        rec.start()
        for frame in make_frames():
            rec.add_frame(frame)
        assert rec.stop() == 11

    def test_not_recording_ignores_frames(self):
        rec = PoseRecorder()
        rec.add_frame(make_frames()[0])
        assert rec.frame_count == 0

    def test_timestamps_relative_to_start(self):
        rec = PoseRecorder()
        rec.start()
        for frame in make_frames(start=100.0):
            rec.add_frame(frame)
        assert rec.duration == pytest.approx(10 / 30.0)

    def test_landmark_objects_flattened(self, tmp_path):
        rec = PoseRecorder()
        rec.start()
        objs = [SimpleNamespace(x=0.1, y=0.2, z=0.0, visibility=0.9) for _ in range(33)]
        rec.add_frame(PoseFrame(timestamp=0.0, primary=objs))
        rec.save(tmp_path / "objs.json")
        data = json.loads((tmp_path / "objs.json").read_text())
        assert data["frames"][0]["primary"][0] == {"x": 0.1, "y": 0.2, "z": 0.0, "visibility": 0.9}

    def test_save_and_load(self, tmp_path):
        rec = PoseRecorder()
        rec.start()
        step = StepEvent(timestamp=0.1, impulse=[0.0, 0.0, -1.0], leg="left")
        frames = make_frames()
        rec.add_frame(frames[0], [step])
        for frame in frames[1:]:
            rec.add_frame(frame)
        rec.stop()

        path = tmp_path / "sub" / "session.json"
        rec.save(path)
        data = json.loads(path.read_text())
        assert data["version"] == FORMAT_VERSION
        assert data["frame_count"] == 11

        player = PosePlayer.load(path)
        assert player.frame_count == 11
        assert player.recorded_events[0]["type"] == "step"
        assert player.recorded_events[0]["leg"] == "left"


class TestPlayer:
    def test_play_yields_pose_frames(self):
        player = PosePlayer([RecordedFrame(timestamp=0.5, secondary=[], frame_size=[320, 240])])
        frame = next(player.play())
        assert isinstance(frame, PoseFrame)
        assert frame.frame_size == (320, 240)
        assert frame.primary is None

    def test_empty_recording_cannot_open(self):
        with pytest.raises(AcquisitionFault):
            PosePlayer([]).open()

    def test_empty_recording_disables_pipeline(self):
        pipeline = make_pipeline(source=PosePlayer([]))
        assert not pipeline.start_tracking()
        assert not pipeline.enabled

    def test_replay_reproduces_events(self, tmp_path):
        live = make_pipeline()
        live.start_tracking()
        rec = PoseRecorder()
        rec.start()
        live_events = []
        for frame in make_frames():
            events = live.process_frame(frame)
            live_events += events
            rec.add_frame(frame, events)
        rec.save(tmp_path / "session.json")

        player = PosePlayer.load(tmp_path / "session.json")
        replay = make_pipeline(source=player)
        assert replay.start_tracking()
        replayed = replay.process_frames(player.play())
        assert [e.type for e in replayed] == [e.type for e in live_events]
        assert len(player.recorded_events) == len(live_events)

    def test_realtime_speed(self):
        frames = [RecordedFrame(timestamp=t) for t in (0.0, 0.01, 0.02)]
        assert len(list(PosePlayer(frames).play_realtime(speed=10.0))) == 3
