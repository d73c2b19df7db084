"""Pose session recording and replay.

Recorded sessions replay raw source output through the full pipeline, so
detector behavior can be reproduced without a camera:

    player = PosePlayer.load("session.json")
    pipeline = MotionPipeline(source=player)
    pipeline.start_tracking()
    events = pipeline.process_frames(player.play())
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional

from motion_engine.errors import AcquisitionFault
from motion_engine.pipeline import PoseFrame

FORMAT_VERSION = 1


@dataclass
class RecordedFrame:
    """One frame of raw source output, timestamps relative to session start."""
    timestamp: float
    primary: Optional[list[dict]] = None
    secondary: Optional[list[dict]] = None
    frame_size: list[int] = field(default_factory=lambda: [640, 480])
    events: list[dict] = field(default_factory=list)

    def to_pose_frame(self) -> PoseFrame:
        return PoseFrame(
            timestamp=self.timestamp,
            primary=self.primary,
            secondary=self.secondary,
            frame_size=(int(self.frame_size[0]), int(self.frame_size[1])),
        )


class PoseRecorder:
    """Captures pose frames (and optionally the events they produced).

    Usage:
        recorder = PoseRecorder()
        recorder.start()
        recorder.add_frame(frame, events)
        recorder.save("session.json")
    """

    def __init__(self):
        self._frames: list[RecordedFrame] = []
        self._origin: Optional[float] = None
        self._recording = False

    def start(self):
        self._frames = []
        self._origin = None
        self._recording = True

    def stop(self) -> int:
        """Stop recording. Returns number of frames captured."""
        self._recording = False
        return len(self._frames)

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp

    def add_frame(self, frame: PoseFrame, events: Optional[list[Any]] = None):
        if not self._recording:
            return
        if self._origin is None:
            self._origin = frame.timestamp

        self._frames.append(RecordedFrame(
            timestamp=frame.timestamp - self._origin,
            primary=_plain(frame.primary),
            secondary=_plain(frame.secondary),
            frame_size=list(frame.frame_size),
            events=[e.to_dict() for e in events or []],
        ))

    def save(self, path: str | Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": FORMAT_VERSION,
            "frame_count": len(self._frames),
            "duration": self.duration,
            "frames": [asdict(f) for f in self._frames],
        }
        with open(path, "w") as f:
            json.dump(data, f)


def _plain(points: Optional[list[Any]]) -> Optional[list[dict]]:
    """Copy landmark objects or dicts into JSON-safe dicts."""
    if points is None:
        return None
    out = []
    for p in points:
        if isinstance(p, dict):
            out.append(dict(p))
        else:
            out.append({k: getattr(p, k) for k in ("x", "y", "z", "visibility", "score", "id", "name")
                        if getattr(p, k, None) is not None})
    return out


class PosePlayer:
    """Replays a recorded session; also usable as a pipeline ``PoseSource``."""

    def __init__(self, frames: list[RecordedFrame]):
        self._frames = frames

    @classmethod
    def load(cls, path: str | Path) -> PosePlayer:
        with open(path) as f:
            data = json.load(f)

        frames = [
            RecordedFrame(
                timestamp=float(fr["timestamp"]),
                primary=fr.get("primary"),
                secondary=fr.get("secondary"),
                frame_size=fr.get("frame_size", [640, 480]),
                events=fr.get("events", []),
            )
            for fr in data.get("frames", [])
        ]
        return cls(frames)

    def open(self):
        if not self._frames:
            raise AcquisitionFault("recording has no frames")

    def close(self):
        pass

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    @property
    def duration(self) -> float:
        if not self._frames:
            return 0.0
        return self._frames[-1].timestamp

    @property
    def recorded_events(self) -> list[dict]:
        return [e for fr in self._frames for e in fr.events]

    def play(self) -> Iterator[PoseFrame]:
        """Yield all frames immediately."""
        for frame in self._frames:
            yield frame.to_pose_frame()

    def play_realtime(self, speed: float = 1.0) -> Iterator[PoseFrame]:
        """Yield frames at their recorded pace (scaled by ``speed``)."""
        start = time.monotonic()
        for frame in self.play():
            target = frame.timestamp / speed
            elapsed = time.monotonic() - start
            if target > elapsed:
                time.sleep(target - elapsed)
            yield frame
