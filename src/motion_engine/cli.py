"""MotionEngine CLI.

Usage:
    motion-engine replay      Run a recorded pose session through the pipeline
    motion-engine record      Record MediaPipe pose landmarks from a camera
    motion-engine tutorial    Calibrate from a recorded session
    motion-engine profile     Show the calibration profile
    motion-engine xp          Show experience levels
    motion-engine train       Retrain the classifier on the stored queue
    motion-engine benchmark   Time the pipeline on synthetic walking frames
    motion-engine config      Write the default config as YAML
"""

from __future__ import annotations

import json
import logging
import math
import time
from pathlib import Path
from typing import Optional

import typer

from motion_engine.config import EngineConfig

app = typer.Typer(
    name="motion-engine",
    help="🏃 Turn body pose into walk, turn and punch controls.",
    add_completion=False,
)

DEFAULT_STORE = "motion_engine_state.json"


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


def _load_config(path: Optional[str]) -> EngineConfig:
    if path is None:
        return EngineConfig()
    return EngineConfig.from_yaml(path)


@app.command()
def replay(
    recording: str = typer.Argument(..., help="Path to a recorded session (.json)"),
    store: str = typer.Option(DEFAULT_STORE, help="State file for profile and XP"),
    config: Optional[str] = typer.Option(None, help="YAML config file"),
    speed: float = typer.Option(1.0, help="Playback speed multiplier"),
    realtime: bool = typer.Option(False, help="Play at original timing"),
    verbose: bool = typer.Option(False, "-v", help="Debug logging"),
):
    """Replay a recorded session and print the control events."""
    from motion_engine.pipeline import MotionPipeline
    from motion_engine.recorder import PosePlayer
    from motion_engine.storage import JsonFileStore

    _setup_logging(verbose)
    path = Path(recording)
    if not path.exists():
        typer.echo(f"❌ Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    player = PosePlayer.load(path)
    typer.echo(f"▶️  Replaying {path.name} ({player.frame_count} frames, {player.duration:.1f}s)")

    pipeline = MotionPipeline(config=_load_config(config), store=JsonFileStore(store), source=player)

    def on_event(event):
        data = event.to_dict()
        data.pop("type")
        typer.echo(f"   {event.type.value:5s} {json.dumps(data)}")

    pipeline.on_event(on_event)
    if not pipeline.start_tracking():
        typer.echo("❌ Pose source unavailable", err=True)
        raise typer.Exit(1)
    frames = player.play_realtime(speed=speed) if realtime else player.play()
    with pipeline:
        pipeline.process_frames(frames)
        stats = pipeline.stats

    typer.echo(f"\n✅ Replay complete. {stats.total_events} events: {stats.event_counts}")


@app.command()
def tutorial(
    recording: str = typer.Argument(..., help="Recorded calibration session (.json)"),
    store: str = typer.Option(DEFAULT_STORE, help="State file for profile and XP"),
    config: Optional[str] = typer.Option(None, help="YAML config file"),
    count: int = typer.Option(10, help="Repetitions per tutorial step"),
):
    """Walk, turn and punch through the calibration tutorial."""
    from motion_engine.pipeline import MotionPipeline
    from motion_engine.recorder import PosePlayer
    from motion_engine.storage import JsonFileStore

    path = Path(recording)
    if not path.exists():
        typer.echo(f"❌ Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    player = PosePlayer.load(path)
    pipeline = MotionPipeline(config=_load_config(config), store=JsonFileStore(store), source=player)
    pipeline.profile.tutorial_count = count
    if not pipeline.start_tracking():
        typer.echo("❌ Pose source unavailable", err=True)
        raise typer.Exit(1)
    pipeline.start_tutorial()

    pending = None
    with pipeline:
        for frame in player.play():
            pipeline.process_frame(frame)
            status = pipeline.profile.tutorial_status()
            if not status["active"]:
                break
            if status["pending"] != pending:
                pending = status["pending"]
                typer.echo(f"🎯 {status['message']}")

        status = pipeline.profile.tutorial_status()

    if status["active"]:
        typer.echo(f"\n⏸  Tutorial incomplete: {status['message']}")
        return

    typer.echo("\n✅ Calibration complete")
    for key, value in pipeline.profile.to_dict().items():
        if key != "last_updated":
            typer.echo(f"   {key:30s} {value:.4f}")


@app.command()
def record(
    output: str = typer.Option("session.json", "-o", help="Output file path"),
    duration: float = typer.Option(0, help="Recording duration in seconds (0 = until Ctrl+C)"),
    camera: int = typer.Option(0, help="Camera device index"),
):
    """Record MediaPipe pose landmarks from the camera."""
    import cv2
    from motion_engine.detector import PoseDetector
    from motion_engine.errors import AcquisitionFault
    from motion_engine.pipeline import PoseFrame
    from motion_engine.recorder import PoseRecorder

    cap = cv2.VideoCapture(camera)
    if not cap.isOpened():
        typer.echo(f"❌ Could not open camera {camera}", err=True)
        raise typer.Exit(1)

    detector = PoseDetector()
    try:
        detector.open()
    except AcquisitionFault as e:
        cap.release()
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    recorder = PoseRecorder()
    typer.echo(f"🎥 Recording from camera {camera}... Ctrl+C to stop")
    recorder.start()
    start = time.monotonic()

    try:
        while True:
            ret, frame = cap.read()
            if not ret:
                continue
            height, width = frame.shape[:2]
            landmarks = detector.detect(cv2.cvtColor(frame, cv2.COLOR_BGR2RGB))
            recorder.add_frame(PoseFrame(
                timestamp=time.monotonic(),
                primary=landmarks,
                frame_size=(width, height),
            ))
            if recorder.frame_count % 30 == 0:
                typer.echo(f"\r   Frames: {recorder.frame_count} | {time.monotonic() - start:.1f}s", nl=False)
            if duration > 0 and (time.monotonic() - start) >= duration:
                break
    except KeyboardInterrupt:
        pass
    finally:
        recorder.stop()
        cap.release()
        detector.close()

    recorder.save(output)
    typer.echo(f"\n💾 Saved {recorder.frame_count} frames ({recorder.duration:.1f}s) to {output}")


@app.command()
def profile(
    store: str = typer.Option(DEFAULT_STORE, help="State file"),
):
    """Show the calibration profile."""
    from motion_engine.profile import CalibrationProfile
    from motion_engine.storage import JsonFileStore

    prof = CalibrationProfile(store=JsonFileStore(store))
    typer.echo("📐 Calibration profile")
    for key, value in prof.to_dict().items():
        if key == "last_updated":
            value = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(value))
        typer.echo(f"   {key:30s} {value}")


@app.command()
def xp(
    store: str = typer.Option(DEFAULT_STORE, help="State file"),
):
    """Show experience levels per skill."""
    from motion_engine.experience import LEVEL_XP, ExperienceLedger
    from motion_engine.storage import JsonFileStore

    ledger = ExperienceLedger(JsonFileStore(store))
    typer.echo("⭐ Experience")
    for name, record in ledger:
        typer.echo(f"   {name:10s} level {record.level:3d}  {record.xp}/{LEVEL_XP} xp  ({record.total} total)")
    typer.echo(f"   steps toward stride bonus: {ledger.steps}")


@app.command()
def train(
    store: str = typer.Option(DEFAULT_STORE, help="State file"),
    epochs: int = typer.Option(10, help="Training epochs"),
):
    """Run one classifier pass on the stored training queue."""
    from motion_engine.classifier import OnlineClassifier
    from motion_engine.experience import ExperienceLedger
    from motion_engine.storage import JsonFileStore

    state = JsonFileStore(store)
    classifier = OnlineClassifier(store=state, ledger=ExperienceLedger(state), epochs=epochs)
    typer.echo(f"📊 Training queue: {len(classifier)} examples")

    if not classifier.maybe_retrain():
        typer.echo(f"❌ Need at least {classifier.min_examples} examples", err=True)
        raise typer.Exit(1)
    result = classifier.wait()
    classifier.shutdown()

    if result is None:
        typer.echo("❌ Training failed, see log", err=True)
        raise typer.Exit(1)
    typer.echo(f"✅ Accuracy: {result['accuracy']:.1%}  Loss: {result['loss']:.4f}")


def _synthetic_pose(t: float) -> list[dict]:
    """A standing figure alternately raising each knee at 1 Hz."""
    landmarks = [{"x": 0.5, "y": 0.5, "z": 0.0, "visibility": 0.0} for _ in range(33)]

    def put(index, x, y, z=0.0):
        landmarks[index] = {"x": x, "y": y, "z": z, "visibility": 0.9}

    put(11, 0.60, 0.30)  # shoulders
    put(12, 0.40, 0.30)
    put(13, 0.65, 0.42)  # elbows
    put(14, 0.35, 0.42)
    put(15, 0.66, 0.52)  # wrists
    put(16, 0.34, 0.52)
    put(23, 0.56, 0.60)  # hips
    put(24, 0.44, 0.60)
    phase = math.sin(2 * math.pi * t)
    put(25, 0.56, 0.75 - max(phase, 0) * 0.3)  # knees
    put(26, 0.44, 0.75 - max(-phase, 0) * 0.3)
    return landmarks


@app.command()
def benchmark(
    frames: int = typer.Option(1000, help="Number of frames"),
    fps: float = typer.Option(30.0, help="Simulated capture rate"),
    config: Optional[str] = typer.Option(None, help="YAML config file"),
):
    """Time the pipeline on synthetic walking frames."""
    from motion_engine.pipeline import MotionPipeline, PoseFrame

    typer.echo(f"⚡ Running benchmark: {frames} frames at {fps:.0f} FPS")
    pipeline = MotionPipeline(config=_load_config(config))
    pipeline.start_tracking()

    t0 = time.perf_counter()
    for i in range(frames):
        t = i / fps
        pipeline.process_frame(PoseFrame(timestamp=t, primary=_synthetic_pose(t)))
    elapsed = time.perf_counter() - t0
    stats = pipeline.stats
    pipeline.close()

    typer.echo(f"\n📊 Results:")
    typer.echo(f"   Average latency: {elapsed / frames * 1000:.3f} ms")
    typer.echo(f"   Events:          {stats.event_counts}")
    typer.echo(f"\n📈 Stage breakdown:")
    for name, s in stats.profiler_summary.items():
        if "avg_ms" in s:
            typer.echo(f"   {name:10s} avg={s['avg_ms']:.3f}ms  p95={s['p95_ms']:.3f}ms")


@app.command("config")
def write_config(
    output: str = typer.Option("motion_engine.yml", "-o", help="Output YAML path"),
):
    """Write the default configuration to a YAML file."""
    EngineConfig().to_yaml(output)
    typer.echo(f"💾 Default config written to {output}")


def main():
    app()


if __name__ == "__main__":
    main()
