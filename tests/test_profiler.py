"""Tests for the pipeline profiler."""

import time

from motion_engine.profiler import PipelineProfiler


class TestPipelineProfiler:
    def test_stage_timing(self):
        profiler = PipelineProfiler()
        with profiler.stage("fusion"):
            time.sleep(0.001)

        stats = profiler.get_stage_stats("fusion")
        assert stats is not None
        assert stats.call_count == 1
        assert stats.avg_ms >= 0.5

    def test_call_count(self):
        profiler = PipelineProfiler()
        for _ in range(10):
            with profiler.stage("walk"):
                pass
        assert profiler.get_stage_stats("walk").call_count == 10

    def test_unknown_stage_added(self):
        profiler = PipelineProfiler()
        with profiler.stage("classifier"):
            pass
        assert "classifier" in profiler.summary()

    def test_summary_skips_idle_stages(self):
        profiler = PipelineProfiler()
        with profiler.stage("turn"):
            pass
        summary = profiler.summary()
        assert "turn" in summary
        assert "punch" not in summary
        assert "avg_ms" in summary["turn"]

    def test_disabled(self):
        profiler = PipelineProfiler()
        profiler.enabled = False
        with profiler.frame():
            with profiler.stage("fusion"):
                pass
        assert profiler.get_stage_stats("fusion") is None
        assert profiler.frames == 0

    def test_frame_budget(self):
        profiler = PipelineProfiler(frame_budget_ms=1.0)
        with profiler.frame():
            pass
        with profiler.frame():
            time.sleep(0.005)
        assert profiler.frames == 2
        assert profiler.over_budget >= 1
        assert profiler.summary()["budget"]["frames"] == 2

    def test_slowest_stage(self):
        profiler = PipelineProfiler()
        with profiler.stage("fusion"):
            pass
        with profiler.stage("punch"):
            time.sleep(0.005)
        with profiler.frame():
            time.sleep(0.01)
        assert profiler.slowest_stage() == "punch"

    def test_window_bounds_history(self):
        profiler = PipelineProfiler(window_size=5)
        for _ in range(20):
            with profiler.stage("walk"):
                pass
        assert len(profiler._timings["walk"]) == 5
        assert profiler.get_stage_stats("walk").call_count == 20

    def test_reset(self):
        profiler = PipelineProfiler()
        with profiler.stage("fusion"):
            pass
        with profiler.frame():
            pass
        profiler.reset()
        assert profiler.get_stage_stats("fusion") is None
        assert profiler.frames == 0
        assert profiler.summary() == {}
