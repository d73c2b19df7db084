"""Tests for the calibration profile and tutorial."""

import json

import pytest

from motion_engine.profile import CalibrationProfile, SampleKind, SampleWindow, TutorialState
from motion_engine.storage import PROFILE_KEY, MemoryStore


class RecordingClassifier:
    """Stands in for OnlineClassifier; remembers what it was fed."""

    def __init__(self):
        self.examples = []
        self.retrain_requests = 0

    def add_example(self, features, label):
        self.examples.append((features, label))
        return True

    def maybe_retrain(self, now=None):
        self.retrain_requests += 1
        return False


def complete_tutorial(profile, count=10):
    for _ in range(count):
        profile.record_sample(SampleKind.WALK, 0.8)
    for _ in range(count):
        profile.record_sample(SampleKind.TURN, 0.15)
    for _ in range(count):
        profile.record_sample(SampleKind.PUNCH_VELOCITY, 2.0)


class TestSampleWindow:
    def test_mean(self):
        window = SampleWindow(capacity=3)
        for v in (1.0, 2.0, 3.0):
            window.append(v)
        assert window.mean() == pytest.approx(2.0)

    def test_oldest_dropped(self):
        window = SampleWindow(capacity=3)
        for v in (1.0, 2.0, 3.0, 4.0):
            window.append(v)
        assert window.values() == [2.0, 3.0, 4.0]

    def test_empty_mean_is_none(self):
        assert SampleWindow().mean() is None


class TestDefaults:
    def test_default_thresholds(self):
        profile = CalibrationProfile()
        assert profile.baseline_shoulder_distance == pytest.approx(0.2)
        assert profile.punch_velocity_threshold == pytest.approx(0.5)
        assert profile.punch_elbow_angle_threshold == pytest.approx(20.0)
        assert profile.walking_cadence == pytest.approx(0.5)

    def test_corrupt_store_falls_back_to_defaults(self):
        profile = CalibrationProfile(store=MemoryStore({PROFILE_KEY: "{not json"}))
        assert profile.walking_cadence == pytest.approx(0.5)

    def test_non_numeric_field_ignored(self):
        store = MemoryStore({PROFILE_KEY: json.dumps({"walking_cadence": "fast", "punch_velocity_threshold": 1.5})})
        profile = CalibrationProfile(store=store)
        assert profile.walking_cadence == pytest.approx(0.5)
        assert profile.punch_velocity_threshold == pytest.approx(1.5)


class TestRecordSample:
    def test_sample_updates_threshold(self):
        profile = CalibrationProfile()
        profile.record_sample(SampleKind.WALK, 1.0)
        profile.record_sample(SampleKind.WALK, 0.6)
        assert profile.walking_cadence == pytest.approx(0.8)

    def test_turn_feeds_shoulder_window(self):
        profile = CalibrationProfile()
        profile.record_sample(SampleKind.TURN, 0.1)
        assert profile.baseline_shoulder_distance == pytest.approx(0.1)

    def test_string_kinds_and_aliases(self):
        profile = CalibrationProfile()
        assert profile.record_sample("punchVelocity", 2.0)
        assert profile.record_sample("punch_elbow_angle", 40.0)
        assert profile.punch_velocity_threshold == pytest.approx(2.0)
        assert profile.punch_elbow_angle_threshold == pytest.approx(40.0)

    def test_unknown_kind_ignored(self):
        profile = CalibrationProfile()
        assert not profile.record_sample("jump", 1.0)
        assert profile.to_dict()["walking_cadence"] == pytest.approx(0.5)

    def test_non_finite_ignored(self):
        profile = CalibrationProfile()
        assert not profile.record_sample(SampleKind.WALK, float("nan"))
        assert len(profile.windows["walking_cadence"]) == 0

    def test_window_capacity(self):
        profile = CalibrationProfile()
        for i in range(150):
            profile.record_sample(SampleKind.PUNCH_VELOCITY, float(i))
        assert len(profile.windows["punch_velocity"]) == 100
        assert profile.punch_velocity_threshold == pytest.approx(99.5)

    def test_persisted_on_update(self):
        store = MemoryStore()
        profile = CalibrationProfile(store=store)
        profile.record_sample(SampleKind.WALK, 0.9)

        restored = CalibrationProfile(store=store)
        assert restored.walking_cadence == pytest.approx(0.9)

    def test_feeds_classifier(self):
        classifier = RecordingClassifier()
        profile = CalibrationProfile(classifier=classifier)
        profile.record_sample(SampleKind.WALK, 0.5)
        profile.record_sample(SampleKind.PUNCH_ELBOW_ANGLE, 30.0)
        profile.record_sample(SampleKind.SHOULDER_DISTANCE, 0.2)
        assert [label for _, label in classifier.examples] == ["walk", "punch", "other"]
        assert classifier.retrain_requests == 3

    def test_classifier_features(self):
        classifier = RecordingClassifier()
        profile = CalibrationProfile(classifier=classifier)
        profile.record_sample(SampleKind.PUNCH_VELOCITY, 3.0)
        features, _ = classifier.examples[0]
        # shoulder, velocity, angle, cadence, kind index
        assert features == pytest.approx([0.2, 3.0, 20.0, 0.5, 3.0])


class TestTutorial:
    def test_default_steps(self):
        tutorial = TutorialState.default()
        assert [s.action for s in tutorial.steps] == ["walk", "turn", "punch"]
        assert all(s.target_count == 10 for s in tutorial.steps)
        assert tutorial.pending.action == "walk"

    def test_profile_frozen_during_tutorial(self):
        profile = CalibrationProfile()
        profile.start_tutorial()
        profile.record_sample(SampleKind.WALK, 1.0)
        assert profile.walking_cadence == pytest.approx(0.5)
        status = profile.tutorial_status()
        assert status["active"]
        assert status["pending"] == "walk"
        assert status["steps"][0]["current"] == 1

    def test_only_pending_step_counts(self):
        profile = CalibrationProfile()
        profile.start_tutorial()
        for _ in range(5):
            profile.record_sample(SampleKind.PUNCH_VELOCITY, 2.0)
        status = profile.tutorial_status()
        assert status["pending"] == "walk"
        assert status["steps"][2]["current"] == 0

    def test_steps_complete_in_order(self):
        profile = CalibrationProfile()
        profile.start_tutorial()
        for _ in range(10):
            profile.record_sample(SampleKind.WALK, 0.8)
        assert profile.tutorial_status()["pending"] == "turn"
        assert profile.walking_cadence == pytest.approx(0.5)
        assert profile.is_live("walk")
        assert not profile.is_live("punch")

    def test_completion_recalibrates(self):
        profile = CalibrationProfile()
        profile.start_tutorial()
        complete_tutorial(profile)
        assert not profile.tutorial_active
        assert profile.walking_cadence == pytest.approx(0.8)
        assert profile.baseline_shoulder_distance == pytest.approx(0.15)
        assert profile.punch_velocity_threshold == pytest.approx(2.0)
        assert profile.is_live("punch")

    def test_custom_count(self):
        profile = CalibrationProfile(tutorial_count=2)
        profile.start_tutorial()
        complete_tutorial(profile, count=2)
        assert not profile.tutorial_active

    def test_inactive_status(self):
        status = CalibrationProfile().tutorial_status()
        assert not status["active"]
        assert status["live"] == ["walk", "turn", "punch"]
