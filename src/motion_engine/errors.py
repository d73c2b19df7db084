"""Fault taxonomy for the motion engine.

None of these are fatal to the host: callers log them and degrade to
defaults or skip the current frame.
"""

from __future__ import annotations


class MotionEngineError(Exception):
    """Base class for all motion engine faults."""


class InputFault(MotionEngineError):
    """Missing or low-confidence keypoints for a detector."""


class ConfigFault(MotionEngineError):
    """Unrecognized sample kind, skill or configuration value."""


class PersistenceFault(MotionEngineError):
    """A key/value store failed to read or write."""


class TrainingFault(MotionEngineError):
    """A classifier training batch was malformed or fitting failed."""


class AcquisitionFault(MotionEngineError):
    """The pose source could not be opened."""
