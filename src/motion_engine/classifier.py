"""Online action classifier trained from calibration samples.

Every recorded calibration sample becomes a training example. A small MLP
is retrained in the background at most once per interval, warm-started
from the previous weights so the model keeps learning across sessions.

Retraining is modelled as a task with three states:

    IDLE ──request──▶ RUNNING ──request──▶ PENDING_RERUN
      ▲                  │                      │
      └────finished──────┘◀────finished, rerun──┘

A request while RUNNING only flags PENDING_RERUN; there is never more than
one queued pass. Results are collected by ``poll()`` on the frame path, so
the worker thread never writes classifier state itself.
"""

from __future__ import annotations

import base64
import io
import logging
import time
from collections import deque
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

import numpy as np

from motion_engine.errors import TrainingFault
from motion_engine.storage import (
    MODEL_KEY,
    TRAINING_QUEUE_KEY,
    KeyValueStore,
    MemoryStore,
    load_json,
    persist,
)

if TYPE_CHECKING:
    from motion_engine.experience import ExperienceLedger

logger = logging.getLogger("motion_engine.classifier")

LABELS = ["walk", "punch", "other"]
FEATURE_DIM = 5


class RetrainState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PENDING_RERUN = "pending_rerun"


@dataclass
class TrainingExample:
    features: list[float]
    label: list[float]  # one-hot over LABELS

    @classmethod
    def create(cls, features: list[float], label: str) -> TrainingExample:
        one_hot = [0.0] * len(LABELS)
        one_hot[LABELS.index(label)] = 1.0
        return cls(features=[float(f) for f in features], label=one_hot)

    @property
    def label_name(self) -> str:
        return LABELS[int(np.argmax(self.label))]

    def to_dict(self) -> dict:
        return {"features": self.features, "label": self.label}

    @classmethod
    def from_dict(cls, data: dict) -> TrainingExample:
        features = [float(f) for f in data["features"]]
        label = [float(v) for v in data["label"]]
        if len(features) != FEATURE_DIM or len(label) != len(LABELS):
            raise ValueError("bad example shape")
        return cls(features=features, label=label)


def _build_model():
    import torch.nn as nn

    return nn.Sequential(
        nn.Linear(FEATURE_DIM, 64),
        nn.ReLU(),
        nn.Linear(64, 32),
        nn.ReLU(),
        nn.Linear(32, len(LABELS)),
    )


def fit_examples(
    features: np.ndarray,
    targets: np.ndarray,
    initial_state: Optional[dict] = None,
    epochs: int = 10,
    lr: float = 0.001,
) -> dict:
    """Train the MLP on one batch. Runs on the worker thread.

    Args:
        features: Shape (N, FEATURE_DIM).
        targets: Class indices, shape (N,).
        initial_state: Previous ``state_dict`` to warm-start from.

    Returns:
        Dict with ``state`` (new state_dict), ``loss`` and ``accuracy``.
    """
    import torch
    import torch.nn as nn
    from torch.utils.data import DataLoader, TensorDataset

    if features.ndim != 2 or features.shape[1] != FEATURE_DIM or len(features) != len(targets):
        raise TrainingFault(f"malformed batch: features {features.shape}, targets {targets.shape}")
    if not np.all(np.isfinite(features)):
        raise TrainingFault("non-finite feature values in batch")

    model = _build_model()
    if initial_state is not None:
        model.load_state_dict(initial_state)

    dataset = TensorDataset(
        torch.FloatTensor(features),
        torch.LongTensor(targets),
    )
    loader = DataLoader(dataset, batch_size=32, shuffle=True)
    optimizer = torch.optim.Adam(model.parameters(), lr=lr)
    criterion = nn.CrossEntropyLoss()

    model.train()
    final_loss = 0.0
    correct = 0
    total = 0

    for epoch in range(epochs):
        epoch_loss = 0.0
        correct = 0
        total = 0

        for batch_x, batch_y in loader:
            optimizer.zero_grad()
            logits = model(batch_x)
            loss = criterion(logits, batch_y)
            loss.backward()
            optimizer.step()

            epoch_loss += loss.item()
            _, predicted = torch.max(logits, 1)
            correct += (predicted == batch_y).sum().item()
            total += batch_y.size(0)

        final_loss = epoch_loss / len(loader)

    model.eval()
    accuracy = correct / total if total > 0 else 0.0
    return {"state": model.state_dict(), "loss": final_loss, "accuracy": accuracy}


class OnlineClassifier:
    """Bounded example queue plus a background-retrained walk/punch/other MLP.

    Args:
        store: Where the queue and model blob are persisted.
        ledger: Receives ``training`` XP after each completed pass.
        capacity: Maximum queued examples; the oldest is dropped.
        retrain_interval: Minimum seconds between retraining passes.
        min_examples: Examples required before training starts.
        executor: Runs ``fit_examples``. Defaults to a single worker thread.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        ledger: Optional[ExperienceLedger] = None,
        capacity: int = 1000,
        retrain_interval: float = 5.0,
        min_examples: int = 10,
        epochs: int = 10,
        xp_scale: float = 50.0,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store if store is not None else MemoryStore()
        self.ledger = ledger
        self.capacity = capacity
        self.retrain_interval = retrain_interval
        self.min_examples = min_examples
        self.epochs = epochs
        self.xp_scale = xp_scale
        self._clock = clock
        self._executor = executor
        self._owns_executor = executor is None

        self._queue: deque[TrainingExample] = deque(maxlen=capacity)
        self._model = None
        self._future: Optional[Future] = None
        self._last_start: Optional[float] = None
        self.state = RetrainState.IDLE
        self.passes = 0
        self.last_result: Optional[dict] = None

        self._load()

    def add_example(self, features: list[float], label: str) -> bool:
        if label not in LABELS:
            logger.warning("Ignoring training example with unknown label: %s", label)
            return False
        if len(features) != FEATURE_DIM:
            logger.warning("Ignoring training example with %d features", len(features))
            return False
        self._queue.append(TrainingExample.create(features, label))
        persist(self._store, TRAINING_QUEUE_KEY, [e.to_dict() for e in self._queue])
        return True

    def maybe_retrain(self, now: Optional[float] = None) -> bool:
        """Request a retraining pass. Returns True if one was started or queued."""
        self.poll()
        now = self._clock() if now is None else now

        if len(self._queue) < self.min_examples:
            return False
        if self._last_start is not None and now - self._last_start < self.retrain_interval:
            return False

        if self.state is RetrainState.RUNNING:
            self.state = RetrainState.PENDING_RERUN
            return True
        if self.state is RetrainState.PENDING_RERUN:
            return False

        self._start(now)
        return True

    def _start(self, now: float):
        examples = list(self._queue)
        features = np.array([e.features for e in examples], dtype=np.float32)
        targets = np.array([int(np.argmax(e.label)) for e in examples], dtype=np.int64)
        initial = None
        if self._model is not None:
            initial = {k: v.clone() for k, v in self._model.state_dict().items()}

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="retrain")

        self.state = RetrainState.RUNNING
        self._last_start = now
        self._future = self._executor.submit(
            fit_examples, features, targets, initial, self.epochs,
        )
        logger.debug("Retraining on %d examples", len(examples))

    def poll(self) -> Optional[dict]:
        """Collect a finished pass, if any. Must be called from the frame path."""
        if self._future is None or not self._future.done():
            return None

        future, self._future = self._future, None
        result = None
        try:
            result = future.result()
        except Exception as e:
            logger.error("Classifier training failed: %s", e)
        else:
            self._apply(result)

        if self.state is RetrainState.PENDING_RERUN:
            self.state = RetrainState.IDLE
            self._start(self._clock())
        else:
            self.state = RetrainState.IDLE
        return result

    def wait(self, timeout: Optional[float] = None) -> Optional[dict]:
        """Block until the in-flight pass (and any coalesced rerun) finishes."""
        result = None
        while self._future is not None:
            done, _ = wait_futures([self._future], timeout=timeout)
            if not done:
                break
            result = self.poll()
        return result

    def _apply(self, result: dict):
        model = _build_model()
        model.load_state_dict(result["state"])
        model.eval()
        self._model = model
        self.passes += 1
        self.last_result = {"loss": result["loss"], "accuracy": result["accuracy"]}
        logger.info(
            "Classifier retrained: accuracy %.3f, loss %.4f", result["accuracy"], result["loss"],
        )
        if self.ledger is not None:
            self.ledger.award_xp("training", int(round(result["accuracy"] * self.xp_scale)))
        self.save_model()

    def predict(self, features: list[float]) -> Optional[tuple[str, float]]:
        """Classify a feature vector. None until a model has been trained."""
        if self._model is None:
            return None
        import torch

        tensor = torch.FloatTensor(np.asarray(features, dtype=np.float32)).unsqueeze(0)
        with torch.no_grad():
            probs = torch.softmax(self._model(tensor), dim=1)
            confidence, predicted = torch.max(probs, 1)
        return LABELS[predicted.item()], confidence.item()

    @property
    def has_model(self) -> bool:
        return self._model is not None

    @property
    def examples(self) -> list[TrainingExample]:
        return list(self._queue)

    def __len__(self) -> int:
        return len(self._queue)

    def save_model(self) -> bool:
        if self._model is None:
            return False
        import torch

        buf = io.BytesIO()
        torch.save({
            "model_state": self._model.state_dict(),
            "labels": LABELS,
            "feature_dim": FEATURE_DIM,
        }, buf)
        blob = base64.b64encode(buf.getvalue()).decode("ascii")
        return persist(self._store, MODEL_KEY, {"blob": blob})

    def _load(self):
        queue = load_json(self._store, TRAINING_QUEUE_KEY)
        if isinstance(queue, list):
            for entry in queue[-self.capacity:]:
                try:
                    self._queue.append(TrainingExample.from_dict(entry))
                except (KeyError, TypeError, ValueError):
                    logger.warning("Dropping corrupt training example")

        model = load_json(self._store, MODEL_KEY)
        if isinstance(model, dict) and "blob" in model:
            try:
                import torch

                raw = base64.b64decode(model["blob"])
                checkpoint = torch.load(io.BytesIO(raw), map_location="cpu", weights_only=False)
                loaded = _build_model()
                loaded.load_state_dict(checkpoint["model_state"])
                loaded.eval()
                self._model = loaded
            except Exception as e:
                logger.error("Could not restore classifier model: %s", e)

    def shutdown(self):
        self.wait()
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
