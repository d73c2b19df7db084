"""Key/value persistence seam.

The engine never talks to a storage backend directly. Components receive a
``KeyValueStore`` and write JSON strings under fixed keys. Writes are
synchronous and best-effort: use ``persist()`` so a failing backend is
logged and in-memory state stays authoritative.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

from motion_engine.errors import PersistenceFault

logger = logging.getLogger("motion_engine.storage")

PROFILE_KEY = "calibration_profile"
EXPERIENCE_KEY = "experience"
TRAINING_QUEUE_KEY = "training_queue"
MODEL_KEY = "classifier_model"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def put(self, key: str, value: str) -> None: ...


class MemoryStore:
    """Dict-backed store, used by tests and as the default."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStore:
    """All keys in a single JSON document on disk."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._data: dict[str, str] = {}
        if self.path.exists():
            try:
                self._data = json.loads(self.path.read_text())
            except (OSError, ValueError) as e:
                logger.error("Could not read store %s, starting empty: %s", self.path, e)
                self._data = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        self._data[key] = value
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(self._data, indent=2))
            tmp.replace(self.path)
        except OSError as e:
            raise PersistenceFault(f"write to {self.path} failed: {e}") from e


def persist(store: KeyValueStore, key: str, payload: Any) -> bool:
    """Serialize ``payload`` to JSON and write it. Returns False on failure."""
    try:
        store.put(key, json.dumps(payload))
    except (PersistenceFault, TypeError, ValueError) as e:
        logger.error("Failed to persist %s: %s", key, e)
        return False
    return True


def load_json(store: KeyValueStore, key: str) -> Optional[Any]:
    """Read and decode a key. Absent or corrupt values yield None."""
    try:
        raw = store.get(key)
    except PersistenceFault as e:
        logger.error("Failed to load %s: %s", key, e)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding corrupt value for %s", key)
        return None
