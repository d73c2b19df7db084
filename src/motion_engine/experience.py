"""Per-skill experience and leveling."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from motion_engine.storage import EXPERIENCE_KEY, KeyValueStore, MemoryStore, load_json, persist

logger = logging.getLogger("motion_engine.experience")

SKILLS = ("walking", "punching", "mining", "training")
LEVEL_XP = 100  # lifetime XP needed per level: 100 * level


@dataclass
class SkillRecord:
    """``xp`` is progress past the last level threshold, ``total`` is lifetime XP."""
    xp: int = 0
    level: int = 1
    total: int = 0

    def to_dict(self) -> dict:
        return {"xp": self.xp, "level": self.level, "total": self.total}

    @classmethod
    def from_dict(cls, data: dict) -> SkillRecord:
        total = max(0, int(data.get("total", data.get("xp", 0))))
        record = cls(total=total)
        record._relevel()
        return record

    def add(self, amount: int) -> int:
        """Add XP and return the number of levels gained."""
        before = self.level
        self.total += amount
        self._relevel()
        return self.level - before

    def _relevel(self):
        while self.total >= LEVEL_XP * self.level:
            self.level += 1
        self.xp = self.total - LEVEL_XP * (self.level - 1)


class ExperienceLedger:
    """Tracks XP per skill and a step odometer for the stride bonus.

    Every mutation is persisted immediately under ``experience``.
    """

    def __init__(self, store: Optional[KeyValueStore] = None):
        self._store = store if store is not None else MemoryStore()
        self._skills: dict[str, SkillRecord] = {s: SkillRecord() for s in SKILLS}
        self.steps = 0
        self._load()

    def award_xp(self, skill: str, amount: int) -> bool:
        """Credit ``amount`` XP to ``skill``. Unknown skills and negative
        amounts are ignored with a warning."""
        record = self._skills.get(skill)
        if record is None:
            logger.warning("Ignoring XP for unknown skill: %s", skill)
            return False
        if amount < 0:
            logger.warning("Ignoring negative XP award for %s: %s", skill, amount)
            return False

        gained = record.add(int(amount))
        if gained:
            logger.info("%s leveled up to %d", skill, record.level)
        self.save()
        return True

    def count_step(self) -> int:
        self.steps += 1
        self.save()
        return self.steps

    def reset_steps(self):
        self.steps = 0
        self.save()

    def get(self, skill: str) -> SkillRecord:
        return self._skills[skill]

    def level(self, skill: str) -> int:
        return self._skills[skill].level

    def xp(self, skill: str) -> int:
        return self._skills[skill].xp

    def to_dict(self) -> dict:
        return {
            "skills": {name: r.to_dict() for name, r in self._skills.items()},
            "steps": self.steps,
        }

    def save(self) -> bool:
        return persist(self._store, EXPERIENCE_KEY, self.to_dict())

    def _load(self):
        data = load_json(self._store, EXPERIENCE_KEY)
        if not isinstance(data, dict):
            return
        skills = data.get("skills", {})
        for name in SKILLS:
            entry = skills.get(name) if isinstance(skills, dict) else None
            if isinstance(entry, dict):
                try:
                    self._skills[name] = SkillRecord.from_dict(entry)
                except (TypeError, ValueError):
                    logger.warning("Discarding corrupt experience entry for %s", name)
        try:
            self.steps = max(0, int(data.get("steps", 0)))
        except (TypeError, ValueError):
            self.steps = 0

    def __iter__(self):
        return iter(self._skills.items())
