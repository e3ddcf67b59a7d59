"""
Difficulty levels, answer-quality labels and the streak policy that moves
between levels.

The policy looks at the last three evaluated answers. Three strong answers in
a row step the level up, three answers that need work step it down, anything
else holds. A window that triggers a change is cleared; a full window that
does not trigger is kept, so later answers keep sliding through it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional, Sequence

from .errors import ValidationError


class Difficulty(IntEnum):
    BASIC = 1
    FOUNDATIONAL = 2
    INTERMEDIATE = 3
    ADVANCED = 4

    @property
    def label(self) -> str:
        return self.name.title()

    @classmethod
    def parse(cls, value: object) -> "Difficulty":
        if isinstance(value, bool):
            raise ValidationError("Difficulty level must be an integer between 1 and 4")
        try:
            return cls(int(value))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            raise ValidationError("Difficulty level must be an integer between 1 and 4")


class Quality(str, Enum):
    STRONG = "strong"
    PARTIAL = "partial"
    NEEDS_WORK = "needs_work"


WINDOW_SIZE = 3

ESCALATE = "escalate"
DE_ESCALATE = "de-escalate"

_EVENT_MESSAGES = {
    ESCALATE: "Excellent! Moving to harder questions...",
    DE_ESCALATE: "Let's try a simpler approach...",
}


@dataclass(frozen=True)
class DifficultyAdjustment:
    """Result of a policy check."""
    direction: Optional[str]  # ESCALATE, DE_ESCALATE or None
    previous: Difficulty
    current: Difficulty
    reason: str

    @property
    def should_adjust(self) -> bool:
        return self.direction is not None

    @property
    def message(self) -> Optional[str]:
        return _EVENT_MESSAGES.get(self.direction) if self.direction else None

    def to_event(self) -> dict:
        return {
            "type": self.direction,
            "from": int(self.previous),
            "to": int(self.current),
            "message": self.message,
        }


class DifficultyPolicy:
    """Pure decision over the three most recent quality labels."""

    def check_adjustment(self, window: Sequence[Quality], current: Difficulty) -> DifficultyAdjustment:
        if len(window) != WINDOW_SIZE:
            return DifficultyAdjustment(
                direction=None,
                previous=current,
                current=current,
                reason=f"Need exactly {WINDOW_SIZE} answers (have {len(window)})",
            )

        if all(q is Quality.STRONG for q in window):
            raised = self._raise(current)
            if raised != current:
                return DifficultyAdjustment(ESCALATE, current, raised, f"{WINDOW_SIZE} strong answers in a row")
            return DifficultyAdjustment(None, current, current, "Already at the highest level")

        if all(q is Quality.NEEDS_WORK for q in window):
            lowered = self._lower(current)
            if lowered != current:
                return DifficultyAdjustment(DE_ESCALATE, current, lowered, f"{WINDOW_SIZE} weak answers in a row")
            return DifficultyAdjustment(None, current, current, "Already at the lowest level")

        return DifficultyAdjustment(None, current, current, "Mixed performance")

    def _raise(self, current: Difficulty) -> Difficulty:
        return Difficulty(min(int(current) + 1, int(Difficulty.ADVANCED)))

    def _lower(self, current: Difficulty) -> Difficulty:
        return Difficulty(max(int(current) - 1, int(Difficulty.BASIC)))
