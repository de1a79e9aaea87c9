"""Exercise and tempo labels attached to a session and its reports."""

from enum import Enum
from typing import List


class ExerciseType(Enum):
    """Barbell exercises the tracker is used with."""
    SQUAT = "squat"
    BENCH_PRESS = "bench_press"
    DEADLIFT = "deadlift"
    OVERHEAD_PRESS = "overhead_press"
    BARBELL_ROW = "barbell_row"

    @property
    def display_name(self) -> str:
        return _EXERCISE_NAMES[self]

    @classmethod
    def all(cls) -> List[str]:
        return [e.value for e in cls]


_EXERCISE_NAMES = {
    ExerciseType.SQUAT: "Squat",
    ExerciseType.BENCH_PRESS: "Bench Press",
    ExerciseType.DEADLIFT: "Deadlift",
    ExerciseType.OVERHEAD_PRESS: "OHP",
    ExerciseType.BARBELL_ROW: "Barbell Row",
}


class Tempo(Enum):
    """
    Target timing profile for a rep.

    Each member carries (display name, eccentric s, pause s, concentric s).
    Tempo is a label only; nothing in the pipeline enforces it.
    """
    EXPLOSIVE = ("Explosive", 1.0, 0.0, 0.5)
    MODERATE = ("Moderate", 2.0, 0.0, 1.0)
    SLOW = ("Slow", 3.0, 1.0, 2.0)
    PAUSE = ("Pause Reps", 2.0, 2.0, 1.0)
    TEMPO = ("Tempo", 4.0, 2.0, 1.0)

    def __init__(self, display_name: str, eccentric: float, pause: float, concentric: float):
        self.display_name = display_name
        self.eccentric = eccentric
        self.pause = pause
        self.concentric = concentric

    @property
    def key(self) -> str:
        return self.name.lower()

    @property
    def total_seconds(self) -> float:
        return self.eccentric + self.pause + self.concentric

    @classmethod
    def from_key(cls, key: str) -> "Tempo":
        try:
            return cls[key.upper()]
        except KeyError:
            raise ValueError(f"Unknown tempo: {key}") from None

    @classmethod
    def all(cls) -> List[str]:
        return [t.key for t in cls]
