"""
Scheduling value objects.

These are pure data structures with no I/O; the transitions between them live
in sprout.application.scheduler.
"""

from dataclasses import dataclass
from enum import Enum


class Stage(str, Enum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"
    SUSPENDED = "suspended"


class Grade(str, Enum):
    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"

    @property
    def is_pass(self) -> bool:
        return self is not Grade.AGAIN


@dataclass
class CardState:
    """
    Mutable scheduling data for one card, keyed by the card id.

    Attributes:
        stage: Lifecycle phase.
        due: Epoch ms when the card is next due. Inert while suspended.
        scheduled_days: Interval assigned by the last graduation or review pass.
        reps: Total number of grades applied.
        lapses: Number of failed review-stage grades.
        learning_step_index: Position in the learning or relearning ladder.
        stability_days: Days until recall probability drops to 90%.
        last_reviewed: Epoch ms of the last grade.
        suspended_stage: Stage to restore on unsuspend.
    """

    id: str
    stage: Stage = Stage.NEW
    due: int = 0
    scheduled_days: int = 0
    reps: int = 0
    lapses: int = 0
    learning_step_index: int = 0
    stability_days: float | None = None
    last_reviewed: int | None = None
    suspended_stage: Stage | None = None

    @classmethod
    def new(cls, card_id: str, now: int) -> "CardState":
        return cls(id=card_id, due=now)

    @property
    def is_suspended(self) -> bool:
        return self.stage is Stage.SUSPENDED


@dataclass(frozen=True)
class GradeResult:
    next_state: CardState
    prev_due: int
    next_due: int
    retrievability: float | None = None
