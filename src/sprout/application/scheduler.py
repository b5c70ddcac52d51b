"""
Scheduling state machine.

Every function here is pure: the next state depends only on
(state, grade, settings, now). Times are epoch milliseconds.

Review intervals follow the forgetting curve ``R = 0.9 ** (t / S)``, where
S (stability) is the number of days until recall probability drops to 90%.
"""

import math
from dataclasses import replace

from sprout.domain.constants import MAX_INTERVAL_DAYS, MS_PER_DAY, MS_PER_MINUTE
from sprout.domain.scheduling import CardState, Grade, GradeResult, Stage
from sprout.domain.settings import SchedulingSettings

# Stability (days) assigned on graduation from the learning ladder.
INITIAL_STABILITY = {Grade.AGAIN: 0.5, Grade.HARD: 1.0, Grade.GOOD: 2.0, Grade.EASY: 5.0}
# How strongly a successful review grows stability.
STABILITY_GROWTH = {Grade.HARD: 0.2, Grade.GOOD: 1.5, Grade.EASY: 2.5}
LAPSE_STABILITY_FACTOR = 0.25
MIN_STABILITY = 0.1


def retrievability(elapsed_days: float, stability_days: float) -> float:
    """Probability of recall after elapsed_days."""
    if stability_days <= 0:
        return 0.0
    return 0.9 ** (max(0.0, elapsed_days) / stability_days)


def interval_for(stability_days: float, request_retention: float) -> int:
    """Days until recall probability falls to the retention target, at least 1."""
    days = stability_days * math.log(request_retention) / math.log(0.9)
    return int(min(MAX_INTERVAL_DAYS, max(1, round(days))))


def _step_due(steps: list[float], index: int, now: int) -> int:
    minutes = steps[index] if steps else 0
    return now + int(round(minutes * MS_PER_MINUTE))


def _graduate(
    state: CardState, stability: float, settings: SchedulingSettings, now: int, floor: int = 1
) -> CardState:
    days = min(MAX_INTERVAL_DAYS, max(floor, interval_for(stability, settings.request_retention)))
    return replace(
        state,
        stage=Stage.REVIEW,
        learning_step_index=0,
        scheduled_days=days,
        stability_days=stability,
        due=now + days * MS_PER_DAY,
    )


def _learning(state: CardState, grade: Grade, settings: SchedulingSettings, now: int) -> CardState:
    steps = settings.learning_steps_minutes
    if not steps or grade is Grade.EASY:
        return _graduate(state, INITIAL_STABILITY[grade], settings, now)

    index = min(state.learning_step_index, len(steps) - 1)
    if grade is Grade.AGAIN:
        index = 0
    elif grade is Grade.GOOD:
        index += 1
        if index >= len(steps):
            return _graduate(state, INITIAL_STABILITY[grade], settings, now)

    return replace(
        state,
        stage=Stage.LEARNING,
        learning_step_index=index,
        scheduled_days=0,
        due=_step_due(steps, index, now),
    )


def _relearning(state: CardState, grade: Grade, settings: SchedulingSettings, now: int) -> CardState:
    steps = settings.relearning_steps_minutes
    stability = state.stability_days or MIN_STABILITY
    if not steps or grade is Grade.EASY:
        return _graduate(state, stability, settings, now)

    index = min(state.learning_step_index, len(steps) - 1)
    if grade is Grade.AGAIN:
        index = 0
    elif grade is Grade.GOOD:
        index += 1
        if index >= len(steps):
            return _graduate(state, stability, settings, now)

    return replace(state, learning_step_index=index, due=_step_due(steps, index, now))


def _review(state: CardState, grade: Grade, settings: SchedulingSettings, now: int) -> tuple[CardState, float]:
    previous = state.scheduled_days
    stability = state.stability_days or float(max(previous, 1))
    last = state.last_reviewed if state.last_reviewed is not None else state.due - previous * MS_PER_DAY
    recall = retrievability((now - last) / MS_PER_DAY, stability)

    if grade is Grade.AGAIN:
        steps = settings.relearning_steps_minutes
        lapsed = replace(
            state,
            stage=Stage.RELEARNING,
            lapses=state.lapses + 1,
            learning_step_index=0,
            scheduled_days=0,
            stability_days=max(MIN_STABILITY, stability * LAPSE_STABILITY_FACTOR),
            due=_step_due(steps, 0, now),
        )
        return lapsed, recall

    grown = stability * (1 + STABILITY_GROWTH[grade] * (1 - recall) * 10)
    floor = previous if grade is Grade.HARD else previous + 1
    return _graduate(state, grown, settings, now, floor=max(1, floor)), recall


def grade_card(state: CardState, grade: Grade, settings: SchedulingSettings, now: int) -> GradeResult:
    """Apply one grade. Suspended cards are returned unchanged."""
    if state.stage is Stage.SUSPENDED:
        return GradeResult(next_state=state, prev_due=state.due, next_due=state.due)

    recall = None
    if state.stage is Stage.NEW:
        entered = replace(state, stage=Stage.LEARNING, learning_step_index=0)
        nxt = _learning(entered, grade, settings, now)
    elif state.stage is Stage.LEARNING:
        nxt = _learning(state, grade, settings, now)
    elif state.stage is Stage.RELEARNING:
        nxt = _relearning(state, grade, settings, now)
    else:
        nxt, recall = _review(state, grade, settings, now)

    nxt = replace(nxt, reps=state.reps + 1, last_reviewed=now)
    return GradeResult(next_state=nxt, prev_due=state.due, next_due=nxt.due, retrievability=recall)


def suspend_card(state: CardState) -> CardState:
    """Freeze every field; only the stage flips to suspended."""
    if state.stage is Stage.SUSPENDED:
        return state
    return replace(state, stage=Stage.SUSPENDED, suspended_stage=state.stage)


def unsuspend_card(state: CardState) -> CardState:
    """
    Restore the exact pre-suspension state. Time spent suspended is neither
    penalised nor credited.
    """
    if state.stage is not Stage.SUSPENDED:
        return state
    return replace(state, stage=state.suspended_stage or Stage.NEW, suspended_stage=None)


def reset_card_scheduling(state: CardState, now: int) -> CardState:
    """Back to new-card defaults; only the id survives."""
    return CardState.new(state.id, now)


def bury_card(state: CardState, now: int) -> CardState:
    """Push a card's due time to the start of the next (UTC) day."""
    if state.stage is Stage.SUSPENDED:
        return state
    return replace(state, due=max(state.due, (now // MS_PER_DAY + 1) * MS_PER_DAY))


def is_due(state: CardState, now: int) -> bool:
    return state.stage is not Stage.SUSPENDED and state.due <= now
