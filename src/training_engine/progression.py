"""e1RM estimation, double progression, fatigue and PR detection."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Mapping, Protocol, Sequence

from .catalog import get_minimum_weight, get_weight_step
from .models import Exercise, ExercisePerformance

ProgressionDecision = Literal["increase", "maintain", "decrease", "reduce_sets"]
PRMetric = Literal["weight", "reps", "e1rm", "volume"]

DEFAULT_RPE_CAP = 8.0
MAX_INCREASE_PERCENT = 0.10
NEAR_MAX_RATIO = 0.95


class PerformedSet(Protocol):
    @property
    def weight(self) -> float: ...

    @property
    def reps(self) -> int: ...

    @property
    def rpe(self) -> float | None: ...


@dataclass(frozen=True)
class PreviousBest:
    best_weight: float | None = None
    best_reps: int | None = None
    best_e1rm: float | None = None
    best_volume: float | None = None


@dataclass(frozen=True)
class PersonalRecord:
    exercise_id: str
    exercise_name: str
    metric: PRMetric
    value: float
    previous_value: float
    achieved_at: datetime


def estimate_1rm(weight: float, reps: int) -> float:
    """Epley estimate: weight * (1 + reps / 30); a single is its own 1RM."""
    if reps <= 0 or weight <= 0:
        return 0.0
    if reps == 1:
        return float(weight)
    return weight * (1 + reps / 30)


def weight_for_reps(e1rm: float, reps: int) -> float:
    if e1rm <= 0 or reps <= 0:
        return 0.0
    return e1rm / (1 + reps / 30)


def round_to_step(value: float, step: float) -> float:
    if step <= 0:
        return value
    return round(math.floor(value / step + 0.5) * step, 2)


def best_set(sets: Sequence[PerformedSet]) -> PerformedSet | None:
    best: PerformedSet | None = None
    best_e1rm = -1.0
    for performed in sets:
        e1rm = estimate_1rm(performed.weight, performed.reps)
        if e1rm > best_e1rm:
            best, best_e1rm = performed, e1rm
    return best


def compute_e1rm_from_performance(performance: ExercisePerformance) -> float:
    estimates = [estimate_1rm(s.weight, s.reps) for s in performance.sets]
    positive = [value for value in estimates if value > 0]
    return max(positive) if positive else 0.0


def get_exercise_e1rm(exercise_id: str, last_performance: Mapping[str, ExercisePerformance] | None) -> float:
    if not last_performance or exercise_id not in last_performance:
        return 0.0
    return compute_e1rm_from_performance(last_performance[exercise_id])


def evaluate_progression(
    performed_sets: Sequence[PerformedSet],
    rep_range: tuple[int, int],
    rpe_cap: float = DEFAULT_RPE_CAP,
) -> ProgressionDecision:
    """Decide the next step of double progression from last session's sets.

    * every set at or above the top of the range at an acceptable RPE: increase
    * first set under the range floor, or RPE >= 9 before the last set: failure;
      two or more sets under the floor reduce sets, otherwise decrease
    * anything else: maintain
    """
    if not performed_sets:
        return "maintain"

    min_reps, max_reps = rep_range

    all_hit_top = all(
        s.reps >= max_reps and (s.rpe is None or s.rpe <= rpe_cap)
        for s in performed_sets
    )
    if all_hit_top:
        return "increase"

    last_index = len(performed_sets) - 1
    has_failure = any(
        (index == 0 and s.reps < min_reps) or (s.rpe is not None and s.rpe >= 9 and index < last_index)
        for index, s in enumerate(performed_sets)
    )
    if has_failure:
        failures = sum(1 for s in performed_sets if s.reps < min_reps)
        return "reduce_sets" if failures >= 2 else "decrease"

    return "maintain"


def calculate_next_weight(
    current_weight: float,
    progression: ProgressionDecision,
    exercise: Exercise,
    max_increase_percent: float = MAX_INCREASE_PERCENT,
) -> float:
    step = get_weight_step(exercise)
    min_weight = get_minimum_weight(exercise)

    if progression == "increase":
        capped = round_to_step(current_weight * (1 + max_increase_percent), step)
        return max(0.0, min(current_weight + step, capped))

    if progression == "decrease":
        return max(current_weight - step, min_weight, 0.0)

    return max(0.0, current_weight)


def calculate_next_reps(current_reps: int, rep_range: tuple[int, int], progression: ProgressionDecision) -> int:
    min_reps, max_reps = rep_range
    if progression == "increase":
        return min(current_reps + 1, max_reps)
    if progression == "decrease":
        return min_reps
    return current_reps


def detect_fatigue(sets: Sequence[PerformedSet]) -> float:
    """Per-exercise fatigue score: 0 (none), 0.5 (one signal), 0.8 (severe)."""
    if len(sets) < 2:
        return 0.0

    rpe_rising = False
    missed_reps = False
    large_drop = False
    for previous, current in zip(sets, sets[1:]):
        if (current.rpe or 5) > (previous.rpe or 5) + 1:
            rpe_rising = True
        if current.weight == previous.weight:
            if current.reps < previous.reps - 1:
                missed_reps = True
            if current.reps < previous.reps * 0.8:
                large_drop = True

    if large_drop or (rpe_rising and missed_reps):
        return 0.8
    if rpe_rising or missed_reps:
        return 0.5
    return 0.0


def detect_prs(
    exercise_id: str,
    exercise_name: str,
    performed_sets: Sequence[PerformedSet],
    previous_best: PreviousBest | None,
    *,
    achieved_at: datetime,
) -> list[PersonalRecord]:
    """Report PRs that strictly beat a supplied previous best.

    A metric without a previous best has nothing to beat, so it never reports.
    Rep PRs only count sets at or above 95% of the reference weight (the
    previous best weight, or this session's heaviest set when none is known).
    """
    if not performed_sets or previous_best is None:
        return []

    records: list[PersonalRecord] = []

    def _record(metric: PRMetric, value: float, previous: float | None, reported: float | None = None) -> None:
        if previous is not None and value > previous:
            records.append(
                PersonalRecord(
                    exercise_id=exercise_id,
                    exercise_name=exercise_name,
                    metric=metric,
                    value=value if reported is None else reported,
                    previous_value=previous,
                    achieved_at=achieved_at,
                )
            )

    heaviest = max(s.weight for s in performed_sets)
    _record("weight", heaviest, previous_best.best_weight)

    reference_weight = previous_best.best_weight if previous_best.best_weight else heaviest
    near_max = [s for s in performed_sets if s.weight >= reference_weight * NEAR_MAX_RATIO]
    if near_max:
        _record("reps", max(s.reps for s in near_max), previous_best.best_reps)

    top = best_set(performed_sets)
    if top is not None:
        e1rm = estimate_1rm(top.weight, top.reps)
        _record("e1rm", e1rm, previous_best.best_e1rm, round(e1rm, 1))

    volume = sum(s.weight * s.reps for s in performed_sets)
    _record("volume", volume, previous_best.best_volume, round(volume))

    return records
