"""Constraint filtering and additive scoring of catalog exercises."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Collection, Iterable

from .catalog import ExerciseCatalog, is_compound_exercise, is_free_weight_biased, is_machine_biased
from .models import Exercise, TrainingConstraints, UserState

INTENT_MATCH_SCORE = 100
EQUIPMENT_SCORE = 50
NO_CONTRAINDICATION_SCORE = 30
NO_FORBIDDEN_SCORE = 30
DIFFICULTY_EXACT_SCORE = 40
DIFFICULTY_NEAR_SCORE = 20
DIFFICULTY_MISMATCH_PENALTY = -20
PREFERENCE_SCORE = 15
COMPOUND_SCORE = 25
PRIORITY_INTENT_SCORE = 10
DUPLICATE_PENALTY = -50
DISLIKED_PENALTY = -30

_LEVEL_RANK = {"beginner": 1, "intermediate": 2, "advanced": 3}


@dataclass(frozen=True)
class ExerciseScore:
    exercise: Exercise
    score: float
    reasons: tuple[str, ...]
    excluded: bool = False

    @property
    def exercise_id(self) -> str:
        return self.exercise.id


def has_equipment(exercise: Exercise, available: Iterable[str]) -> bool:
    """Check an exercise's equipment declaration against what the user has.

    Explicit ``equipment_all`` / ``equipment_any`` lists must each pass on
    their own. Without either, the legacy ``equipment`` list is any-of and an
    empty list needs nothing.
    """
    have = set(available)
    if exercise.equipment_all is None and exercise.equipment_any is None:
        return not exercise.equipment or any(item in have for item in exercise.equipment)
    if exercise.equipment_all is not None and not all(item in have for item in exercise.equipment_all):
        return False
    if exercise.equipment_any is not None and exercise.equipment_any:
        return any(item in have for item in exercise.equipment_any)
    return True


def _excluded(exercise: Exercise, reason: str) -> ExerciseScore:
    return ExerciseScore(exercise=exercise, score=0, reasons=(reason,), excluded=True)


def score_exercise(
    exercise: Exercise,
    intent: str,
    constraints: TrainingConstraints,
    user_state: UserState,
    already_selected: Collection[str] = (),
) -> ExerciseScore:
    if intent not in exercise.intents:
        return _excluded(exercise, "Does not match required intent")
    score = INTENT_MATCH_SCORE
    reasons = ["Matches required intent"]

    if not has_equipment(exercise, constraints.available_equipment):
        return _excluded(exercise, "Required equipment not available")
    score += EQUIPMENT_SCORE
    reasons.append("Equipment available")

    if any(tag in constraints.injuries for tag in exercise.contraindications):
        return _excluded(exercise, "Contraindicated due to injury")
    score += NO_CONTRAINDICATION_SCORE
    reasons.append("No contraindications")

    if any(i in constraints.forbidden_movements for i in exercise.intents):
        return _excluded(exercise, "Contains forbidden movement")
    score += NO_FORBIDDEN_SCORE
    reasons.append("No forbidden movements")

    level_diff = abs(_LEVEL_RANK[user_state.experience_level] - _LEVEL_RANK[exercise.difficulty])
    if level_diff == 0:
        score += DIFFICULTY_EXACT_SCORE
        reasons.append("Perfect difficulty match")
    elif level_diff == 1:
        score += DIFFICULTY_NEAR_SCORE
        reasons.append("Appropriate difficulty")
    else:
        score += DIFFICULTY_MISMATCH_PENALTY
        reasons.append("Difficulty mismatch")

    preferences = constraints.preferences
    if preferences.prefers_machines and is_machine_biased(exercise):
        score += PREFERENCE_SCORE
        reasons.append("Matches machine preference")
    elif preferences.prefers_free_weights and is_free_weight_biased(exercise):
        score += PREFERENCE_SCORE
        reasons.append("Matches free weight preference")

    if is_compound_exercise(exercise):
        score += COMPOUND_SCORE
        reasons.append("Compound movement")

    if intent in constraints.priority_intents:
        score += PRIORITY_INTENT_SCORE
        reasons.append("Priority movement")

    if exercise.id in already_selected:
        score += DUPLICATE_PENALTY
        reasons.append("Already selected in session")

    if exercise.id in preferences.hates_exercises:
        score += DISLIKED_PENALTY
        reasons.append("User dislikes this exercise")

    return ExerciseScore(exercise=exercise, score=max(0, score), reasons=tuple(reasons))


def rank_candidates(
    catalog: ExerciseCatalog,
    intent: str,
    constraints: TrainingConstraints,
    user_state: UserState,
    already_selected: Collection[str] = (),
) -> list[ExerciseScore]:
    """All positive-score candidates for ``intent``, best first, catalog order on ties."""
    scored = [
        score_exercise(exercise, intent, constraints, user_state, already_selected)
        for exercise in catalog.by_intent(intent)
    ]
    positive = [s for s in scored if not s.excluded and s.score > 0]
    return sorted(positive, key=lambda s: s.score, reverse=True)


def choose_exercise(
    catalog: ExerciseCatalog,
    intent: str,
    constraints: TrainingConstraints,
    user_state: UserState,
    already_selected: Collection[str] = (),
) -> list[Exercise]:
    return [
        ranked.exercise
        for ranked in rank_candidates(catalog, intent, constraints, user_state, already_selected)
    ]
