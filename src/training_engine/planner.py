"""Single-session plan builder.

Composes a template's movement intents into concrete exercises, prescribes
sets/reps/rest by goal-weighted blending, suggests loads, and records a
``DecisionTrace`` for every selection.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Literal, Mapping, Sequence

from .catalog import (
    exercise_equipment_class,
    get_minimum_weight,
    get_weight_step,
    is_bodyweight_exercise,
)
from .identifiers import stable_fingerprint
from .models import (
    DecisionTrace,
    Exercise,
    ExercisePriority,
    PlannedExercise,
    PlannedSet,
    ProgramDayPlan,
    RankedAlternative,
    SessionPlan,
    TrainingConstraints,
    TrainingProfile,
    UserState,
)
from .progression import (
    best_set,
    calculate_next_weight,
    evaluate_progression,
    get_exercise_e1rm,
    round_to_step,
    weight_for_reps,
)
from .rules import EngineData, RuleBook
from .scoring import ExerciseScore, rank_candidates

logger = logging.getLogger(__name__)

PRIMARY_INTENTS = frozenset({
    "horizontal_press",
    "vertical_press",
    "horizontal_pull",
    "vertical_pull",
    "knee_dominant",
    "hip_hinge",
})

DEFAULT_REP_RANGE = (8, 12)
DEFAULT_SETS = 3
DEFAULT_REST_SECONDS = 90
MAX_ALTERNATIVES = 3
MAX_MUSCLE_USES = 2

LoadingSource = Literal["last_performance_e1rm", "explicit_1rm", "progression", "default", "bodyweight"]


@dataclass(frozen=True)
class Prescription:
    rep_range: tuple[int, int]
    sets: int
    rest_seconds: int

    @property
    def target_reps(self) -> int:
        return (self.rep_range[0] + self.rep_range[1]) // 2


@dataclass(frozen=True)
class LoadingSuggestion:
    weight: float
    source: LoadingSource


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_goals(goals: Mapping[str, float]) -> dict[str, float]:
    """Positive goal weights rescaled to sum to 1; zero and negative weights drop out."""
    active = {goal: float(weight) for goal, weight in goals.items() if weight and weight > 0}
    total = sum(active.values())
    if total <= 0:
        return {}
    return {goal: weight / total for goal, weight in sorted(active.items())}


def determine_priority(exercise: Exercise, intent: str) -> ExercisePriority:
    breadth = len(exercise.muscles_primary)
    if intent in PRIMARY_INTENTS and breadth >= 3:
        return "primary"
    if breadth >= 2:
        return "accessory"
    return "isolation"


def blend_prescription(rules: RuleBook, priority: ExercisePriority, goals: Mapping[str, float]) -> Prescription:
    """Weighted average of each active goal's rule-table values for ``priority``."""
    weights = normalize_goals({g: w for g, w in goals.items() if g in rules.goals})
    if not weights:
        return Prescription(DEFAULT_REP_RANGE, DEFAULT_SETS, DEFAULT_REST_SECONDS)

    low = high = sets = rest = 0.0
    for goal, weight in weights.items():
        goal_rules = rules.goals[goal]
        rep_low, rep_high = goal_rules.rep_ranges.for_priority(priority)
        low += weight * rep_low
        high += weight * rep_high
        sets += weight * goal_rules.sets_per_intent.for_priority(priority)
        rest += weight * goal_rules.rest_seconds.for_priority(priority)

    rep_low = max(1, _round_half_up(low))
    rep_high = max(rep_low, _round_half_up(high))
    return Prescription(
        rep_range=(rep_low, rep_high),
        sets=max(1, _round_half_up(sets)),
        rest_seconds=_round_half_up(rest / 5) * 5,
    )


def suggest_loading(
    rules: RuleBook,
    exercise: Exercise,
    user_state: UserState,
    planned_reps: int,
    rep_range: tuple[int, int] = DEFAULT_REP_RANGE,
) -> LoadingSuggestion:
    """Suggest a working weight; the first applicable source wins.

    1. e1RM from the most recent logged performance
    2. explicitly supplied 1RM
    3. last session's best set run through progression/deload
    4. experience and equipment-class defaults

    Bodyweight exercises always get 0.
    """
    if is_bodyweight_exercise(exercise):
        return LoadingSuggestion(0.0, "bodyweight")

    step = get_weight_step(exercise)

    e1rm = get_exercise_e1rm(exercise.id, user_state.last_session_performance)
    if e1rm > 0:
        weight = round_to_step(weight_for_reps(e1rm, planned_reps), step)
        return LoadingSuggestion(max(0.0, weight), "last_performance_e1rm")

    explicit = user_state.estimated_1rm.get(exercise.id, 0.0)
    if explicit > 0:
        weight = round_to_step(weight_for_reps(explicit, planned_reps), step)
        return LoadingSuggestion(max(0.0, weight), "explicit_1rm")

    performance = user_state.last_session_performance.get(exercise.id)
    if performance is not None and performance.sets:
        top = best_set(performance.sets)
        progression = evaluate_progression(performance.sets, rep_range)
        next_weight = calculate_next_weight(top.weight, progression, exercise)
        return LoadingSuggestion(max(0.0, round_to_step(next_weight, step)), "progression")

    default = rules.default_load(
        user_state.experience_level,
        exercise_equipment_class(exercise),
        exercise.intents[0],
    )
    if default <= 0:
        return LoadingSuggestion(0.0, "default")
    weight = round_to_step(max(default, get_minimum_weight(exercise)), step)
    return LoadingSuggestion(max(0.0, weight), "default")


def progression_rationale(exercise: Exercise, user_state: UserState, rep_range: tuple[int, int]) -> str | None:
    performance = user_state.last_session_performance.get(exercise.id)
    if performance is None or not performance.sets:
        return None
    top = best_set(performance.sets)
    progression = evaluate_progression(performance.sets, rep_range)
    next_weight = round_to_step(calculate_next_weight(top.weight, progression, exercise), get_weight_step(exercise))
    if next_weight > top.weight:
        return (
            f"Progression: increased weight from {top.weight:g}kg to {next_weight:g}kg "
            "after hitting top of rep range."
        )
    if next_weight < top.weight:
        return (
            f"Adjustment: reduced weight from {top.weight:g}kg to {next_weight:g}kg "
            "due to previous difficulty."
        )
    if progression == "reduce_sets":
        return f"Maintained {top.weight:g}kg; several sets missed the rep floor last time."
    return f"Maintained {top.weight:g}kg; continue building reps within target range."


def describe_constraints(constraints: TrainingConstraints) -> tuple[str, ...]:
    applied = [f"injury: {tag}" for tag in constraints.injuries]
    applied += [f"forbidden: {intent}" for intent in constraints.forbidden_movements]
    equipment = ", ".join(constraints.available_equipment) or "none"
    applied.append(f"equipment: {equipment}")
    if constraints.preferences.prefers_machines:
        applied.append("preference: machines")
    if constraints.preferences.prefers_free_weights:
        applied.append("preference: free_weights")
    applied += [f"hated: {exercise_id}" for exercise_id in constraints.preferences.hates_exercises]
    applied += [f"priority: {intent}" for intent in constraints.priority_intents]
    return tuple(applied)


def order_required_intents(required: Sequence[str], priority_intents: Sequence[str]) -> list[str]:
    rank = {intent: index for index, intent in enumerate(priority_intents)}
    return sorted(required, key=lambda intent: rank.get(intent, len(rank)))


def _alternative_reason(top: ExerciseScore, alternative: ExerciseScore) -> str:
    if alternative.score == top.score:
        return f"Tied at {alternative.score:g}; listed later in the catalog"
    missing = [reason for reason in top.reasons if reason not in alternative.reasons]
    penalties = [reason for reason in alternative.reasons if reason not in top.reasons]
    detail = (penalties or missing or ["lower overall fit"])[0]
    return f"Scored {alternative.score:g} vs {top.score:g}: {detail.lower()}"


def estimate_duration_minutes(rules: RuleBook, exercises: Iterable[PlannedExercise]) -> int:
    budget = rules.time_budget
    return budget.warmup_minutes + budget.cooldown_minutes + sum(
        rules.minutes_for(planned.priority) for planned in exercises
    )


def _plan_fingerprint(
    template: str,
    goals: Mapping[str, float],
    constraints: TrainingConstraints,
    user_state: UserState,
    session_label: str | None,
    rules_version: str,
) -> str:
    return "plan-" + stable_fingerprint({
        "template": template,
        "goals": dict(goals),
        "constraints": constraints.model_dump(mode="json"),
        "user_state": user_state.model_dump(mode="json"),
        "label": session_label,
        "rules": rules_version,
    })


def build_session(
    data: EngineData,
    template: str,
    goals: Mapping[str, float],
    constraints: TrainingConstraints,
    user_state: UserState,
    *,
    session_label: str | None = None,
    now: datetime | None = None,
) -> SessionPlan:
    """Build an explained, immutable plan for one session."""
    template_rules = data.rules.template(template)
    normalized_goals = normalize_goals(goals)
    applied_constraints = describe_constraints(constraints)

    exercises: list[PlannedExercise] = []
    selected_ids: list[str] = []
    muscle_uses: Counter[str] = Counter()

    def _add(intent: str, ranked: list[ExerciseScore], chosen: ExerciseScore, *, required: bool) -> None:
        exercise = chosen.exercise
        priority = determine_priority(exercise, intent)
        prescription = blend_prescription(data.rules, priority, normalized_goals)
        loading = suggest_loading(
            data.rules, exercise, user_state, prescription.target_reps, prescription.rep_range
        )
        planned_sets = tuple(
            PlannedSet(
                set_index=index,
                target_reps=prescription.target_reps,
                suggested_weight=loading.weight,
                rest_seconds=prescription.rest_seconds,
            )
            for index in range(1, prescription.sets + 1)
        )

        alternatives = [r for r in ranked if r.exercise_id != exercise.id][:MAX_ALTERNATIVES]
        if required:
            selection_reason = f"Primary {intent} movement. Top candidate from {len(ranked)} options."
            confidence = 0.9 if len(ranked) > 1 else 0.8
        else:
            selection_reason = f"Accessory {intent} movement for volume and variety."
            confidence = 0.7
        why_not_top_alt = None
        if alternatives:
            runner_up = alternatives[0]
            why_not_top_alt = (
                f"{runner_up.exercise.name} was second choice but {exercise.name} scored higher "
                f"({chosen.score:g} vs {runner_up.score:g})."
            )

        trace = DecisionTrace(
            intents=(intent,),
            goal_bias=normalized_goals,
            constraints_applied=applied_constraints,
            selection_reason=selection_reason,
            score=chosen.score,
            ranked_alternatives=tuple(
                RankedAlternative(
                    exercise_id=alt.exercise_id,
                    name=alt.exercise.name,
                    score=alt.score,
                    reason=_alternative_reason(chosen, alt),
                )
                for alt in alternatives
            ),
            why_not_top_alt=why_not_top_alt,
            confidence=confidence,
            progression_reason=progression_rationale(exercise, user_state, prescription.rep_range),
        )
        exercises.append(
            PlannedExercise(
                exercise_id=exercise.id,
                exercise=exercise,
                order_index=len(exercises),
                priority=priority,
                intents=(intent,),
                planned_sets=planned_sets,
                decision_trace=trace,
            )
        )
        selected_ids.append(exercise.id)
        muscle_uses.update(exercise.muscles_primary)

    def _candidates(intent: str) -> list[ExerciseScore]:
        ranked = rank_candidates(data.catalog, intent, constraints, user_state, selected_ids)
        return [r for r in ranked if r.exercise_id not in selected_ids]

    for intent in order_required_intents(template_rules.required_intents, constraints.priority_intents):
        ranked = _candidates(intent)
        if not ranked:
            logger.debug("No viable candidates for required intent %s in template %s", intent, template)
            continue
        _add(intent, ranked, ranked[0], required=True)

    optional = list(template_rules.optional_intents)
    max_exercises = data.rules.max_exercises(user_state.experience_level)
    exhausted: set[int] = set()
    cursor = 0
    while optional and len(exercises) < max_exercises and len(exhausted) < len(optional):
        slot = cursor % len(optional)
        cursor += 1
        if slot in exhausted:
            continue
        intent = optional[slot]
        ranked = _candidates(intent)
        if not ranked:
            exhausted.add(slot)
            continue
        balanced = [
            r for r in ranked
            if all(muscle_uses[muscle] < MAX_MUSCLE_USES for muscle in r.exercise.muscles_primary)
        ]
        _add(intent, ranked, (balanced or ranked)[0], required=False)

    plan = SessionPlan(
        id=_plan_fingerprint(
            template, normalized_goals, constraints, user_state, session_label, data.rules.version
        ),
        template=template,
        goals=normalized_goals,
        constraints=constraints,
        user_state=user_state,
        exercises=tuple(exercises),
        estimated_duration_minutes=estimate_duration_minutes(data.rules, exercises),
        created_at=now or datetime.now(timezone.utc),
        session_label=session_label,
    )
    logger.info(
        "Built %s session with %d exercises (~%d min)",
        template,
        len(plan.exercises),
        plan.estimated_duration_minutes,
        extra={"training_plan_id": plan.id, "training_template": template},
    )
    return plan


def build_session_from_program_day(
    data: EngineData,
    day_plan: ProgramDayPlan,
    profile: TrainingProfile,
    *,
    user_state: UserState | None = None,
    now: datetime | None = None,
) -> SessionPlan:
    """Build the concrete session for one scheduled program day."""
    base_constraints = profile.training_constraints()
    priority = tuple(dict.fromkeys((*base_constraints.priority_intents, *day_plan.intents)))
    constraints = base_constraints.model_copy(update={"priority_intents": priority})

    if user_state is None:
        user_state = UserState(
            experience_level=profile.experience_level,
            estimated_1rm=dict(profile.baselines),
        )
    elif profile.baselines:
        user_state = user_state.model_copy(
            update={"estimated_1rm": {**profile.baselines, **user_state.estimated_1rm}}
        )

    return build_session(
        data,
        day_plan.template,
        profile.effective_goals(),
        constraints,
        user_state,
        session_label=day_plan.label,
        now=now,
    )
