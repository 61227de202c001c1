"""Dry-run plan generation for setup previews.

The preview path builds a synthetic profile from setup settings and then calls
the same ``generate_session_for_day`` that production generation uses, with a
fixed week 1 / first selected weekday context. Nothing here performs I/O.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from .errors import TrainingEngineError
from .models import (
    ExperienceLevel,
    FourWeekProgramPlan,
    MuscleFrequency,
    ProfileConstraints,
    SessionPlan,
    TrainingProfile,
    UserState,
)
from .planner import build_session_from_program_day
from .program import build_four_week_plan, grouping_style
from .progression import estimate_1rm
from .rules import EngineData
from .setup_mappings import map_baseline_keys_to_exercise_ids, normalize_equipment_ids

logger = logging.getLogger(__name__)

PREVIEW_DEFAULT_GOALS: dict[str, float] = {
    "build_muscle": 0.4,
    "build_strength": 0.4,
    "lose_fat": 0.1,
    "get_fitter": 0.1,
}
BASELINE_REPS = 5
AMRAP_REP_THRESHOLD = 12


class PreviewSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    goals: dict[str, float] = Field(default_factory=dict)
    selected_weekdays: tuple[int, ...] = ()
    equipment: tuple[str, ...] = ()
    constraints: tuple[str, ...] = ()
    baselines: dict[str, float] = Field(default_factory=dict)
    experience_level: ExperienceLevel = "beginner"
    time_budget_minutes: int = Field(default=60, gt=0)
    muscle_frequency_preference: MuscleFrequency = "auto"


@dataclass(frozen=True)
class PreviewContext:
    week_index: int = 1
    target_weekday: int | None = None


class PreviewSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    rep_ranges: dict[str, tuple[int, int] | None]
    set_counts: dict[str, int]
    grouping_style: str
    session_label: str | None = None
    has_amrap: bool
    example_snippet: str


def normalize_preview_goals(goals: dict[str, float]) -> dict[str, float]:
    total = sum(weight for weight in goals.values() if weight > 0)
    if total <= 0:
        return dict(PREVIEW_DEFAULT_GOALS)
    return {goal: max(0.0, goals.get(goal, 0.0)) / total for goal in PREVIEW_DEFAULT_GOALS}


def profile_from_settings(settings: PreviewSettings) -> TrainingProfile:
    """Synthetic profile built exactly the way setup persists a real one."""
    injuries = tuple(c for c in settings.constraints if "pain" in c or "issues" in c)
    forbidden = ("vertical_press",) if "no_overhead" in settings.constraints else ()

    baselines = {
        exercise_id: estimate_1rm(weight, BASELINE_REPS)
        for exercise_id, weight in map_baseline_keys_to_exercise_ids(settings.baselines).items()
    }

    return TrainingProfile(
        goals=normalize_preview_goals(settings.goals),
        equipment_access=normalize_equipment_ids(settings.equipment),
        constraints=ProfileConstraints(injuries=injuries, forbidden_movements=forbidden),
        baselines=baselines,
        experience_level=settings.experience_level,
        time_budget_minutes=settings.time_budget_minutes,
        muscle_frequency_preference=settings.muscle_frequency_preference,
    )


def generate_session_for_day(
    data: EngineData,
    profile: TrainingProfile,
    plan: FourWeekProgramPlan,
    week_index: int,
    weekday: int,
    *,
    user_state: UserState | None = None,
    now: datetime | None = None,
) -> SessionPlan | None:
    """Build the session scheduled for ``weekday`` of ``week_index``, if any."""
    day_plan = plan.day_plan(week_index, weekday)
    if day_plan is None:
        return None
    return build_session_from_program_day(data, day_plan, profile, user_state=user_state, now=now)


def dry_run_training_generation(
    data: EngineData,
    settings: PreviewSettings,
    context: PreviewContext | None = None,
    *,
    start_date: date | None = None,
    now: datetime | None = None,
) -> SessionPlan | None:
    if not settings.selected_weekdays:
        return None
    context = context or PreviewContext()
    try:
        profile = profile_from_settings(settings)
        plan = build_four_week_plan(profile, settings.selected_weekdays, start_date or date.today())
        weekday = context.target_weekday or plan.selected_weekdays[0]
        return generate_session_for_day(data, profile, plan, context.week_index, weekday, now=now)
    except (TrainingEngineError, ValueError):
        logger.warning("Preview generation failed", exc_info=True)
        return None


def compute_preview_summary(plan: SessionPlan | None) -> PreviewSummary | None:
    """Summarize a generated plan; derived only from the plan itself."""
    if plan is None or not plan.exercises:
        return None

    reps: dict[str, list[int]] = {"primary": [], "accessory": [], "isolation": []}
    counts = {"primary": 0, "accessory": 0, "isolation": 0}
    has_amrap = False
    for planned in plan.exercises:
        counts[planned.priority] += len(planned.planned_sets)
        reps[planned.priority].extend(s.target_reps for s in planned.planned_sets)
        if any(s.target_reps >= AMRAP_REP_THRESHOLD for s in planned.planned_sets):
            has_amrap = True

    first = plan.exercises[0]
    first_set = first.planned_sets[0] if first.planned_sets else None
    snippet = (
        f"{first.exercise.name}: {first_set.target_reps if first_set else 0} reps "
        f"@ {first_set.suggested_weight if first_set else 0:g}kg"
    )

    return PreviewSummary(
        rep_ranges={
            priority: (min(values), max(values)) if values else None
            for priority, values in reps.items()
        },
        set_counts={**counts, "total": sum(counts.values())},
        grouping_style=grouping_style(plan.template),
        session_label=plan.session_label,
        has_amrap=has_amrap,
        example_snippet=snippet,
    )


def generate_preview(
    data: EngineData,
    settings: PreviewSettings,
    context: PreviewContext | None = None,
    *,
    start_date: date | None = None,
) -> PreviewSummary | None:
    return compute_preview_summary(dry_run_training_generation(data, settings, context, start_date=start_date))
