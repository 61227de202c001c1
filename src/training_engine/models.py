"""Pydantic models for catalog, planning, and program data.

Catalog and rule files use camelCase keys; models accept either the alias or
the field name and always dump by field name unless ``by_alias`` is requested.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MovementIntent = Literal[
    "horizontal_press",
    "vertical_press",
    "horizontal_pull",
    "vertical_pull",
    "knee_dominant",
    "hip_hinge",
    "elbow_extension",
    "elbow_flexion",
    "trunk_stability",
    "carry",
    "conditioning",
]
TrainingGoal = Literal["build_muscle", "build_strength", "lose_fat", "get_fitter"]
SessionTemplate = Literal["push", "pull", "legs", "upper", "lower", "full_body", "conditioning"]
ExperienceLevel = Literal["beginner", "intermediate", "advanced"]
ExercisePriority = Literal["primary", "accessory", "isolation"]
MuscleFrequency = Literal["auto", "once", "twice"]

MOVEMENT_INTENTS: tuple[str, ...] = get_args(MovementIntent)
TRAINING_GOALS: tuple[str, ...] = get_args(TrainingGoal)
SESSION_TEMPLATES: tuple[str, ...] = get_args(SessionTemplate)
EXPERIENCE_LEVELS: tuple[str, ...] = get_args(ExperienceLevel)
PRIORITIES: tuple[str, ...] = get_args(ExercisePriority)

GoalWeights = dict[TrainingGoal, float]

DEFAULT_PROFILE_GOALS: dict[str, float] = {
    "build_muscle": 0.5,
    "build_strength": 0.3,
    "lose_fat": 0.2,
    "get_fitter": 0.0,
}


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


def _validate_goal_weights(value: dict[str, float]) -> dict[str, float]:
    for goal, weight in value.items():
        if weight < 0:
            raise ValueError(f"goal weight for {goal} must be >= 0")
    return value


# --- Catalog ---


class Exercise(_Frozen):
    id: str
    name: str
    aliases: tuple[str, ...] = ()
    intents: tuple[MovementIntent, ...]
    equipment: tuple[str, ...] = ()
    equipment_all: tuple[str, ...] | None = Field(default=None, alias="equipmentAll")
    equipment_any: tuple[str, ...] | None = Field(default=None, alias="equipmentAny")
    muscles_primary: tuple[str, ...] = Field(default=(), alias="musclesPrimary")
    muscles_secondary: tuple[str, ...] = Field(default=(), alias="musclesSecondary")
    difficulty: ExperienceLevel = "beginner"
    contraindications: tuple[str, ...] = ()
    substitution_tags: tuple[str, ...] = Field(default=(), alias="substitutionTags")
    unilateral: bool = False
    notes: str | None = None

    @field_validator("id", "name")
    @classmethod
    def validate_non_empty(cls, value: str, info: Any) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError(f"{info.field_name} must not be empty")
        return cleaned

    @field_validator("intents")
    @classmethod
    def validate_intents(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if not value:
            raise ValueError("exercise must declare at least one intent")
        return value


# --- Planning inputs ---


class SetPerformance(_Frozen):
    weight: float = Field(ge=0)
    reps: int = Field(ge=0)
    rpe: float | None = Field(default=None, ge=1, le=10)


class ExercisePerformance(_Frozen):
    exercise_id: str
    sets: tuple[SetPerformance, ...] = ()
    performed_on: date | None = None


class TrainingPreferences(_Frozen):
    prefers_machines: bool = False
    prefers_free_weights: bool = False
    hates_exercises: tuple[str, ...] = ()


class TrainingConstraints(_Frozen):
    available_equipment: tuple[str, ...] = ()
    injuries: tuple[str, ...] = ()
    forbidden_movements: tuple[MovementIntent, ...] = ()
    time_budget_minutes: int = Field(default=60, gt=0)
    priority_intents: tuple[MovementIntent, ...] = ()
    preferences: TrainingPreferences = TrainingPreferences()


class UserState(_Frozen):
    experience_level: ExperienceLevel = "beginner"
    last_session_performance: dict[str, ExercisePerformance] = Field(default_factory=dict)
    estimated_1rm: dict[str, float] = Field(default_factory=dict)
    fatigue_proxy: float | None = Field(default=None, ge=0, le=1)


# --- Planning outputs ---


class PlannedSet(_Frozen):
    set_index: int = Field(ge=1)
    target_reps: int = Field(ge=1)
    suggested_weight: float = Field(ge=0)
    rest_seconds: int = Field(ge=0)


class RankedAlternative(_Frozen):
    exercise_id: str
    name: str
    score: float
    reason: str


class DecisionTrace(_Frozen):
    intents: tuple[MovementIntent, ...]
    goal_bias: dict[str, float]
    constraints_applied: tuple[str, ...]
    selection_reason: str
    score: float
    ranked_alternatives: tuple[RankedAlternative, ...] = ()
    why_not_top_alt: str | None = None
    confidence: float = Field(ge=0, le=1)
    progression_reason: str | None = None

    @property
    def alternatives_summary(self) -> list[dict[str, str]]:
        return [{"name": alt.name, "reason": alt.reason} for alt in self.ranked_alternatives]


class PlannedExercise(_Frozen):
    exercise_id: str
    exercise: Exercise
    order_index: int = Field(ge=0)
    priority: ExercisePriority
    intents: tuple[MovementIntent, ...]
    planned_sets: tuple[PlannedSet, ...]
    decision_trace: DecisionTrace

    @model_validator(mode="after")
    def validate_contiguous_sets(self) -> "PlannedExercise":
        indexes = [s.set_index for s in self.planned_sets]
        if indexes != list(range(1, len(indexes) + 1)):
            raise ValueError(f"planned sets for {self.exercise_id} must be contiguous from 1, got {indexes}")
        return self


class SessionPlan(_Frozen):
    id: str
    template: SessionTemplate
    goals: dict[str, float]
    constraints: TrainingConstraints
    user_state: UserState
    exercises: tuple[PlannedExercise, ...]
    estimated_duration_minutes: int = Field(ge=0)
    created_at: datetime
    session_label: str | None = None

    @model_validator(mode="after")
    def validate_forbidden_intents(self) -> "SessionPlan":
        forbidden = set(self.constraints.forbidden_movements)
        for planned in self.exercises:
            clash = forbidden.intersection(planned.exercise.intents)
            if clash:
                raise ValueError(
                    f"{planned.exercise_id} trains forbidden movement(s) {sorted(clash)}"
                )
        return self

    def exercise_order(self) -> list[str]:
        return [planned.exercise_id for planned in self.exercises]

    def exercise_names(self) -> dict[str, str]:
        return {planned.exercise_id: planned.exercise.name for planned in self.exercises}


# --- Program ---


class ProfileConstraints(_Frozen):
    injuries: tuple[str, ...] = ()
    forbidden_movements: tuple[MovementIntent, ...] = ()
    priority_intents: tuple[MovementIntent, ...] = ()
    preferences: TrainingPreferences = TrainingPreferences()


class TrainingProfile(_Frozen):
    goals: dict[TrainingGoal, float] = Field(default_factory=dict)
    equipment_access: tuple[str, ...] = ()
    constraints: ProfileConstraints = ProfileConstraints()
    baselines: dict[str, float] = Field(default_factory=dict)
    experience_level: ExperienceLevel = "beginner"
    time_budget_minutes: int = Field(default=60, gt=0)
    muscle_frequency_preference: MuscleFrequency = "auto"

    @field_validator("goals")
    @classmethod
    def validate_goals(cls, value: dict[str, float]) -> dict[str, float]:
        return _validate_goal_weights(value)

    def effective_goals(self) -> dict[str, float]:
        if not self.goals or sum(self.goals.values()) <= 0:
            return dict(DEFAULT_PROFILE_GOALS)
        return {goal: float(weight) for goal, weight in self.goals.items()}

    def training_constraints(self) -> TrainingConstraints:
        return TrainingConstraints(
            available_equipment=self.equipment_access,
            injuries=self.constraints.injuries,
            forbidden_movements=self.constraints.forbidden_movements,
            time_budget_minutes=self.time_budget_minutes,
            priority_intents=self.constraints.priority_intents,
            preferences=self.constraints.preferences,
        )


class ProgramDayPlan(_Frozen):
    weekday: int = Field(ge=1, le=7)
    label: str
    intents: tuple[MovementIntent, ...]
    template: SessionTemplate


class WeekPlan(_Frozen):
    week_index: int = Field(ge=1, le=4)
    days: dict[int, ProgramDayPlan]


class FourWeekProgramPlan(_Frozen):
    selected_weekdays: tuple[int, ...]
    weeks: tuple[WeekPlan, ...]
    goals: dict[str, float]
    primary_goal: TrainingGoal
    secondary_goal: TrainingGoal | None = None
    split_name: str
    frequency_preference: MuscleFrequency = "auto"
    warnings: tuple[str, ...] = ()

    @model_validator(mode="after")
    def validate_four_identical_weeks(self) -> "FourWeekProgramPlan":
        if len(self.weeks) != 4:
            raise ValueError("a program block always spans four weeks")
        first = self.weeks[0].days
        for week in self.weeks[1:]:
            if week.days != first:
                raise ValueError(f"week {week.week_index} differs from week 1")
        return self

    def day_plan(self, week_index: int, weekday: int) -> ProgramDayPlan | None:
        if not 1 <= week_index <= len(self.weeks):
            return None
        return self.weeks[week_index - 1].days.get(weekday)


class ProgramDayRecord(_Frozen):
    program_id: str
    user_id: str
    date: str
    week_index: int
    day_index: int
    label: str
    intents: tuple[MovementIntent, ...]
    template_key: SessionTemplate
