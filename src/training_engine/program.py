"""Four-week program planner and calendar-day generation.

The block is frozen: every week maps the same weekday to the same day plan.
Load progression happens later, when each day's session is built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, Sequence

from .errors import DateMathError
from .models import (
    FourWeekProgramPlan,
    ProgramDayPlan,
    ProgramDayRecord,
    TrainingProfile,
    WeekPlan,
)

logger = logging.getLogger(__name__)

WEEKS_PER_BLOCK = 4

TEMPLATE_GROUPING = {
    "push": "Push/Pull/Legs",
    "pull": "Push/Pull/Legs",
    "legs": "Push/Pull/Legs",
    "upper": "Upper/Lower",
    "lower": "Upper/Lower",
    "full_body": "Full Body",
    "conditioning": "Conditioning",
}


@dataclass(frozen=True)
class _Day:
    label: str
    intents: tuple[str, ...]
    template: str


@dataclass(frozen=True)
class Split:
    name: str
    days: tuple[_Day, ...]


_PUSH = ("horizontal_press", "vertical_press", "elbow_extension")
_PULL = ("vertical_pull", "horizontal_pull", "elbow_flexion")

FULL_BODY = Split("Full Body", (
    _Day("Full Body", ("knee_dominant", "horizontal_press", "horizontal_pull", "hip_hinge"), "full_body"),
))
UPPER_LOWER = Split("Upper/Lower", (
    _Day("Upper Body", ("horizontal_press", "vertical_pull", "horizontal_pull", "vertical_press"), "upper"),
    _Day("Lower Body", ("knee_dominant", "hip_hinge", "trunk_stability"), "lower"),
))
FULL_BODY_AB = Split("Full Body A/B", (
    _Day("Full Body A", ("knee_dominant", "horizontal_press", "horizontal_pull"), "full_body"),
    _Day("Full Body B", ("hip_hinge", "vertical_press", "vertical_pull"), "full_body"),
))
PUSH_PULL_LEGS = Split("Push/Pull/Legs", (
    _Day("Push (Chest/Shoulders/Triceps)", _PUSH, "push"),
    _Day("Pull (Back/Biceps)", _PULL, "pull"),
    _Day("Legs (Quads/Hamstrings/Glutes)", ("knee_dominant", "hip_hinge", "trunk_stability"), "legs"),
))
FULL_BODY_X3 = Split("Full Body x3", (
    _Day("Full Body A", ("knee_dominant", "horizontal_press", "horizontal_pull"), "full_body"),
    _Day("Full Body B", ("hip_hinge", "vertical_press", "vertical_pull"), "full_body"),
    _Day("Full Body C", ("knee_dominant", "horizontal_press", "vertical_pull"), "full_body"),
))
FULL_BODY_CONDITIONING = Split("Full Body + Conditioning", (
    _Day("Full Body Strength", ("horizontal_press", "vertical_pull", "knee_dominant"), "full_body"),
    _Day("Full Body Power", ("vertical_press", "hip_hinge", "trunk_stability"), "full_body"),
    _Day("Conditioning", ("carry", "trunk_stability", "conditioning"), "conditioning"),
))
UPPER_LOWER_X2 = Split("Upper/Lower x2", (
    _Day("Upper Strength", ("horizontal_press", "vertical_pull", "elbow_extension"), "upper"),
    _Day("Lower Power", ("knee_dominant", "hip_hinge", "trunk_stability"), "lower"),
    _Day("Upper Hypertrophy", ("vertical_press", "horizontal_pull", "elbow_flexion"), "upper"),
    _Day("Lower Strength", ("hip_hinge", "knee_dominant", "carry"), "lower"),
))
PPL_UPPER_LEGS = Split("Push/Pull/Legs/Upper/Legs", (
    _Day("Push (Chest Focus)", _PUSH, "push"),
    _Day("Pull (Back Focus)", _PULL, "pull"),
    _Day("Legs (Quad Focus)", ("knee_dominant", "trunk_stability"), "legs"),
    _Day("Upper (Shoulders/Arms)", ("vertical_press", "horizontal_pull", "elbow_extension"), "upper"),
    _Day("Legs (Posterior Chain)", ("hip_hinge", "trunk_stability"), "legs"),
))
PUSH_PULL_LEGS_X2 = Split("Push/Pull/Legs x2", (
    _Day("Push A (Strength)", _PUSH, "push"),
    _Day("Pull A (Strength)", _PULL, "pull"),
    _Day("Legs A (Quad Focus)", ("knee_dominant", "trunk_stability"), "legs"),
    _Day("Push B (Hypertrophy)", ("vertical_press", "horizontal_press", "elbow_extension"), "push"),
    _Day("Pull B (Hypertrophy)", ("horizontal_pull", "vertical_pull", "elbow_flexion"), "pull"),
    _Day("Legs B (Posterior)", ("hip_hinge", "knee_dominant", "trunk_stability"), "legs"),
))


def grouping_style(template: str) -> str:
    return TEMPLATE_GROUPING.get(template, "Custom")


def rank_goals(goals: dict[str, float]) -> list[str]:
    """Goals by descending weight; ties break alphabetically for determinism."""
    return [goal for goal, _ in sorted(goals.items(), key=lambda item: (-item[1], item[0]))]


def _effective_frequency(preference: str, days_per_week: int) -> tuple[str, str | None]:
    if preference == "twice" and days_per_week < 2:
        return "auto", (
            f"Twice-weekly muscle frequency needs at least 2 training days; "
            f"{days_per_week} selected, using automatic split."
        )
    if preference == "once" and days_per_week >= 4:
        return "auto", (
            f"Once-weekly muscle frequency is not available with {days_per_week} training days; "
            "using automatic split."
        )
    return preference, None


def select_split(days_per_week: int, primary_goal: str, frequency: str) -> Split:
    muscle_or_strength = primary_goal in ("build_muscle", "build_strength")
    if days_per_week <= 1:
        return FULL_BODY
    if days_per_week == 2:
        return FULL_BODY_AB if frequency == "twice" else UPPER_LOWER
    if days_per_week == 3:
        if frequency == "twice":
            return FULL_BODY_X3
        if muscle_or_strength or frequency == "once":
            return PUSH_PULL_LEGS
        return FULL_BODY_CONDITIONING
    if days_per_week == 4:
        return UPPER_LOWER_X2
    if days_per_week == 5:
        return PPL_UPPER_LEGS
    return PUSH_PULL_LEGS_X2


def normalize_weekdays(selected_weekdays: Iterable[int]) -> tuple[int, ...]:
    weekdays = set()
    for weekday in selected_weekdays:
        if not isinstance(weekday, int) or not 1 <= weekday <= 7:
            raise ValueError(f"Weekday must be 1 (Monday) to 7 (Sunday), got {weekday!r}")
        weekdays.add(weekday)
    return tuple(sorted(weekdays))


def build_four_week_plan(
    profile: TrainingProfile,
    selected_weekdays: Sequence[int],
    start_date: date,
) -> FourWeekProgramPlan:
    """Build the frozen four-week block for the selected weekdays.

    ``start_date`` anchors the block; the plan itself does not depend on it,
    so identical inputs always yield an identical plan.
    """
    weekdays = normalize_weekdays(selected_weekdays)
    if not weekdays:
        raise ValueError("At least one training weekday must be selected")

    goals = profile.effective_goals()
    ranked = rank_goals(goals)
    primary_goal = ranked[0]
    secondary_goal = ranked[1] if len(ranked) > 1 and goals[ranked[1]] > 0 else None

    frequency, warning = _effective_frequency(profile.muscle_frequency_preference, len(weekdays))
    warnings = (warning,) if warning else ()
    if warning:
        logger.warning(warning, extra={"training_start_date": start_date.isoformat()})

    split = select_split(len(weekdays), primary_goal, frequency)

    days = {
        weekday: ProgramDayPlan(
            weekday=weekday,
            label=split.days[index % len(split.days)].label,
            intents=split.days[index % len(split.days)].intents,
            template=split.days[index % len(split.days)].template,
        )
        for index, weekday in enumerate(weekdays)
    }

    return FourWeekProgramPlan(
        selected_weekdays=weekdays,
        weeks=tuple(WeekPlan(week_index=week, days=dict(days)) for week in range(1, WEEKS_PER_BLOCK + 1)),
        goals=goals,
        primary_goal=primary_goal,
        secondary_goal=secondary_goal,
        split_name=split.name,
        frequency_preference=frequency,
        warnings=warnings,
    )


def local_calendar_day(value: date | datetime, tz: tzinfo | None = None) -> date:
    """The calendar day ``value`` falls on in the user's local time zone.

    Aware datetimes are converted to ``tz`` (or the system zone) first; naive
    datetimes and dates are already local.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(tz) if tz is not None else value.astimezone()
        return value.date()
    return value


def format_local_date(value: date | datetime, tz: tzinfo | None = None) -> str:
    day = local_calendar_day(value, tz)
    return f"{day.year:04d}-{day.month:02d}-{day.day:02d}"


def monday_of(day: date) -> date:
    return day - timedelta(days=day.isoweekday() - 1)


def next_date_for_weekday(weekday: int, from_date: date | datetime, tz: tzinfo | None = None) -> date:
    day = local_calendar_day(from_date, tz)
    return day + timedelta(days=(weekday - day.isoweekday()) % 7)


def generate_program_days(
    program_id: str,
    user_id: str,
    plan: FourWeekProgramPlan,
    start_date: date | datetime,
    tz: tzinfo | None = None,
) -> list[ProgramDayRecord]:
    """Concrete calendar rows for every scheduled day of the block.

    Rows carry no id; the persistence layer assigns one on insert.
    """
    monday = monday_of(local_calendar_day(start_date, tz))
    records: list[ProgramDayRecord] = []
    for week in plan.weeks:
        for weekday in sorted(week.days):
            day_plan = week.days[weekday]
            day = monday + timedelta(days=(week.week_index - 1) * 7 + (weekday - 1))
            if day.isoweekday() != weekday:
                raise DateMathError(
                    f"Computed {day.isoformat()} is weekday {day.isoweekday()}, expected {weekday}"
                )
            records.append(
                ProgramDayRecord(
                    program_id=program_id,
                    user_id=user_id,
                    date=format_local_date(day),
                    week_index=week.week_index,
                    day_index=weekday,
                    label=day_plan.label,
                    intents=day_plan.intents,
                    template_key=day_plan.template,
                )
            )
    return records
