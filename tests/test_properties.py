"""Property tests for planning and autoregulation invariants.

Run:
    pytest tests/test_properties.py -v --hypothesis-seed=42
"""

from __future__ import annotations

from datetime import date

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from conftest import FIXED_NOW
from training_engine.autoregulation import AutoregulationInput, apply_autoregulation
from training_engine.models import (
    MOVEMENT_INTENTS,
    SESSION_TEMPLATES,
    TRAINING_GOALS,
    SetPerformance,
    TrainingConstraints,
    TrainingProfile,
    UserState,
)
from training_engine.planner import build_session
from training_engine.program import build_four_week_plan, generate_program_days
from training_engine.scoring import has_equipment

PROPERTY_SETTINGS = settings(
    max_examples=60,
    suppress_health_check=[HealthCheck.too_slow],
    deadline=None,
)

EQUIPMENT = ("barbell", "rack", "bench", "dumbbells", "kettlebells", "cable_machine", "pull_up_bar", "leg_press_machine")

weekdays = st.sets(st.integers(min_value=1, max_value=7), min_size=1, max_size=7)
goal_weights = st.dictionaries(st.sampled_from(TRAINING_GOALS), st.floats(min_value=0, max_value=1), max_size=4)
rpe_values = st.one_of(st.none(), st.sampled_from([5, 6, 6.5, 7, 7.5, 8, 8.5, 9, 9.5, 10]))


class TestProgramInvariants:
    @PROPERTY_SETTINGS
    @given(days=weekdays, goals=goal_weights, frequency=st.sampled_from(["auto", "once", "twice"]),
           start=st.dates(min_value=date(2024, 1, 1), max_value=date(2030, 12, 31)))
    def test_block_is_four_identical_weeks_on_selected_days(self, days, goals, frequency, start):
        profile = TrainingProfile(goals=goals, muscle_frequency_preference=frequency)

        plan = build_four_week_plan(profile, sorted(days), start)

        assert len(plan.weeks) == 4
        assert all(week.days == plan.weeks[0].days for week in plan.weeks)
        assert set(plan.weeks[0].days) == days

        records = generate_program_days("prog", "user", plan, start)
        assert len(records) == 4 * len(days)
        for record in records:
            assert date.fromisoformat(record.date).isoweekday() == record.day_index


class TestSessionInvariants:
    @PROPERTY_SETTINGS
    @given(
        template=st.sampled_from(SESSION_TEMPLATES),
        equipment=st.sets(st.sampled_from(EQUIPMENT)),
        forbidden=st.sets(st.sampled_from(MOVEMENT_INTENTS), max_size=3),
        goals=goal_weights,
        level=st.sampled_from(["beginner", "intermediate", "advanced"]),
    )
    def test_plan_respects_constraints(self, engine_data, template, equipment, forbidden, goals, level):
        available = tuple(sorted(equipment))
        plan = build_session(
            engine_data,
            template,
            goals,
            TrainingConstraints(available_equipment=available, forbidden_movements=tuple(sorted(forbidden))),
            UserState(experience_level=level),
            now=FIXED_NOW,
        )

        ids = plan.exercise_order()
        assert len(ids) == len(set(ids))
        assert len(ids) <= max(engine_data.rules.max_exercises(level), len(engine_data.rules.template(template).required_intents))
        for planned in plan.exercises:
            assert has_equipment(planned.exercise, available)
            assert not set(planned.exercise.intents) & forbidden
            assert [s.set_index for s in planned.planned_sets] == list(range(1, len(planned.planned_sets) + 1))
            assert all(s.suggested_weight >= 0 for s in planned.planned_sets)


class TestAutoregulationInvariants:
    @PROPERTY_SETTINGS
    @given(
        set_index=st.integers(min_value=1, max_value=6),
        reps=st.integers(min_value=0, max_value=20),
        target=st.integers(min_value=1, max_value=20),
        weight=st.sampled_from([0.0, 2.5, 20.0, 60.0, 142.5]),
        rpe=rpe_values,
        previous_rpes=st.lists(rpe_values, max_size=5),
    )
    def test_adjustments_stay_in_bounds(self, set_index, reps, target, weight, rpe, previous_rpes):
        previous = tuple(SetPerformance(weight=weight, reps=target, rpe=r) for r in previous_rpes)
        result = apply_autoregulation(
            AutoregulationInput(
                exercise_id="x",
                current_set_index=set_index,
                current_set_reps=reps,
                current_set_weight=weight,
                target_reps=target,
                suggested_weight=weight,
                current_set_rpe=rpe,
                previous_sets=previous,
            )
        )

        assert result.rule_id
        if rpe is None:
            assert result.adjustment is None
        if result.adjusted_weight is not None:
            assert result.adjusted_weight >= 0
        if result.adjusted_reps is not None:
            assert result.adjusted_reps >= 1
        if result.adjustment is not None:
            assert 0 <= result.adjustment.confidence <= 1
            if weight == 0:
                assert result.adjustment.weight_multiplier is None or result.adjustment.weight_multiplier <= 1
