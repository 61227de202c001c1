from __future__ import annotations

import pytest

from conftest import FIXED_NOW
from training_engine.models import ExercisePerformance, SetPerformance
from training_engine.progression import (
    PreviousBest,
    calculate_next_reps,
    calculate_next_weight,
    compute_e1rm_from_performance,
    detect_fatigue,
    detect_prs,
    estimate_1rm,
    evaluate_progression,
    get_exercise_e1rm,
    round_to_step,
    weight_for_reps,
)


def _sets(*specs) -> list[SetPerformance]:
    return [SetPerformance(weight=w, reps=r, rpe=rpe) for w, r, rpe in specs]


def test_epley_estimate() -> None:
    assert estimate_1rm(100, 1) == 100.0
    assert estimate_1rm(100, 5) == pytest.approx(116.667, rel=1e-4)
    assert estimate_1rm(0, 5) == 0.0
    assert estimate_1rm(100, 0) == 0.0
    assert weight_for_reps(estimate_1rm(80, 5), 5) == pytest.approx(80.0)


def test_round_to_step_rounds_half_up() -> None:
    assert round_to_step(86.25, 2.5) == 87.5
    assert round_to_step(86.2, 2.5) == 85.0
    assert round_to_step(41, 0) == 41


def test_e1rm_from_performance() -> None:
    performance = ExercisePerformance(exercise_id="squat", sets=tuple(_sets((100, 5, 8), (110, 3, 9), (0, 10, None))))

    assert compute_e1rm_from_performance(performance) == pytest.approx(121.0)
    assert get_exercise_e1rm("squat", {"squat": performance}) == pytest.approx(121.0)
    assert get_exercise_e1rm("deadlift", {"squat": performance}) == 0.0
    assert get_exercise_e1rm("squat", None) == 0.0


def test_progression_increase_when_every_set_hits_the_top() -> None:
    assert evaluate_progression(_sets((60, 12, 7), (60, 12, 8), (60, 13, None)), (8, 12)) == "increase"


def test_high_rpe_before_last_set_counts_as_failure() -> None:
    assert evaluate_progression(_sets((60, 12, 9), (60, 12, 8)), (8, 12)) == "decrease"


def test_progression_failure_paths() -> None:
    assert evaluate_progression(_sets((60, 6, 8), (60, 9, 8)), (8, 12)) == "decrease"
    assert evaluate_progression(_sets((60, 6, 8), (60, 5, 9)), (8, 12)) == "reduce_sets"
    assert evaluate_progression(_sets((60, 10, 8), (60, 9, 9)), (8, 12)) == "maintain"
    assert evaluate_progression([], (8, 12)) == "maintain"


def test_next_weight_increase_is_capped(engine_data) -> None:
    squat = engine_data.catalog.require("squat")

    assert calculate_next_weight(100, "increase", squat) == 105.0
    assert calculate_next_weight(100, "decrease", squat) == 95.0
    assert calculate_next_weight(20, "decrease", engine_data.catalog.require("barbell_bench_press")) == 20.0
    assert calculate_next_weight(100, "maintain", squat) == 100.0


def test_next_reps() -> None:
    assert calculate_next_reps(10, (8, 12), "increase") == 11
    assert calculate_next_reps(12, (8, 12), "increase") == 12
    assert calculate_next_reps(10, (8, 12), "decrease") == 8
    assert calculate_next_reps(10, (8, 12), "reduce_sets") == 10


def test_fatigue_detection() -> None:
    assert detect_fatigue(_sets((100, 8, 7))) == 0.0
    assert detect_fatigue(_sets((100, 8, 7), (100, 8, 7))) == 0.0
    assert detect_fatigue(_sets((100, 8, 7), (100, 8, 9))) == 0.5
    assert detect_fatigue(_sets((100, 10, 7), (100, 7, 8))) == 0.8


def test_prs_require_previous_best() -> None:
    sets = _sets((100, 5, 8))
    assert detect_prs("squat", "Squat", sets, None, achieved_at=FIXED_NOW) == []
    assert detect_prs("squat", "Squat", [], PreviousBest(best_weight=50), achieved_at=FIXED_NOW) == []


def test_prs_by_metric() -> None:
    sets = _sets((100, 5, 8), (97.5, 6, 9))
    previous = PreviousBest(best_weight=95, best_reps=5, best_e1rm=115.0, best_volume=1500)

    records = {pr.metric: pr for pr in detect_prs("squat", "Squat", sets, previous, achieved_at=FIXED_NOW)}

    assert set(records) == {"weight", "reps", "e1rm"}
    assert records["weight"].value == 100
    assert records["reps"].value == 6
    assert records["e1rm"].value == pytest.approx(117.0)
    assert records["e1rm"].previous_value == 115.0
    assert records["weight"].achieved_at == FIXED_NOW


def test_matching_unrounded_best_is_not_a_pr() -> None:
    previous = PreviousBest(best_weight=100, best_reps=5, best_e1rm=estimate_1rm(100, 5), best_volume=500)

    assert detect_prs("bench", "Bench", _sets((100, 5, None)), previous, achieved_at=FIXED_NOW) == []


def test_pr_value_is_rounded_for_reporting() -> None:
    previous = PreviousBest(best_weight=102.5, best_reps=8, best_e1rm=116.0, best_volume=499.9)

    records = {pr.metric: pr for pr in detect_prs("bench", "Bench", _sets((100, 5, None)), previous, achieved_at=FIXED_NOW)}

    assert set(records) == {"e1rm", "volume"}
    assert records["e1rm"].value == 116.7
    assert records["volume"].value == 500
