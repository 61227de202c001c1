from __future__ import annotations

from training_engine.models import TrainingConstraints, TrainingPreferences, UserState
from training_engine.scoring import choose_exercise, has_equipment, rank_candidates, score_exercise


def _constraints(equipment=("barbell", "rack", "dumbbells", "bench"), **overrides) -> TrainingConstraints:
    return TrainingConstraints(available_equipment=tuple(equipment), **overrides)


def test_any_of_and_all_of_equipment(engine_data) -> None:
    catalog = engine_data.catalog
    assert has_equipment(catalog.require("romanian_deadlift"), ["dumbbells"])
    assert not has_equipment(catalog.require("squat"), ["dumbbells"])
    assert not has_equipment(catalog.require("squat"), ["barbell"])
    assert has_equipment(catalog.require("squat"), ["barbell", "rack"])


def test_combined_all_and_any_lists(engine_data) -> None:
    row = engine_data.catalog.require("dumbbell_row")
    assert has_equipment(row, ["dumbbells", "rack"])
    assert not has_equipment(row, ["dumbbells"])
    assert not has_equipment(row, ["bench", "rack"])


def test_legacy_equipment_list_is_any_of(engine_data) -> None:
    catalog = engine_data.catalog
    assert has_equipment(catalog.require("push_ups"), [])
    assert has_equipment(catalog.require("lat_pulldown"), ["cable_machine"])
    assert not has_equipment(catalog.require("lat_pulldown"), ["barbell"])


def test_score_breakdown_for_squat(engine_data) -> None:
    result = score_exercise(
        engine_data.catalog.require("squat"),
        "knee_dominant",
        _constraints(),
        UserState(experience_level="beginner"),
    )
    assert not result.excluded
    assert result.score == 100 + 50 + 30 + 30 + 20 + 25
    assert "Compound movement" in result.reasons
    assert "Appropriate difficulty" in result.reasons


def test_injury_excludes_contraindicated_exercise(engine_data) -> None:
    result = score_exercise(
        engine_data.catalog.require("squat"),
        "knee_dominant",
        _constraints(injuries=("knee_pain",)),
        UserState(),
    )
    assert result.excluded
    assert result.reasons == ("Contraindicated due to injury",)


def test_forbidden_movement_excludes_multi_intent_exercise(engine_data) -> None:
    result = score_exercise(
        engine_data.catalog.require("kettlebell_swing"),
        "hip_hinge",
        _constraints(equipment=("kettlebells",), forbidden_movements=("conditioning",)),
        UserState(),
    )
    assert result.excluded
    assert result.reasons == ("Contains forbidden movement",)


def test_wrong_intent_is_excluded(engine_data) -> None:
    result = score_exercise(engine_data.catalog.require("squat"), "hip_hinge", _constraints(), UserState())
    assert result.excluded


def test_machine_preference_bonus(engine_data) -> None:
    leg_press = engine_data.catalog.require("leg_press")
    equipment = ("leg_press_machine",)
    base = score_exercise(leg_press, "knee_dominant", _constraints(equipment), UserState())
    preferred = score_exercise(
        leg_press,
        "knee_dominant",
        _constraints(equipment, preferences=TrainingPreferences(prefers_machines=True, prefers_free_weights=True)),
        UserState(),
    )
    assert preferred.score - base.score == 15


def test_duplicate_and_disliked_penalties(engine_data) -> None:
    squat = engine_data.catalog.require("squat")
    base = score_exercise(squat, "knee_dominant", _constraints(), UserState())
    penalized = score_exercise(
        squat,
        "knee_dominant",
        _constraints(preferences=TrainingPreferences(hates_exercises=("squat",))),
        UserState(),
        already_selected=("squat",),
    )
    assert base.score - penalized.score == 80
    assert "User dislikes this exercise" in penalized.reasons


def test_rank_candidates_is_sorted_and_filtered(engine_data) -> None:
    ranked = rank_candidates(
        engine_data.catalog,
        "knee_dominant",
        _constraints(equipment=("dumbbells",)),
        UserState(experience_level="beginner"),
    )
    ids = [r.exercise_id for r in ranked]
    assert "squat" not in ids
    assert "goblet_squat" in ids
    assert "bodyweight_squat" in ids
    scores = [r.score for r in ranked]
    assert scores == sorted(scores, reverse=True)
    assert ids[0] == "goblet_squat"


def test_choose_exercise_returns_exercises(engine_data) -> None:
    chosen = choose_exercise(engine_data.catalog, "hip_hinge", _constraints(equipment=("dumbbells",)), UserState())
    assert chosen
    assert all("hip_hinge" in exercise.intents for exercise in chosen)
    assert "deadlift" not in [exercise.id for exercise in chosen]
