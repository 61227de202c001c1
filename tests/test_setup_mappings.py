from __future__ import annotations

from training_engine.setup_mappings import (
    map_baseline_key_to_exercise_id,
    map_baseline_keys_to_exercise_ids,
    normalize_equipment_id,
    normalize_equipment_ids,
)


def test_baseline_keys_map_to_catalog_ids(engine_data) -> None:
    assert map_baseline_key_to_exercise_id("bench_press") == "barbell_bench_press"
    assert map_baseline_key_to_exercise_id("curl") is None
    for setup_key in ("bench_press", "squat", "deadlift", "overhead_press", "row"):
        assert map_baseline_key_to_exercise_id(setup_key) in engine_data.catalog


def test_baselines_drop_unknown_and_non_positive() -> None:
    assert map_baseline_keys_to_exercise_ids({"squat": 100, "row": 0, "curl": 20, "deadlift": -5}) == {
        "squat": 100.0
    }


def test_equipment_aliases() -> None:
    assert normalize_equipment_id("cables") == "cable_machine"
    assert normalize_equipment_id("machines") is None
    assert normalize_equipment_id("sled") == "sled"
    assert normalize_equipment_ids(["cables", "barbell", "machines", "cable_machine"]) == ("cable_machine", "barbell")
