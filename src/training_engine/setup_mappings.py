"""Map setup-screen keys onto catalog exercise ids and engine equipment ids."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

logger = logging.getLogger(__name__)

BASELINE_EXERCISE_IDS: dict[str, str] = {
    "bench_press": "barbell_bench_press",
    "squat": "squat",
    "deadlift": "deadlift",
    "overhead_press": "overhead_press",
    "row": "barbell_row",
}

EQUIPMENT_ALIASES: dict[str, str | None] = {
    "cables": "cable_machine",
    # Dropped; catalog entries name specific machines.
    "machines": None,
}
KNOWN_EQUIPMENT_IDS = frozenset({
    "barbell",
    "dumbbells",
    "bench",
    "rack",
    "pull_up_bar",
    "kettlebells",
    "cable_machine",
    "leg_press_machine",
    "cardio",
    "rings",
    "dip_station",
})


def map_baseline_key_to_exercise_id(setup_key: str) -> str | None:
    return BASELINE_EXERCISE_IDS.get(setup_key)


def map_baseline_keys_to_exercise_ids(baselines: Mapping[str, float]) -> dict[str, float]:
    mapped: dict[str, float] = {}
    for setup_key, value in baselines.items():
        exercise_id = map_baseline_key_to_exercise_id(setup_key)
        if exercise_id and value and value > 0:
            mapped[exercise_id] = float(value)
    return mapped


def normalize_equipment_id(setup_id: str) -> str | None:
    if setup_id in EQUIPMENT_ALIASES:
        return EQUIPMENT_ALIASES[setup_id]
    if setup_id not in KNOWN_EQUIPMENT_IDS:
        logger.debug("Unknown equipment id %s passed through unchanged", setup_id)
    return setup_id


def normalize_equipment_ids(setup_ids: Iterable[str]) -> tuple[str, ...]:
    normalized = (normalize_equipment_id(setup_id) for setup_id in setup_ids)
    return tuple(dict.fromkeys(item for item in normalized if item is not None))
