"""Exercise catalog loading and equipment classification."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Literal

from .errors import UnknownExerciseError
from .models import Exercise

logger = logging.getLogger(__name__)

EquipmentClass = Literal["machine", "free_weight", "bodyweight", "other"]

DATA_DIR = Path(__file__).parent / "data"
DEFAULT_CATALOG_PATH = DATA_DIR / "exercises.v1.json"

FREE_WEIGHT_EQUIPMENT = frozenset({
    "barbell",
    "dumbbell",
    "dumbbells",
    "kettlebell",
    "kettlebells",
    "ez_bar",
    "trap_bar",
    "plates",
})
BODYWEIGHT_EQUIPMENT = frozenset({"pull_up_bar", "rings", "dip_station", "parallettes"})

COMPOUND_INTENTS = frozenset({
    "horizontal_press",
    "vertical_press",
    "horizontal_pull",
    "vertical_pull",
    "knee_dominant",
    "hip_hinge",
    "carry",
})
LOWER_BODY_INTENTS = frozenset({"knee_dominant", "hip_hinge"})


def get_equipment_class(item: str) -> EquipmentClass:
    normalized = item.strip().lower()
    if "machine" in normalized:
        return "machine"
    if normalized in FREE_WEIGHT_EQUIPMENT:
        return "free_weight"
    if normalized in BODYWEIGHT_EQUIPMENT:
        return "bodyweight"
    return "other"


def required_equipment(exercise: Exercise) -> set[str]:
    items = set(exercise.equipment)
    items.update(exercise.equipment_all or ())
    items.update(exercise.equipment_any or ())
    return items


def is_machine_biased(exercise: Exercise) -> bool:
    return any(get_equipment_class(item) == "machine" for item in required_equipment(exercise))


def is_free_weight_biased(exercise: Exercise) -> bool:
    classes = {get_equipment_class(item) for item in required_equipment(exercise)}
    return "free_weight" in classes and "machine" not in classes


def is_bodyweight_exercise(exercise: Exercise) -> bool:
    """True when every piece of equipment is bodyweight or other (including none)."""
    return all(
        get_equipment_class(item) in ("bodyweight", "other")
        for item in required_equipment(exercise)
    )


def exercise_equipment_class(exercise: Exercise) -> EquipmentClass:
    if is_machine_biased(exercise):
        return "machine"
    if is_free_weight_biased(exercise):
        return "free_weight"
    return "bodyweight"


def is_compound_exercise(exercise: Exercise) -> bool:
    return any(intent in COMPOUND_INTENTS for intent in exercise.intents)


def get_weight_step(exercise: Exercise) -> float:
    if any(intent in LOWER_BODY_INTENTS for intent in exercise.intents):
        return 5.0
    if is_machine_biased(exercise):
        return 5.0
    return 2.5


def get_minimum_weight(exercise: Exercise) -> float:
    if is_bodyweight_exercise(exercise):
        return 0.0
    items = required_equipment(exercise)
    if "barbell" in items:
        return 20.0
    if is_machine_biased(exercise):
        return 5.0
    return 2.5


@dataclass(frozen=True)
class ExerciseCatalog:
    """Immutable, id-indexed collection of exercises in catalog order."""

    exercises: tuple[Exercise, ...]
    _by_id: dict[str, Exercise] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        index: dict[str, Exercise] = {}
        for exercise in self.exercises:
            if exercise.id in index:
                raise ValueError(f"Duplicate exercise id in catalog: {exercise.id}")
            index[exercise.id] = exercise
        object.__setattr__(self, "_by_id", index)

    @classmethod
    def from_records(cls, records: Iterable[dict]) -> "ExerciseCatalog":
        return cls(tuple(Exercise.model_validate(record) for record in records))

    @classmethod
    def load(cls, path: Path | None = None) -> "ExerciseCatalog":
        """Load the catalog from ``path`` or the bundled data file."""
        source = Path(path) if path is not None else DEFAULT_CATALOG_PATH
        raw = source.read_text(encoding="utf-8")
        records = json.loads(raw)
        if not isinstance(records, list):
            raise ValueError(f"Exercise catalog {source} must be a JSON array")
        catalog = cls.from_records(records)
        logger.debug("Loaded %d exercises from %s", len(catalog), source)
        return catalog

    def __len__(self) -> int:
        return len(self.exercises)

    def __iter__(self):
        return iter(self.exercises)

    def __contains__(self, exercise_id: object) -> bool:
        return exercise_id in self._by_id

    def get(self, exercise_id: str) -> Exercise | None:
        return self._by_id.get(exercise_id)

    def require(self, exercise_id: str) -> Exercise:
        exercise = self._by_id.get(exercise_id)
        if exercise is None:
            raise UnknownExerciseError(exercise_id)
        return exercise

    def by_intent(self, intent: str) -> list[Exercise]:
        return [exercise for exercise in self.exercises if intent in exercise.intents]

    def names(self) -> dict[str, str]:
        return {exercise.id: exercise.name for exercise in self.exercises}
