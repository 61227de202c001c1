"""Rule tables and the injected engine data bundle.

``EngineData`` pairs the exercise catalog with the rule book. It is built once
at process start and passed explicitly to every planning function, so tests
can swap in fixture data without touching module state.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .catalog import DATA_DIR, ExerciseCatalog
from .errors import UnknownTemplateError

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = DATA_DIR / "rules.v1.json"


class _RuleModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class TierTable(_RuleModel):
    primary: float
    accessory: float
    isolation: float

    def for_priority(self, priority: str) -> float:
        return float(getattr(self, priority))


class RepRangeTable(_RuleModel):
    primary: tuple[int, int]
    accessory: tuple[int, int]
    isolation: tuple[int, int]

    @model_validator(mode="after")
    def validate_ranges(self) -> "RepRangeTable":
        for name in ("primary", "accessory", "isolation"):
            low, high = getattr(self, name)
            if low < 1 or high < low:
                raise ValueError(f"invalid {name} rep range [{low}, {high}]")
        return self

    def for_priority(self, priority: str) -> tuple[int, int]:
        return getattr(self, priority)


class GoalRules(_RuleModel):
    rep_ranges: RepRangeTable = Field(alias="repRanges")
    sets_per_intent: TierTable = Field(alias="setsPerIntent")
    rest_seconds: TierTable = Field(alias="restSeconds")


class TemplateRules(_RuleModel):
    required_intents: tuple[str, ...] = Field(alias="requiredIntents")
    optional_intents: tuple[str, ...] = Field(default=(), alias="optionalIntents")


class ExperienceRules(_RuleModel):
    max_exercises: int = Field(alias="maxExercises", ge=1)


class TimeBudgetRules(_RuleModel):
    warmup_minutes: int = Field(alias="warmupMinutes", ge=0)
    cooldown_minutes: int = Field(alias="cooldownMinutes", ge=0)
    per_exercise_minutes: TierTable = Field(
        default=TierTable(primary=8, accessory=5, isolation=3),
        alias="perExerciseMinutes",
    )


class RuleBook(_RuleModel):
    version: str = "rules.v1"
    goals: dict[str, GoalRules]
    session_templates: dict[str, TemplateRules] = Field(alias="sessionTemplates")
    experience_levels: dict[str, ExperienceRules] = Field(alias="experienceLevels")
    time_budget: TimeBudgetRules = Field(alias="timeBudget")
    default_loads: dict[str, dict[str, dict[str, float]]] = Field(default_factory=dict, alias="defaultLoads")

    @classmethod
    def load(cls, path: Path | None = None) -> "RuleBook":
        source = Path(path) if path is not None else DEFAULT_RULES_PATH
        rules = cls.model_validate(json.loads(source.read_text(encoding="utf-8")))
        logger.debug("Loaded rule book %s from %s", rules.version, source)
        return rules

    def template(self, template: str) -> TemplateRules:
        rules = self.session_templates.get(template)
        if rules is None:
            raise UnknownTemplateError(template)
        return rules

    def max_exercises(self, experience_level: str) -> int:
        level = self.experience_levels.get(experience_level)
        return level.max_exercises if level is not None else 4

    def default_load(self, experience_level: str, equipment_class: str, intent: str) -> float:
        by_class = self.default_loads.get(experience_level, {})
        return float(by_class.get(equipment_class, {}).get(intent, 0.0))

    def minutes_for(self, priority: str) -> int:
        return int(self.time_budget.per_exercise_minutes.for_priority(priority))


@dataclass(frozen=True)
class EngineData:
    catalog: ExerciseCatalog
    rules: RuleBook

    @classmethod
    def load(cls, catalog_path: Path | None = None, rules_path: Path | None = None) -> "EngineData":
        return cls(
            catalog=ExerciseCatalog.load(catalog_path),
            rules=RuleBook.load(rules_path),
        )
