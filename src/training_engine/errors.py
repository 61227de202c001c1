"""Exception taxonomy for the training engine."""

from __future__ import annotations


class TrainingEngineError(Exception):
    """Base class for every error raised by the engine."""


class UnknownTemplateError(TrainingEngineError, ValueError):
    def __init__(self, template: str):
        super().__init__(f"Unknown template: {template}")
        self.template = template


class UnknownExerciseError(TrainingEngineError, LookupError):
    def __init__(self, exercise_id: str):
        super().__init__(f"Unknown exercise: {exercise_id}")
        self.exercise_id = exercise_id


class ExerciseNotInSessionError(TrainingEngineError, LookupError):
    def __init__(self, exercise_id: str):
        super().__init__(f"Exercise {exercise_id} not found in session")
        self.exercise_id = exercise_id


class InvalidTransitionError(TrainingEngineError, ValueError):
    """A runtime transition was requested that the exercise lifecycle forbids."""


class SyntheticIdentifierError(TrainingEngineError, ValueError):
    """A locally generated id reached a place that requires a persisted id."""


class DateMathError(TrainingEngineError, AssertionError):
    """Computed calendar date does not land on the expected weekday."""


class DuplicateRecordError(TrainingEngineError):
    """The persistence collaborator rejected a write because the key already exists."""

    def __init__(self, table: str, record_id: str):
        super().__init__(f"{table}: record {record_id} already exists")
        self.table = table
        self.record_id = record_id
