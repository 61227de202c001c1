"""Session runtime state machine.

Every transition takes a ``SessionRuntimeState`` and returns a new one; nothing
is mutated in place. Exercise lifecycle: ``pending -> in_progress -> completed``
or ``pending -> skipped``. Session lifecycle: ``active <-> paused``, then
``completing -> completed`` through ``end_session``. Persistence happens in the caller via the offline
queue, keyed by the persisted ids carried on the state.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Literal, Mapping, Sequence

from .autoregulation import (
    AdaptationReason,
    AutoregulationAdjustment,
    AutoregulationInput,
    apply_autoregulation,
)
from .errors import ExerciseNotInSessionError, InvalidTransitionError
from .identifiers import PersistedItemId, PersistedSessionId, persisted_item_id, persisted_session_id, set_log_id
from .models import PlannedExercise, PlannedSet, SessionPlan
from .planner import estimate_duration_minutes
from .progression import PersonalRecord, PreviousBest, detect_fatigue, detect_prs
from .rules import EngineData

logger = logging.getLogger(__name__)

ExerciseStatus = Literal["pending", "in_progress", "completed", "skipped"]
SessionStatus = Literal["active", "paused", "completing", "completed"]
SessionMode = Literal["manual", "timed"]
AdaptTrigger = Literal["time_pressure", "fatigue"]

SEVERE_FATIGUE = 0.7
MODERATE_FATIGUE = 0.5
ISOLATION_SET_CAP = 1
ACCESSORY_SET_CAP = 2
_PRIORITY_RANK = {"primary": 3, "accessory": 2, "isolation": 1}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SetLogEntry:
    id: str
    exercise_id: str
    session_item_id: PersistedItemId
    set_index: int
    weight: float
    reps: int
    completed_at: datetime
    rpe: float | None = None
    planned_target_reps: int | None = None
    planned_weight: float | None = None
    adjustment_applied: AutoregulationAdjustment | None = None


@dataclass(frozen=True)
class AdaptationTrace:
    timestamp: datetime
    exercise_id: str
    set_index: int
    reason: AdaptationReason
    rule_id: str
    message: str
    confidence: float
    target_reps: int = 0
    suggested_weight: float = 0.0
    previous_set_rpe: float | None = None
    previous_set_reps: int | None = None
    previous_set_weight: float | None = None
    adjusted_weight: float | None = None
    adjusted_target_reps: int | None = None


@dataclass(frozen=True)
class ExerciseRuntimeState:
    exercise_id: str
    item_id: PersistedItemId
    planned_sets: tuple[PlannedSet, ...]
    status: ExerciseStatus = "pending"
    completed_sets: tuple[SetLogEntry, ...] = ()
    current_set_index: int = 1
    adjustments: Mapping[int, AutoregulationAdjustment] = field(default_factory=dict)
    skip_reason: str | None = None

    def planned_set(self, set_index: int) -> PlannedSet | None:
        for planned in self.planned_sets:
            if planned.set_index == set_index:
                return planned
        return None


@dataclass(frozen=True)
class SessionRuntimeState:
    session_id: PersistedSessionId
    started_at: datetime
    mode: SessionMode
    exercise_order: tuple[str, ...]
    exercise_states: Mapping[str, ExerciseRuntimeState]
    current_exercise_index: int = 0
    all_logged_sets: tuple[SetLogEntry, ...] = ()
    adaptation_trace: tuple[AdaptationTrace, ...] = ()
    elapsed_seconds: int = 0
    last_tick_at: datetime | None = None
    status: SessionStatus = "active"

    def exercise(self, exercise_id: str) -> ExerciseRuntimeState:
        try:
            return self.exercise_states[exercise_id]
        except KeyError:
            raise ExerciseNotInSessionError(exercise_id) from None

    def with_exercise(self, exercise_state: ExerciseRuntimeState, **changes) -> "SessionRuntimeState":
        states = {**self.exercise_states, exercise_state.exercise_id: exercise_state}
        return replace(self, exercise_states=states, **changes)


@dataclass(frozen=True)
class LogSetResult:
    state: SessionRuntimeState
    set_entry: SetLogEntry
    adjustment: AutoregulationAdjustment | None = None
    trace: AdaptationTrace | None = None


@dataclass(frozen=True)
class SkipResult:
    state: SessionRuntimeState
    trace: AdaptationTrace


@dataclass(frozen=True)
class AdjustedSetParams:
    target_reps: int
    suggested_weight: float
    has_adjustment: bool
    adjustment_message: str | None = None


@dataclass(frozen=True)
class SessionStats:
    completed_exercises: int
    skipped_exercises: int
    total_sets: int
    total_volume: int
    average_rpe: float | None


@dataclass(frozen=True)
class LevelUpEvent:
    exercise_id: str
    exercise_name: str
    metric: str
    value: float
    message: str


@dataclass(frozen=True)
class SessionRuntimeResult:
    session_id: PersistedSessionId
    started_at: datetime
    ended_at: datetime
    duration_minutes: int
    exercises_completed: int
    exercises_skipped: int
    total_sets: int
    total_volume: int
    prs: tuple[PersonalRecord, ...]
    adaptation_trace: tuple[AdaptationTrace, ...]
    level_up_events: tuple[LevelUpEvent, ...]
    final_state: SessionRuntimeState | None = None


@dataclass(frozen=True)
class AdaptationOutcome:
    plan: SessionPlan
    state: SessionRuntimeState
    dropped_exercise_ids: tuple[str, ...] = ()


def _exercise_state(planned: PlannedExercise, item_ids: Mapping[str, str]) -> ExerciseRuntimeState:
    return ExerciseRuntimeState(
        exercise_id=planned.exercise_id,
        item_id=persisted_item_id(item_ids.get(planned.exercise_id, "")),
        planned_sets=planned.planned_sets,
    )


def initialize_runtime(
    session_id: str,
    plan: SessionPlan,
    item_ids: Mapping[str, str],
    mode: SessionMode = "manual",
    now: datetime | None = None,
) -> SessionRuntimeState:
    """Seed runtime state for a freshly created session.

    ``item_ids`` maps each exercise id to the session item id assigned by the
    persistence layer. Missing or locally generated ids are rejected.
    """
    now = now or _utcnow()
    states = {planned.exercise_id: _exercise_state(planned, item_ids) for planned in plan.exercises}
    state = SessionRuntimeState(
        session_id=persisted_session_id(session_id),
        started_at=now,
        mode=mode,
        exercise_order=tuple(plan.exercise_order()),
        exercise_states=states,
        last_tick_at=now,
    )
    logger.info(
        "Session runtime initialized",
        extra={"training_session_id": state.session_id, "training_exercise_count": len(states)},
    )
    return state


def resume_runtime(
    session_id: str,
    started_at: datetime,
    mode: SessionMode,
    plan: SessionPlan,
    item_ids: Mapping[str, str],
    existing_sets: Sequence[SetLogEntry],
    skipped_exercise_ids: Sequence[str] = (),
    now: datetime | None = None,
) -> SessionRuntimeState:
    """Rebuild runtime state from persisted sets and skips."""
    now = now or _utcnow()
    states: dict[str, ExerciseRuntimeState] = {}
    for planned in plan.exercises:
        base = _exercise_state(planned, item_ids)
        completed = tuple(
            sorted((s for s in existing_sets if s.exercise_id == planned.exercise_id), key=lambda s: s.set_index)
        )
        if planned.exercise_id in skipped_exercise_ids:
            status: ExerciseStatus = "skipped"
        elif len(completed) >= len(planned.planned_sets):
            status = "completed"
        elif completed:
            status = "in_progress"
        else:
            status = "pending"
        states[planned.exercise_id] = replace(
            base,
            status=status,
            completed_sets=completed,
            current_set_index=len(completed) + 1,
        )

    order = tuple(plan.exercise_order())
    current = next(
        (i for i, exercise_id in enumerate(order) if states[exercise_id].status in ("pending", "in_progress")),
        max(len(order) - 1, 0),
    )
    return SessionRuntimeState(
        session_id=persisted_session_id(session_id),
        started_at=started_at,
        mode=mode,
        exercise_order=order,
        exercise_states=states,
        current_exercise_index=current,
        all_logged_sets=tuple(existing_sets),
        elapsed_seconds=max(0, int((now - started_at).total_seconds())),
        last_tick_at=now,
    )


def tick_runtime(state: SessionRuntimeState, now: datetime | None = None) -> SessionRuntimeState:
    if state.status != "active":
        return state
    now = now or _utcnow()
    delta = int((now - state.last_tick_at).total_seconds()) if state.last_tick_at else 0
    return replace(state, elapsed_seconds=state.elapsed_seconds + max(0, delta), last_tick_at=now)


def pause_runtime(state: SessionRuntimeState, now: datetime | None = None) -> SessionRuntimeState:
    if state.status != "active":
        raise InvalidTransitionError(f"Cannot pause a session that is {state.status}")
    return replace(tick_runtime(state, now), status="paused")


def unpause_runtime(state: SessionRuntimeState, now: datetime | None = None) -> SessionRuntimeState:
    if state.status != "paused":
        raise InvalidTransitionError(f"Cannot resume a session that is {state.status}")
    return replace(state, status="active", last_tick_at=now or _utcnow())


def begin_completion(state: SessionRuntimeState, now: datetime | None = None) -> SessionRuntimeState:
    """Freeze the clock and stop accepting set logs ahead of ``end_session``."""
    if state.status not in ("active", "paused"):
        raise InvalidTransitionError(f"Cannot complete a session that is {state.status}")
    return replace(tick_runtime(state, now), status="completing")


def _require_open(state: SessionRuntimeState) -> None:
    if state.status in ("completing", "completed"):
        raise InvalidTransitionError(f"Session {state.session_id} is {state.status}")


def log_set(
    state: SessionRuntimeState,
    exercise_id: str,
    set_index: int,
    weight: float,
    reps: int,
    rpe: float | None = None,
    now: datetime | None = None,
) -> LogSetResult:
    """Record a completed set and compute the autoregulation for the next one."""
    _require_open(state)
    exercise_state = state.exercise(exercise_id)
    if exercise_state.status == "skipped":
        raise InvalidTransitionError(f"Exercise {exercise_id} was skipped")
    expected = len(exercise_state.completed_sets) + 1
    if set_index != expected:
        raise InvalidTransitionError(f"Expected set {expected} for {exercise_id}, got {set_index}")
    if weight < 0 or reps < 0:
        raise InvalidTransitionError("Weight and reps must be non-negative")

    now = now or _utcnow()
    planned = exercise_state.planned_set(set_index)
    entry = SetLogEntry(
        id=set_log_id(exercise_state.item_id, set_index),
        exercise_id=exercise_id,
        session_item_id=exercise_state.item_id,
        set_index=set_index,
        weight=weight,
        reps=reps,
        rpe=rpe,
        completed_at=now,
        planned_target_reps=planned.target_reps if planned else None,
        planned_weight=planned.suggested_weight if planned else None,
        adjustment_applied=exercise_state.adjustments.get(set_index),
    )

    next_index = set_index + 1
    next_planned = exercise_state.planned_set(next_index)
    adjustment: AutoregulationAdjustment | None = None
    trace: AdaptationTrace | None = None
    if next_planned is not None and rpe is not None:
        result = apply_autoregulation(
            AutoregulationInput(
                exercise_id=exercise_id,
                current_set_index=set_index,
                current_set_reps=reps,
                current_set_weight=weight,
                target_reps=next_planned.target_reps,
                suggested_weight=next_planned.suggested_weight,
                current_set_rpe=rpe,
                previous_sets=exercise_state.completed_sets,
            )
        )
        if result.adjustment is not None:
            adjustment = result.adjustment
            trace = AdaptationTrace(
                timestamp=now,
                exercise_id=exercise_id,
                set_index=next_index,
                reason=result.reason,
                rule_id=adjustment.rule_id,
                message=adjustment.message,
                confidence=adjustment.confidence,
                target_reps=next_planned.target_reps,
                suggested_weight=next_planned.suggested_weight,
                previous_set_rpe=rpe,
                previous_set_reps=reps,
                previous_set_weight=weight,
                adjusted_weight=result.adjusted_weight,
                adjusted_target_reps=result.adjusted_reps,
            )
            logger.info(
                "Autoregulation adjustment",
                extra={
                    "training_session_id": state.session_id,
                    "training_exercise_id": exercise_id,
                    "training_rule_id": adjustment.rule_id,
                },
            )

    completed = (*exercise_state.completed_sets, entry)
    adjustments = dict(exercise_state.adjustments)
    if adjustment is not None:
        adjustments[next_index] = adjustment
    updated = replace(
        exercise_state,
        status="completed" if len(completed) >= len(exercise_state.planned_sets) else "in_progress",
        completed_sets=completed,
        current_set_index=next_index,
        adjustments=adjustments,
    )
    new_state = state.with_exercise(
        updated,
        all_logged_sets=(*state.all_logged_sets, entry),
        adaptation_trace=(*state.adaptation_trace, trace) if trace else state.adaptation_trace,
    )
    return LogSetResult(state=new_state, set_entry=entry, adjustment=adjustment, trace=trace)


def advance_exercise(state: SessionRuntimeState) -> SessionRuntimeState:
    next_index = state.current_exercise_index + 1
    if next_index >= len(state.exercise_order):
        return state
    current = state.exercise_states[state.exercise_order[state.current_exercise_index]]
    if current.completed_sets and current.status != "skipped":
        return state.with_exercise(replace(current, status="completed"), current_exercise_index=next_index)
    return replace(state, current_exercise_index=next_index)


def skip_exercise(
    state: SessionRuntimeState,
    exercise_id: str,
    reason: str = "user_skipped",
    now: datetime | None = None,
) -> SkipResult:
    _require_open(state)
    exercise_state = state.exercise(exercise_id)
    if exercise_state.status == "completed":
        raise InvalidTransitionError(f"Exercise {exercise_id} is already completed")
    first = exercise_state.planned_sets[0] if exercise_state.planned_sets else None
    trace = AdaptationTrace(
        timestamp=now or _utcnow(),
        exercise_id=exercise_id,
        set_index=exercise_state.current_set_index,
        reason="user_override",
        rule_id="skip_exercise",
        message=f"Exercise skipped: {reason}",
        confidence=1.0,
        target_reps=first.target_reps if first else 0,
        suggested_weight=first.suggested_weight if first else 0.0,
    )
    updated = replace(exercise_state, status="skipped", skip_reason=reason)
    return SkipResult(
        state=state.with_exercise(updated, adaptation_trace=(*state.adaptation_trace, trace)),
        trace=trace,
    )


def get_current_exercise(state: SessionRuntimeState) -> ExerciseRuntimeState | None:
    if not 0 <= state.current_exercise_index < len(state.exercise_order):
        return None
    return state.exercise_states.get(state.exercise_order[state.current_exercise_index])


def get_adjusted_set_params(state: SessionRuntimeState, exercise_id: str, set_index: int) -> AdjustedSetParams:
    exercise_state = state.exercise(exercise_id)
    planned = exercise_state.planned_set(set_index)
    if planned is None:
        raise LookupError(f"Set {set_index} not found for exercise {exercise_id}")

    adjustment = exercise_state.adjustments.get(set_index)
    if adjustment is None:
        return AdjustedSetParams(planned.target_reps, planned.suggested_weight, False)

    weight = planned.suggested_weight
    reps = planned.target_reps
    if adjustment.weight_multiplier is not None:
        weight *= adjustment.weight_multiplier
    if adjustment.weight_delta is not None:
        weight += adjustment.weight_delta
    weight = _round_half_kg(weight)
    if adjustment.target_reps_delta is not None:
        reps = max(1, reps + adjustment.target_reps_delta)
    return AdjustedSetParams(reps, max(0.0, weight), True, adjustment.message)


def _exercise_counts(state: SessionRuntimeState) -> tuple[int, int]:
    completed = skipped = 0
    for exercise_state in state.exercise_states.values():
        if exercise_state.status == "completed" or exercise_state.completed_sets:
            completed += 1
        elif exercise_state.status == "skipped":
            skipped += 1
    return completed, skipped


def _round_half_kg(weight: float) -> float:
    return math.floor(weight * 2 + 0.5) / 2


def _total_volume(sets: Sequence[SetLogEntry]) -> int:
    return int(math.floor(sum(s.weight * s.reps for s in sets) + 0.5))


def get_session_stats(state: SessionRuntimeState) -> SessionStats:
    completed, skipped = _exercise_counts(state)
    rated = [s.rpe for s in state.all_logged_sets if s.rpe is not None]
    return SessionStats(
        completed_exercises=completed,
        skipped_exercises=skipped,
        total_sets=len(state.all_logged_sets),
        total_volume=_total_volume(state.all_logged_sets),
        average_rpe=round(sum(rated) / len(rated), 1) if rated else None,
    )


def _level_up_message(record: PersonalRecord) -> str:
    label = "e1RM" if record.metric == "e1rm" else record.metric
    unit = {"volume": "kg total", "reps": " reps"}.get(record.metric, "kg")
    return f"New {label} PR: {record.value:g}{unit}"


def end_session(
    state: SessionRuntimeState,
    exercise_names: Mapping[str, str],
    previous_bests: Mapping[str, PreviousBest] | None = None,
    now: datetime | None = None,
) -> SessionRuntimeResult:
    """Close the session and summarize it, including PRs and the adaptation trace.

    Active or paused sessions pass through ``completing`` first; the result
    carries the final ``completed`` state.
    """
    now = now or _utcnow()
    if state.status != "completing":
        state = begin_completion(state, now)
    previous_bests = previous_bests or {}
    completed, skipped = _exercise_counts(state)

    prs: list[PersonalRecord] = []
    for exercise_id in state.exercise_order:
        exercise_state = state.exercise_states[exercise_id]
        if not exercise_state.completed_sets:
            continue
        prs.extend(
            detect_prs(
                exercise_id,
                exercise_names.get(exercise_id, exercise_id),
                exercise_state.completed_sets,
                previous_bests.get(exercise_id),
                achieved_at=now,
            )
        )

    events = tuple(
        LevelUpEvent(
            exercise_id=record.exercise_id,
            exercise_name=record.exercise_name,
            metric=record.metric,
            value=record.value,
            message=_level_up_message(record),
        )
        for record in prs
    )
    result = SessionRuntimeResult(
        session_id=state.session_id,
        started_at=state.started_at,
        ended_at=now,
        duration_minutes=max(0, int((now - state.started_at).total_seconds() // 60)),
        exercises_completed=completed,
        exercises_skipped=skipped,
        total_sets=len(state.all_logged_sets),
        total_volume=_total_volume(state.all_logged_sets),
        prs=tuple(prs),
        adaptation_trace=state.adaptation_trace,
        level_up_events=events,
        final_state=replace(state, status="completed"),
    )
    logger.info(
        "Session ended",
        extra={
            "training_session_id": state.session_id,
            "training_total_sets": result.total_sets,
            "training_pr_count": len(result.prs),
        },
    )
    return result


def _truncate(planned: PlannedExercise, keep: int, done: int) -> PlannedExercise:
    keep = max(1, keep, done)
    if keep >= len(planned.planned_sets):
        return planned
    return planned.model_copy(update={"planned_sets": planned.planned_sets[:keep]})


def adapt_session(
    state: SessionRuntimeState,
    plan: SessionPlan,
    reason: AdaptTrigger,
    data: EngineData,
    now: datetime | None = None,
) -> AdaptationOutcome:
    """Trim the remaining session for time pressure or accumulated fatigue.

    ``time_pressure`` drops the lowest-priority remaining exercises until the
    estimate fits what is left of the time budget, then caps isolation work
    at 1 set and accessory work at 2. Fatigue truncates remaining sets. Sets
    already logged are never removed.
    """
    now = now or _utcnow()
    rules = data.rules
    traces: list[AdaptationTrace] = []
    remaining = [
        planned
        for planned in plan.exercises
        if state.exercise_states.get(planned.exercise_id) is None
        or state.exercise_states[planned.exercise_id].status != "skipped"
    ]

    def _done(exercise_id: str) -> int:
        exercise_state = state.exercise_states.get(exercise_id)
        return len(exercise_state.completed_sets) if exercise_state else 0

    def _completed(exercise_id: str) -> bool:
        exercise_state = state.exercise_states.get(exercise_id)
        return exercise_state is not None and exercise_state.status == "completed"

    def _trace(exercise_id: str, trace_reason: AdaptationReason, rule_id: str, message: str) -> None:
        traces.append(
            AdaptationTrace(
                timestamp=now,
                exercise_id=exercise_id,
                set_index=_done(exercise_id) + 1,
                reason=trace_reason,
                rule_id=rule_id,
                message=message,
                confidence=1.0,
            )
        )

    fatigue_levels = {
        planned.exercise_id: detect_fatigue(state.exercise_states[planned.exercise_id].completed_sets)
        for planned in remaining
        if planned.exercise_id in state.exercise_states
    }

    dropped: list[str] = []
    if reason == "time_pressure":
        budget_left = plan.constraints.time_budget_minutes - state.elapsed_seconds / 60

        def _estimate() -> int:
            return sum(rules.minutes_for(p.priority) for p in remaining if not _completed(p.exercise_id))

        droppable = sorted(
            (p for p in remaining if _done(p.exercise_id) == 0),
            key=lambda p: (_PRIORITY_RANK[p.priority], -p.order_index),
        )
        while _estimate() > budget_left and droppable:
            victim = droppable.pop(0)
            remaining.remove(victim)
            dropped.append(victim.exercise_id)
            _trace(victim.exercise_id, "time_pressure", "TIME_PRESSURE_DROP", "Dropped to fit remaining time budget")

        capped = []
        for planned in remaining:
            cap = {"isolation": ISOLATION_SET_CAP, "accessory": ACCESSORY_SET_CAP}.get(planned.priority)
            trimmed = _truncate(planned, cap, _done(planned.exercise_id)) if cap else planned
            if trimmed is not planned:
                _trace(
                    planned.exercise_id,
                    "time_pressure",
                    "TIME_PRESSURE_TRIM_SETS",
                    f"Reduced to {len(trimmed.planned_sets)} sets to save time",
                )
            capped.append(trimmed)
        remaining = capped

    if reason == "fatigue" or any(level > MODERATE_FATIGUE for level in fatigue_levels.values()):
        adjusted = []
        for planned in remaining:
            level = fatigue_levels.get(planned.exercise_id, 0.0)
            count = len(planned.planned_sets)
            if level > SEVERE_FATIGUE:
                trimmed = _truncate(planned, math.floor(count * 0.5), _done(planned.exercise_id))
            elif level > MODERATE_FATIGUE or (reason == "fatigue" and count > 1):
                trimmed = _truncate(planned, math.floor(count * 0.7), _done(planned.exercise_id))
            else:
                trimmed = planned
            if trimmed is not planned:
                _trace(
                    planned.exercise_id,
                    "fatigue_detected",
                    "FATIGUE_TRIM_SETS",
                    f"Reduced to {len(trimmed.planned_sets)} sets due to fatigue",
                )
            adjusted.append(trimmed)
        remaining = adjusted

    new_plan = plan.model_copy(
        update={
            "exercises": tuple(remaining),
            "estimated_duration_minutes": estimate_duration_minutes(rules, remaining),
        }
    )

    states = dict(state.exercise_states)
    for exercise_id in dropped:
        if exercise_id in states:
            states[exercise_id] = replace(states[exercise_id], status="skipped", skip_reason="time_pressure")
    for planned in remaining:
        exercise_state = states.get(planned.exercise_id)
        if exercise_state is None or exercise_state.planned_sets == planned.planned_sets:
            continue
        status = exercise_state.status
        if exercise_state.completed_sets and len(exercise_state.completed_sets) >= len(planned.planned_sets):
            status = "completed"
        states[planned.exercise_id] = replace(exercise_state, planned_sets=planned.planned_sets, status=status)

    new_state = replace(
        state,
        exercise_states=states,
        adaptation_trace=(*state.adaptation_trace, *traces),
    )
    logger.info(
        "Session adapted",
        extra={
            "training_session_id": state.session_id,
            "training_reason": reason,
            "training_dropped": len(dropped),
        },
    )
    return AdaptationOutcome(plan=new_plan, state=new_state, dropped_exercise_ids=tuple(dropped))
