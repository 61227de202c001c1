"""Rule-based load autoregulation for the next set of an exercise.

Rules are evaluated in a fixed order and every outcome carries a rule id, a
confidence and a message. Weight never goes below zero; for bodyweight work
(suggested weight 0) weight reductions become rep-target reductions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Sequence

from .progression import PerformedSet

AdaptationReason = Literal[
    "first_set_baseline",
    "high_rpe",
    "reps_drop",
    "strong_performance",
    "fatigue_detected",
    "time_pressure",
    "user_override",
]
FatigueLevel = Literal["low", "moderate", "high"]
RestAdjustment = Literal["normal", "extended", "shortened"]

RPE_HIGH_THRESHOLD = 9
RPE_VERY_HIGH_THRESHOLD = 10
RPE_LOW_THRESHOLD = 7
RPE_EASY_THRESHOLD = 6
RPE_RISING_THRESHOLD = 8
REPS_DROP_THRESHOLD = 0.20
REPS_DROP_LARGE_THRESHOLD = 0.30
WEIGHT_REDUCTION_SMALL = 0.05
WEIGHT_REDUCTION_LARGE = 0.10
REPS_REDUCTION_SMALL = 1
REPS_REDUCTION_LARGE = 2
WEIGHT_INCREASE_SMALL = 0.025
MIN_WEIGHT_KG = 0.0
FATIGUE_SETS_THRESHOLD = 3
MIN_REST_SECONDS = 45


@dataclass(frozen=True)
class AutoregulationAdjustment:
    rule_id: str
    message: str
    confidence: float
    weight_multiplier: float | None = None
    weight_delta: float | None = None
    target_reps_delta: int | None = None
    skip_remaining_sets: bool = False


@dataclass(frozen=True)
class AutoregulationInput:
    exercise_id: str
    current_set_index: int
    current_set_reps: int
    current_set_weight: float
    target_reps: int
    suggested_weight: float
    current_set_rpe: float | None = None
    previous_sets: Sequence[PerformedSet] = ()


@dataclass(frozen=True)
class AutoregulationResult:
    reason: AdaptationReason
    rule_id: str
    message: str
    adjustment: AutoregulationAdjustment | None = None
    adjusted_weight: float | None = None
    adjusted_reps: int | None = None


@dataclass(frozen=True)
class SessionFatigue:
    fatigue_level: FatigueLevel
    score: float
    should_reduce_remaining: bool
    message: str


@dataclass(frozen=True)
class RestTime:
    rest_seconds: int
    adjustment: RestAdjustment
    message: str


def _no_adjustment(reason: AdaptationReason, rule_id: str, message: str) -> AutoregulationResult:
    return AutoregulationResult(reason=reason, rule_id=rule_id, message=message)


def _reduce(
    inp: AutoregulationInput,
    *,
    reason: AdaptationReason,
    rule_id: str,
    message: str,
    confidence: float,
    reduction: float,
    reps_delta: int = 0,
) -> AutoregulationResult:
    if inp.suggested_weight <= 0:
        # Nothing to take off; cut the rep target instead.
        reps_delta = reps_delta or (
            REPS_REDUCTION_LARGE if reduction >= WEIGHT_REDUCTION_LARGE else REPS_REDUCTION_SMALL
        )
        adjustment = AutoregulationAdjustment(
            rule_id=rule_id,
            message=message,
            confidence=confidence,
            target_reps_delta=-reps_delta,
        )
        return AutoregulationResult(
            reason=reason,
            rule_id=rule_id,
            message=message,
            adjustment=adjustment,
            adjusted_weight=MIN_WEIGHT_KG,
            adjusted_reps=max(1, inp.target_reps - reps_delta),
        )

    multiplier = round(1 - reduction, 4)
    adjustment = AutoregulationAdjustment(
        rule_id=rule_id,
        message=message,
        confidence=confidence,
        weight_multiplier=multiplier,
        target_reps_delta=-reps_delta if reps_delta else None,
    )
    return AutoregulationResult(
        reason=reason,
        rule_id=rule_id,
        message=message,
        adjustment=adjustment,
        adjusted_weight=max(MIN_WEIGHT_KG, inp.suggested_weight * multiplier),
        adjusted_reps=max(1, inp.target_reps - reps_delta) if reps_delta else None,
    )


def _format_rpe(rpe: float) -> str:
    return f"{rpe:g}"


def apply_autoregulation(inp: AutoregulationInput) -> AutoregulationResult:
    """Compute the adjustment for the set after ``inp.current_set_index``."""
    rpe = inp.current_set_rpe
    if rpe is None:
        return _no_adjustment("first_set_baseline", "NO_RPE_DATA", "No RPE data available for autoregulation")

    if inp.current_set_index == 1 and not inp.previous_sets:
        return _first_set(inp, rpe)

    fatigue = _accumulated_fatigue(inp, rpe)
    if fatigue is not None:
        return fatigue

    if rpe >= RPE_VERY_HIGH_THRESHOLD:
        return _reduce(
            inp,
            reason="high_rpe",
            rule_id="VERY_HIGH_RPE_REDUCE",
            message=f"RPE {_format_rpe(rpe)} indicates maximal effort. Reducing weight 10% and target reps by 2.",
            confidence=0.95,
            reduction=WEIGHT_REDUCTION_LARGE,
            reps_delta=REPS_REDUCTION_LARGE,
        )
    if rpe >= RPE_HIGH_THRESHOLD:
        return _reduce(
            inp,
            reason="high_rpe",
            rule_id="HIGH_RPE_REDUCE",
            message=f"RPE {_format_rpe(rpe)} is high. Reducing weight 5% for next set.",
            confidence=0.85,
            reduction=WEIGHT_REDUCTION_SMALL,
        )

    if inp.target_reps > 0 and inp.current_set_reps > 0:
        drop = (inp.target_reps - inp.current_set_reps) / inp.target_reps
        if drop >= REPS_DROP_THRESHOLD:
            return _reps_drop(inp, drop)

    if inp.current_set_reps >= inp.target_reps and rpe <= RPE_LOW_THRESHOLD:
        return _strong_performance(inp, rpe)

    return _no_adjustment(
        "first_set_baseline",
        "WITHIN_EXPECTED_RANGE",
        "Performance within expected range, no adjustment needed",
    )


def _first_set(inp: AutoregulationInput, rpe: float) -> AutoregulationResult:
    if rpe >= RPE_VERY_HIGH_THRESHOLD:
        return _reduce(
            inp,
            reason="high_rpe",
            rule_id="FIRST_SET_VERY_HIGH_RPE",
            message=f"First set RPE {_format_rpe(rpe)} very high. Reducing weight 10% for remaining sets.",
            confidence=0.9,
            reduction=WEIGHT_REDUCTION_LARGE,
        )
    if rpe >= RPE_HIGH_THRESHOLD:
        return _reduce(
            inp,
            reason="high_rpe",
            rule_id="FIRST_SET_HIGH_RPE",
            message=f"First set RPE {_format_rpe(rpe)} high. Reducing weight 5% for remaining sets.",
            confidence=0.85,
            reduction=WEIGHT_REDUCTION_SMALL,
        )
    return _no_adjustment("first_set_baseline", "FIRST_SET_BASELINE", "First set completed, establishing baseline")


def _accumulated_fatigue(inp: AutoregulationInput, rpe: float) -> AutoregulationResult | None:
    high_rpe_sets = sum(1 for s in inp.previous_sets if s.rpe is not None and s.rpe >= RPE_HIGH_THRESHOLD)
    if rpe >= RPE_HIGH_THRESHOLD:
        high_rpe_sets += 1

    if high_rpe_sets >= FATIGUE_SETS_THRESHOLD:
        message = f"{high_rpe_sets} sets at RPE 9+. Consider ending exercise to prevent overreaching."
        return AutoregulationResult(
            reason="fatigue_detected",
            rule_id="FATIGUE_ACCUMULATION",
            message=message,
            adjustment=AutoregulationAdjustment(
                rule_id="FATIGUE_ACCUMULATION",
                message=message,
                confidence=0.85,
                skip_remaining_sets=True,
            ),
        )

    if len(inp.previous_sets) >= 2 and rpe >= RPE_RISING_THRESHOLD:
        earlier, latest = inp.previous_sets[-2].rpe, inp.previous_sets[-1].rpe
        if earlier is not None and latest is not None and latest > earlier:
            return _reduce(
                inp,
                reason="fatigue_detected",
                rule_id="RISING_RPE_FATIGUE",
                message="Fatigue accumulating (rising RPE pattern). Reducing weight 5%.",
                confidence=0.75,
                reduction=WEIGHT_REDUCTION_SMALL,
            )
    return None


def _reps_drop(inp: AutoregulationInput, drop: float) -> AutoregulationResult:
    percent = round(drop * 100)
    performed = f"({inp.current_set_reps}/{inp.target_reps})"
    if drop >= REPS_DROP_LARGE_THRESHOLD:
        return _reduce(
            inp,
            reason="reps_drop",
            rule_id="LARGE_REPS_DROP",
            message=f"Reps dropped {percent}% {performed}. Reducing weight 10% and target by 1.",
            confidence=0.9,
            reduction=WEIGHT_REDUCTION_LARGE,
            reps_delta=REPS_REDUCTION_SMALL,
        )
    return _reduce(
        inp,
        reason="reps_drop",
        rule_id="REPS_DROP_ADJUST",
        message=f"Reps dropped {percent}% {performed}. Reducing weight 5%.",
        confidence=0.8,
        reduction=WEIGHT_REDUCTION_SMALL,
    )


def _strong_performance(inp: AutoregulationInput, rpe: float) -> AutoregulationResult:
    excess = inp.current_set_reps - inp.target_reps
    if excess >= 2 and rpe <= RPE_EASY_THRESHOLD and inp.suggested_weight > 0:
        message = (
            f"Strong performance: {inp.current_set_reps} reps at RPE {_format_rpe(rpe)}. "
            "Consider +2.5% for next set."
        )
        multiplier = 1 + WEIGHT_INCREASE_SMALL
        return AutoregulationResult(
            reason="strong_performance",
            rule_id="STRONG_PERFORMANCE_INCREASE",
            message=message,
            adjustment=AutoregulationAdjustment(
                rule_id="STRONG_PERFORMANCE_INCREASE",
                message=message,
                confidence=0.7,
                weight_multiplier=multiplier,
            ),
            adjusted_weight=inp.suggested_weight * multiplier,
        )
    return _no_adjustment(
        "strong_performance",
        "STRONG_PERFORMANCE_HOLD",
        f"Good performance: {inp.current_set_reps} reps at RPE {_format_rpe(rpe)}. Keep current weight.",
    )


def detect_session_fatigue(all_sets: Sequence[PerformedSet]) -> SessionFatigue:
    """Blend average RPE, high-RPE ratio and a recent rising trend into a 0-1 score."""
    if not all_sets:
        return SessionFatigue("low", 0.0, False, "No sets logged yet")

    rated = [s.rpe for s in all_sets if s.rpe is not None]
    avg_rpe = sum(rated) / len(rated) if rated else 5.0
    high_ratio = sum(1 for r in rated if r >= RPE_HIGH_THRESHOLD) / len(rated) if rated else 0.0

    recent = list(all_sets[-5:])
    rising = sum(
        1
        for prev, cur in zip(recent, recent[1:])
        if prev.rpe is not None and cur.rpe is not None and cur.rpe > prev.rpe
    )
    decline_score = rising / (len(recent) - 1) if len(recent) > 1 else 0.0

    rpe_score = min(1.0, (avg_rpe - 5) / 5)
    score = rpe_score * 0.4 + high_ratio * 0.4 + decline_score * 0.2

    if score >= 0.7:
        level, reduce, message = "high", True, (
            "High fatigue detected. Consider reducing remaining work or ending session."
        )
    elif score >= 0.4:
        level, reduce, message = "moderate", True, (
            "Moderate fatigue accumulating. Autoregulation will reduce weights."
        )
    else:
        level, reduce, message = "low", False, "Fatigue levels normal."
    return SessionFatigue(level, round(score, 2), reduce, message)


def get_adjusted_rest_time(base_rest_seconds: int, last_set_rpe: float | None = None) -> RestTime:
    if last_set_rpe is None:
        return RestTime(base_rest_seconds, "normal", "Standard rest period")
    if last_set_rpe >= RPE_VERY_HIGH_THRESHOLD:
        return RestTime(
            base_rest_seconds + 60, "extended", f"Extended rest (+60s) after RPE {_format_rpe(last_set_rpe)} set"
        )
    if last_set_rpe >= RPE_HIGH_THRESHOLD:
        return RestTime(
            base_rest_seconds + 30, "extended", f"Extended rest (+30s) after RPE {_format_rpe(last_set_rpe)} set"
        )
    if last_set_rpe <= RPE_EASY_THRESHOLD:
        reduced = max(MIN_REST_SECONDS, base_rest_seconds - 15)
        if reduced < base_rest_seconds:
            return RestTime(
                reduced, "shortened", f"Shortened rest (-15s) after easy RPE {_format_rpe(last_set_rpe)} set"
            )
    return RestTime(base_rest_seconds, "normal", "Standard rest period")
