from __future__ import annotations

from datetime import date

import pytest

from conftest import FIXED_NOW
from training_engine.preview import (
    PREVIEW_DEFAULT_GOALS,
    PreviewContext,
    PreviewSettings,
    compute_preview_summary,
    dry_run_training_generation,
    generate_preview,
    generate_session_for_day,
    normalize_preview_goals,
    profile_from_settings,
)
from training_engine.program import build_four_week_plan

START = date(2026, 3, 2)


def _settings(**overrides) -> PreviewSettings:
    values = {
        "goals": {"build_strength": 0.7, "build_muscle": 0.3},
        "selected_weekdays": (1, 3, 5),
        "equipment": ("barbell", "rack", "bench", "dumbbells", "cables", "machines", "pull_up_bar"),
        "baselines": {"squat": 100.0, "bench_press": 80.0},
    }
    values.update(overrides)
    return PreviewSettings(**values)


def test_profile_from_settings() -> None:
    profile = profile_from_settings(
        _settings(constraints=("knee_pain", "shoulder_issues", "no_overhead", "short_sessions"))
    )

    assert profile.constraints.injuries == ("knee_pain", "shoulder_issues")
    assert profile.constraints.forbidden_movements == ("vertical_press",)
    assert "cable_machine" in profile.equipment_access
    assert "machines" not in profile.equipment_access
    assert profile.baselines["squat"] == pytest.approx(100 * (1 + 5 / 30))
    assert set(profile.baselines) == {"squat", "barbell_bench_press"}
    assert profile.goals["build_strength"] == pytest.approx(0.7)
    assert profile.goals["get_fitter"] == 0.0


def test_preview_goals_default_when_empty() -> None:
    assert normalize_preview_goals({}) == PREVIEW_DEFAULT_GOALS
    assert normalize_preview_goals({"lose_fat": 0}) == PREVIEW_DEFAULT_GOALS


def test_preview_matches_production_generation(engine_data) -> None:
    settings = _settings()
    profile = profile_from_settings(settings)
    plan = build_four_week_plan(profile, settings.selected_weekdays, START)
    production = generate_session_for_day(engine_data, profile, plan, 1, 1, now=FIXED_NOW)

    preview = dry_run_training_generation(engine_data, settings, start_date=START, now=FIXED_NOW)

    assert preview is not None
    assert preview.exercises == production.exercises
    preview_summary = compute_preview_summary(preview)
    production_summary = compute_preview_summary(production)
    assert preview_summary == production_summary
    assert preview_summary.grouping_style == "Push/Pull/Legs"
    assert preview_summary.session_label == "Push (Chest/Shoulders/Triceps)"
    assert preview_summary.set_counts["total"] == sum(len(p.planned_sets) for p in production.exercises)
    assert preview_summary.rep_ranges["primary"] is not None


def test_preview_target_weekday(engine_data) -> None:
    summary = generate_preview(
        engine_data,
        _settings(),
        PreviewContext(week_index=2, target_weekday=5),
        start_date=START,
    )

    assert summary is not None
    assert summary.session_label == "Legs (Quads/Hamstrings/Glutes)"


def test_preview_for_unscheduled_weekday_is_none(engine_data) -> None:
    assert generate_preview(engine_data, _settings(), PreviewContext(target_weekday=2), start_date=START) is None


def test_preview_without_weekdays_is_none(engine_data) -> None:
    assert dry_run_training_generation(engine_data, _settings(selected_weekdays=())) is None
    assert generate_preview(engine_data, _settings(selected_weekdays=())) is None


def test_preview_logs_and_returns_none_on_bad_weekday(engine_data, caplog) -> None:
    assert dry_run_training_generation(engine_data, _settings(selected_weekdays=(9,))) is None
    assert "Preview generation failed" in caplog.text


def test_summary_snippet_and_amrap(engine_data) -> None:
    summary = generate_preview(engine_data, _settings(), start_date=START)

    assert summary is not None
    assert " reps @ " in summary.example_snippet
    assert summary.example_snippet.endswith("kg")
    assert summary.has_amrap is False
    assert compute_preview_summary(None) is None
