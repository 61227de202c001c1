"""CLI entry point for plan generation, previews and offline sync."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
from datetime import date
from typing import Sequence

import psycopg

from .config import Config
from .logging import setup_logging
from .models import EXPERIENCE_LEVELS, TrainingProfile
from .offline_queue import OfflineQueue
from .preview import PreviewContext, PreviewSettings, generate_preview, profile_from_settings
from .program import build_four_week_plan
from .rules import EngineData
from .store import PostgresTrainingStore
from .sync import sync_offline_queue


def _key_value(raw: str) -> tuple[str, float]:
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected name=value, got {raw!r}")
    try:
        return key.strip(), float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a number after '=', got {value!r}") from None


def _add_setup_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--weekday",
        action="append",
        type=int,
        required=True,
        help="Training weekday, 1 (Monday) to 7 (Sunday). Repeatable.",
    )
    parser.add_argument(
        "--goal",
        action="append",
        type=_key_value,
        default=[],
        help="Goal weight as name=weight, e.g. build_strength=0.6. Repeatable.",
    )
    parser.add_argument("--equipment", action="append", default=[], help="Available equipment id. Repeatable.")
    parser.add_argument(
        "--constraint",
        action="append",
        default=[],
        help="Setup constraint, e.g. knee_pain or no_overhead. Repeatable.",
    )
    parser.add_argument(
        "--baseline",
        action="append",
        type=_key_value,
        default=[],
        help="Working weight for 5 reps as setup_key=kg, e.g. squat=100. Repeatable.",
    )
    parser.add_argument("--level", default="beginner", choices=EXPERIENCE_LEVELS)
    parser.add_argument("--frequency", default="auto", choices=("auto", "once", "twice"))
    parser.add_argument("--minutes", default=60, type=int, help="Session time budget in minutes.")
    parser.add_argument(
        "--start",
        default=None,
        type=date.fromisoformat,
        help="Block start date (YYYY-MM-DD). Defaults to today.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="training-engine",
        description="Deterministic training plan generation and offline session sync.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    plan = sub.add_parser("plan", help="Print the four-week program plan as JSON.")
    _add_setup_arguments(plan)

    preview = sub.add_parser("preview", help="Print the dry-run preview summary as JSON.")
    _add_setup_arguments(preview)
    preview.add_argument("--week", default=1, type=int, help="Week of the block to preview.")
    preview.add_argument("--target-weekday", default=None, type=int, help="Weekday to preview.")

    sync = sub.add_parser("sync", help="Replay the offline queue against PostgreSQL.")
    sync.add_argument("--user-id", required=True, help="User UUID owning the queued sessions.")
    sync.add_argument(
        "--probe",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Probe the database before replaying.",
    )
    return parser


def _settings(args: argparse.Namespace) -> PreviewSettings:
    return PreviewSettings(
        goals=dict(args.goal),
        selected_weekdays=tuple(args.weekday),
        equipment=tuple(args.equipment),
        constraints=tuple(args.constraint),
        baselines=dict(args.baseline),
        experience_level=args.level,
        time_budget_minutes=args.minutes,
        muscle_frequency_preference=args.frequency,
    )


def _run_plan(args: argparse.Namespace) -> int:
    profile: TrainingProfile = profile_from_settings(_settings(args))
    plan = build_four_week_plan(profile, args.weekday, args.start or date.today())
    print(plan.model_dump_json(indent=2))
    return 0


def _run_preview(args: argparse.Namespace, config: Config) -> int:
    data = EngineData.load(config.catalog_path, config.rules_path)
    summary = generate_preview(
        data,
        _settings(args),
        PreviewContext(week_index=args.week, target_weekday=args.target_weekday),
        start_date=args.start,
    )
    if summary is None:
        print(json.dumps({"preview": None}))
        return 1
    print(summary.model_dump_json(indent=2))
    return 0


async def _run_sync(args: argparse.Namespace, config: Config) -> int:
    database_url = config.require_database_url()
    queue = OfflineQueue(config.queue_path)
    async with await psycopg.AsyncConnection.connect(database_url) as conn:
        store = PostgresTrainingStore(conn, args.user_id)
        result = await sync_offline_queue(
            queue,
            store,
            probe=bool(args.probe),
            probe_timeout=config.probe_timeout_seconds,
        )
    print(json.dumps(dataclasses.asdict(result), indent=2, sort_keys=True))
    return 0 if result.failed == 0 and not result.offline else 1


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    config = Config.from_env()
    setup_logging(config.log_format, config.log_level)

    if args.command == "plan":
        raise SystemExit(_run_plan(args))
    if args.command == "preview":
        raise SystemExit(_run_preview(args, config))
    raise SystemExit(asyncio.run(_run_sync(args, config)))


if __name__ == "__main__":
    main()
