"""Persistence collaborator boundary and its PostgreSQL implementation.

Lookups return an explicit ``Found | NotFound | AuthRequired`` result instead
of raising, so callers branch on the variant. Writes that hit an existing key
raise ``DuplicateRecordError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence, Union

import psycopg
from psycopg import errors as pg_errors
from psycopg.rows import dict_row
from psycopg.types.json import Json

from .errors import DuplicateRecordError
from .models import ExercisePerformance, SessionPlan, SetPerformance, UserState
from .progression import NEAR_MAX_RATIO, PreviousBest, estimate_1rm

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Found:
    row: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class AuthRequired:
    message: str = "authentication required"


LookupResult = Union[Found, NotFound, AuthRequired]


@dataclass(frozen=True)
class StartedSession:
    session_id: str
    item_ids: Mapping[str, str]


class TrainingStore(Protocol):
    async def ping(self) -> None: ...

    async def fetch_session(self, session_id: str) -> LookupResult: ...

    async def fetch_set_log(self, set_log_id: str) -> LookupResult: ...

    async def fetch_last_performance(self, exercise_id: str) -> ExercisePerformance | None: ...

    async def fetch_previous_best(self, exercise_id: str) -> PreviousBest | None: ...

    async def start_session(self, plan: SessionPlan, *, mode: str) -> StartedSession: ...

    async def create_session(self, session_id: str, payload: Mapping[str, Any]) -> None: ...

    async def update_session_item(self, item_id: str, payload: Mapping[str, Any]) -> None: ...

    async def insert_set_log(self, set_log_id: str, session_item_id: str, payload: Mapping[str, Any]) -> None: ...

    async def finalize_session(self, session_id: str, payload: Mapping[str, Any]) -> None: ...


class PostgresTrainingStore:
    """TrainingStore over ``training_sessions``, ``training_session_items`` and ``training_set_logs``."""

    def __init__(self, conn: psycopg.AsyncConnection[Any], user_id: str):
        self.conn = conn
        self.user_id = user_id

    async def ping(self) -> None:
        await self.conn.execute("SELECT 1")

    async def _lookup(self, query: str, key: str) -> LookupResult:
        try:
            async with self.conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, (key, self.user_id))
                row = await cur.fetchone()
        except pg_errors.InsufficientPrivilege as exc:
            logger.warning("Lookup denied", extra={"training_record_id": key})
            return AuthRequired(str(exc))
        return Found(row) if row is not None else NotFound()

    async def fetch_session(self, session_id: str) -> LookupResult:
        return await self._lookup(
            "SELECT id, started_at, ended_at FROM training_sessions WHERE id = %s AND user_id = %s",
            session_id,
        )

    async def fetch_set_log(self, set_log_id: str) -> LookupResult:
        return await self._lookup(
            """
            SELECT l.id, l.session_item_id, l.set_index
            FROM training_set_logs l
            JOIN training_session_items i ON i.id = l.session_item_id
            JOIN training_sessions s ON s.id = i.session_id
            WHERE l.id = %s AND s.user_id = %s
            """,
            set_log_id,
        )

    async def fetch_last_performance(self, exercise_id: str) -> ExercisePerformance | None:
        """Sets logged for the exercise in the user's most recent session that has any."""
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                WITH latest AS (
                    SELECT i.id, s.started_at
                    FROM training_session_items i
                    JOIN training_sessions s ON s.id = i.session_id
                    WHERE i.exercise_id = %s AND s.user_id = %s
                      AND EXISTS (SELECT 1 FROM training_set_logs l WHERE l.session_item_id = i.id)
                    ORDER BY s.started_at DESC
                    LIMIT 1
                )
                SELECT l.set_index, l.weight, l.reps, l.rpe, latest.started_at
                FROM training_set_logs l
                JOIN latest ON latest.id = l.session_item_id
                ORDER BY l.set_index
                """,
                (exercise_id, self.user_id),
            )
            rows = await cur.fetchall()
        if not rows:
            return None
        started_at = rows[0]["started_at"]
        return ExercisePerformance(
            exercise_id=exercise_id,
            sets=tuple(
                SetPerformance(weight=float(row["weight"] or 0), reps=row["reps"], rpe=row["rpe"]) for row in rows
            ),
            performed_on=started_at.date() if started_at is not None else None,
        )

    async def fetch_previous_best(self, exercise_id: str) -> PreviousBest | None:
        """All-time bests for the exercise, measured the way PR detection measures them."""
        async with self.conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT l.session_item_id, l.weight, l.reps
                FROM training_set_logs l
                JOIN training_session_items i ON i.id = l.session_item_id
                JOIN training_sessions s ON s.id = i.session_id
                WHERE i.exercise_id = %s AND s.user_id = %s
                """,
                (exercise_id, self.user_id),
            )
            rows = await cur.fetchall()
        if not rows:
            return None

        best_weight = max(float(row["weight"] or 0) for row in rows)
        near_max = [row["reps"] for row in rows if float(row["weight"] or 0) >= best_weight * NEAR_MAX_RATIO]
        volumes: dict[str, float] = {}
        for row in rows:
            key = str(row["session_item_id"])
            volumes[key] = volumes.get(key, 0.0) + float(row["weight"] or 0) * row["reps"]
        return PreviousBest(
            best_weight=best_weight,
            best_reps=max(near_max) if near_max else None,
            best_e1rm=max(estimate_1rm(float(row["weight"] or 0), row["reps"]) for row in rows),
            best_volume=max(volumes.values()),
        )

    async def start_session(self, plan: SessionPlan, *, mode: str) -> StartedSession:
        """Create a session and its items online; ids come back from the database."""
        async with self.conn.transaction():
            async with self.conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    INSERT INTO training_sessions (user_id, mode, template, goals, session_label, started_at)
                    VALUES (%s, %s, %s, %s, %s, NOW())
                    RETURNING id
                    """,
                    (self.user_id, mode, plan.template, Json(plan.goals), plan.session_label),
                )
                session_row = await cur.fetchone()
                session_id = str(session_row["id"])

                item_ids: dict[str, str] = {}
                for planned in plan.exercises:
                    await cur.execute(
                        """
                        INSERT INTO training_session_items
                            (session_id, exercise_id, order_index, priority, planned, decision_trace)
                        VALUES (%s, %s, %s, %s, %s, %s)
                        RETURNING id
                        """,
                        (
                            session_id,
                            planned.exercise_id,
                            planned.order_index,
                            planned.priority,
                            Json([s.model_dump(mode="json") for s in planned.planned_sets]),
                            Json(planned.decision_trace.model_dump(mode="json")),
                        ),
                    )
                    item_row = await cur.fetchone()
                    item_ids[planned.exercise_id] = str(item_row["id"])

        logger.info(
            "Training session started",
            extra={"training_session_id": session_id, "training_exercise_count": len(item_ids)},
        )
        return StartedSession(session_id=session_id, item_ids=item_ids)

    async def create_session(self, session_id: str, payload: Mapping[str, Any]) -> None:
        try:
            async with self.conn.transaction():
                await self.conn.execute(
                    """
                    INSERT INTO training_sessions (id, user_id, mode, template, goals, session_label, started_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        session_id,
                        self.user_id,
                        payload.get("mode"),
                        payload.get("template"),
                        Json(payload.get("goals") or {}),
                        payload.get("session_label"),
                        payload.get("started_at"),
                    ),
                )
        except pg_errors.UniqueViolation:
            raise DuplicateRecordError("training_sessions", session_id) from None

    async def update_session_item(self, item_id: str, payload: Mapping[str, Any]) -> None:
        async with self.conn.transaction():
            await self.conn.execute(
                """
                UPDATE training_session_items
                SET skipped = COALESCE(%s, skipped),
                    skip_reason = COALESCE(%s, skip_reason),
                    performed = COALESCE(%s, performed)
                WHERE id = %s
                  AND session_id IN (SELECT id FROM training_sessions WHERE user_id = %s)
                """,
                (
                    payload.get("skipped"),
                    payload.get("skip_reason"),
                    Json(payload["performed"]) if payload.get("performed") is not None else None,
                    item_id,
                    self.user_id,
                ),
            )

    async def insert_set_log(self, set_log_id: str, session_item_id: str, payload: Mapping[str, Any]) -> None:
        try:
            async with self.conn.transaction():
                await self.conn.execute(
                    """
                    INSERT INTO training_set_logs (id, session_item_id, set_index, weight, reps, rpe)
                    SELECT %s, i.id, %s, %s, %s, %s
                    FROM training_session_items i
                    JOIN training_sessions s ON s.id = i.session_id
                    WHERE i.id = %s AND s.user_id = %s
                    """,
                    (
                        set_log_id,
                        payload.get("set_index"),
                        payload.get("weight"),
                        payload.get("reps"),
                        payload.get("rpe"),
                        session_item_id,
                        self.user_id,
                    ),
                )
        except pg_errors.UniqueViolation:
            raise DuplicateRecordError("training_set_logs", set_log_id) from None

    async def finalize_session(self, session_id: str, payload: Mapping[str, Any]) -> None:
        async with self.conn.transaction():
            await self.conn.execute(
                """
                UPDATE training_sessions
                SET ended_at = %s, summary = %s
                WHERE id = %s AND user_id = %s
                """,
                (payload.get("ended_at"), Json(payload.get("summary") or {}), session_id, self.user_id),
            )


async def load_user_state(store: TrainingStore, base: UserState, exercise_ids: Sequence[str]) -> UserState:
    """Fill ``last_session_performance`` from the store for the given exercises."""
    performances = dict(base.last_session_performance)
    for exercise_id in exercise_ids:
        performance = await store.fetch_last_performance(exercise_id)
        if performance is not None and performance.sets:
            performances[exercise_id] = performance
    return base.model_copy(update={"last_session_performance": performances})


async def load_previous_bests(store: TrainingStore, exercise_ids: Sequence[str]) -> dict[str, PreviousBest]:
    bests: dict[str, PreviousBest] = {}
    for exercise_id in exercise_ids:
        best = await store.fetch_previous_best(exercise_id)
        if best is not None:
            bests[exercise_id] = best
    return bests
