"""Durable offline operation queue.

Operations are keyed by deterministic ids derived from persisted session and
item ids, so replaying one twice targets the same row. The queue is a JSON
list written atomically (temporary file in the same directory, then replace).
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .identifiers import (
    finalize_operation_id,
    persisted_item_id,
    persisted_session_id,
    set_log_id,
    upsert_operation_id,
)
from .runtime import SessionMode, SessionRuntimeResult, SetLogEntry

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Operation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime


class CreateSessionPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: SessionMode
    goals: dict[str, float]
    started_at: datetime
    template: str | None = None
    session_label: str | None = None


class CreateSessionOperation(_Operation):
    type: Literal["createSession"] = "createSession"
    payload: CreateSessionPayload


class UpsertItemPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    skipped: bool | None = None
    skip_reason: str | None = None
    performed: dict[str, Any] | None = None


class UpsertItemOperation(_Operation):
    type: Literal["upsertItem"] = "upsertItem"
    session_id: str
    item_id: str
    payload: UpsertItemPayload


class SetLogPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    set_index: int = Field(ge=1)
    weight: float = Field(ge=0)
    reps: int = Field(ge=0)
    rpe: float | None = None


class InsertSetLogOperation(_Operation):
    type: Literal["insertSetLog"] = "insertSetLog"
    session_item_id: str
    payload: SetLogPayload


class FinalizeSessionPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    ended_at: datetime
    summary: dict[str, Any]


class FinalizeSessionOperation(_Operation):
    type: Literal["finalizeSession"] = "finalizeSession"
    session_id: str
    payload: FinalizeSessionPayload


OfflineOperation = Annotated[
    Union[CreateSessionOperation, UpsertItemOperation, InsertSetLogOperation, FinalizeSessionOperation],
    Field(discriminator="type"),
]
_QUEUE_ADAPTER = TypeAdapter(list[OfflineOperation])


def build_create_session_operation(
    session_id: str,
    *,
    mode: SessionMode,
    goals: dict[str, float],
    started_at: datetime,
    template: str | None = None,
    session_label: str | None = None,
    now: datetime | None = None,
) -> CreateSessionOperation:
    return CreateSessionOperation(
        id=persisted_session_id(session_id),
        timestamp=now or _utcnow(),
        payload=CreateSessionPayload(
            mode=mode,
            goals=goals,
            started_at=started_at,
            template=template,
            session_label=session_label,
        ),
    )


def build_upsert_item_operation(
    session_id: str,
    item_id: str,
    *,
    skipped: bool | None = None,
    skip_reason: str | None = None,
    performed: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> UpsertItemOperation:
    now = now or _utcnow()
    item = persisted_item_id(item_id)
    return UpsertItemOperation(
        id=upsert_operation_id(item, int(now.timestamp() * 1000)),
        timestamp=now,
        session_id=persisted_session_id(session_id),
        item_id=item,
        payload=UpsertItemPayload(skipped=skipped, skip_reason=skip_reason, performed=performed),
    )


def build_set_log_operation(entry: SetLogEntry, *, now: datetime | None = None) -> InsertSetLogOperation:
    item = persisted_item_id(entry.session_item_id)
    return InsertSetLogOperation(
        id=set_log_id(item, entry.set_index),
        timestamp=now or entry.completed_at,
        session_item_id=item,
        payload=SetLogPayload(set_index=entry.set_index, weight=entry.weight, reps=entry.reps, rpe=entry.rpe),
    )


def session_summary(result: SessionRuntimeResult) -> dict[str, Any]:
    return {
        "duration_minutes": result.duration_minutes,
        "exercises_completed": result.exercises_completed,
        "exercises_skipped": result.exercises_skipped,
        "total_sets": result.total_sets,
        "total_volume": result.total_volume,
        "prs": [
            {"exercise_id": pr.exercise_id, "metric": pr.metric, "value": pr.value}
            for pr in result.prs
        ],
        "adaptations": len(result.adaptation_trace),
    }


def build_finalize_session_operation(
    result: SessionRuntimeResult,
    *,
    now: datetime | None = None,
) -> FinalizeSessionOperation:
    session = persisted_session_id(result.session_id)
    return FinalizeSessionOperation(
        id=finalize_operation_id(session),
        timestamp=now or result.ended_at,
        session_id=session,
        payload=FinalizeSessionPayload(ended_at=result.ended_at, summary=session_summary(result)),
    )


class OfflineQueue:
    """JSON-file backed FIFO of pending operations."""

    def __init__(self, path: Path):
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    def _read(self) -> list[OfflineOperation]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
            return _QUEUE_ADAPTER.validate_python(raw)
        except (OSError, json.JSONDecodeError, ValidationError):
            logger.warning("Offline queue unreadable, treating as empty", exc_info=True,
                           extra={"training_queue_path": str(self.path)})
            return []

    def _write(self, operations: list[OfflineOperation]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(_QUEUE_ADAPTER.dump_python(operations, mode="json"), indent=2) + "\n"
        with NamedTemporaryFile("w", dir=self.path.parent, delete=False, encoding="utf-8") as tmp:
            tmp.write(payload)
            temp_path = Path(tmp.name)
        temp_path.replace(self.path)

    async def load(self) -> list[OfflineOperation]:
        async with self._lock:
            return await asyncio.to_thread(self._read)

    async def enqueue(self, operation: OfflineOperation) -> bool:
        """Append ``operation`` unless one with the same id is already queued."""
        async with self._lock:
            operations = await asyncio.to_thread(self._read)
            if any(existing.id == operation.id for existing in operations):
                logger.debug("Operation already queued", extra={"training_operation_id": operation.id})
                return False
            operations.append(operation)
            await asyncio.to_thread(self._write, operations)
            return True

    async def dequeue(self, operation_id: str) -> bool:
        async with self._lock:
            operations = await asyncio.to_thread(self._read)
            remaining = [op for op in operations if op.id != operation_id]
            if len(remaining) == len(operations):
                return False
            await asyncio.to_thread(self._write, remaining)
            return True

    async def clear(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self.path.unlink, missing_ok=True)

    async def size(self) -> int:
        return len(await self.load())
