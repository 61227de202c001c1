"""Idempotent replay of the offline queue against a TrainingStore."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

import psycopg

from .errors import DuplicateRecordError, TrainingEngineError
from .metrics import record_sync_operation, record_sync_pass
from .offline_queue import (
    CreateSessionOperation,
    FinalizeSessionOperation,
    InsertSetLogOperation,
    OfflineOperation,
    OfflineQueue,
    UpsertItemOperation,
)
from .store import Found, TrainingStore

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_SECONDS = 2.0
_NETWORK_MARKERS = ("network", "fetch", "connection refused", "could not connect", "timeout")


@dataclass(frozen=True)
class SyncResult:
    success: int = 0
    failed: int = 0
    errors: tuple[str, ...] = field(default_factory=tuple)
    offline: bool = False


async def is_network_available(store: TrainingStore, timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS) -> bool:
    """Cheap reachability probe. Only clear network failures report offline."""
    try:
        async with asyncio.timeout(timeout):
            await store.ping()
        return True
    except (TimeoutError, OSError, psycopg.OperationalError) as exc:
        message = str(exc).lower()
        if isinstance(exc, TimeoutError) or any(marker in message for marker in _NETWORK_MARKERS):
            logger.info("Network probe failed", extra={"training_probe_error": str(exc)})
            return False
        return True
    except Exception:
        logger.debug("Network probe raised unexpected error, assuming online", exc_info=True)
        return True


async def _already_synced(operation: OfflineOperation, store: TrainingStore) -> bool:
    if isinstance(operation, CreateSessionOperation):
        return isinstance(await store.fetch_session(operation.id), Found)
    if isinstance(operation, InsertSetLogOperation):
        return isinstance(await store.fetch_set_log(operation.id), Found)
    return False


async def _apply(operation: OfflineOperation, store: TrainingStore) -> None:
    payload = operation.payload.model_dump(mode="json")
    if isinstance(operation, CreateSessionOperation):
        await store.create_session(operation.id, payload)
    elif isinstance(operation, UpsertItemOperation):
        await store.update_session_item(operation.item_id, payload)
    elif isinstance(operation, InsertSetLogOperation):
        await store.insert_set_log(operation.id, operation.session_item_id, payload)
    elif isinstance(operation, FinalizeSessionOperation):
        await store.finalize_session(operation.session_id, payload)
    else:
        raise TrainingEngineError(f"Unknown operation type: {operation.type}")


async def sync_offline_queue(
    queue: OfflineQueue,
    store: TrainingStore,
    *,
    probe: bool = True,
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
) -> SyncResult:
    """Replay queued operations oldest first.

    Each operation is removed from the queue only after it is confirmed
    persisted. Existing rows and duplicate-key writes count as success. Other
    failures are collected per operation and never abort the pass.
    """
    operations = await queue.load()
    if not operations:
        return SyncResult()

    if probe and not await is_network_available(store, probe_timeout):
        record_sync_pass(offline=True)
        return SyncResult(offline=True)

    success = 0
    failed = 0
    errors: list[str] = []
    for operation in sorted(operations, key=lambda op: op.timestamp):
        started = time.perf_counter()
        duplicate = False
        try:
            if await _already_synced(operation, store):
                duplicate = True
            else:
                try:
                    await _apply(operation, store)
                except DuplicateRecordError:
                    duplicate = True
        except Exception as exc:
            failed += 1
            errors.append(f"{operation.type}: {exc or type(exc).__name__}")
            record_sync_operation(operation.type, (time.perf_counter() - started) * 1000, False)
            logger.warning(
                "Failed to sync offline operation",
                extra={"training_operation_id": operation.id, "training_operation_type": operation.type},
                exc_info=True,
            )
            continue

        await queue.dequeue(operation.id)
        success += 1
        record_sync_operation(
            operation.type, (time.perf_counter() - started) * 1000, True, duplicate=duplicate
        )

    record_sync_pass()
    logger.info(
        "Offline sync completed",
        extra={"training_synced": success, "training_failed": failed, "training_total": len(operations)},
    )
    return SyncResult(success=success, failed=failed, errors=tuple(errors))
