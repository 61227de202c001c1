"""Tests for offline queue replay against an in-memory store."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import psycopg
import pytest

from conftest import FIXED_NOW
from training_engine.errors import DuplicateRecordError
from training_engine.metrics import get_metrics
from training_engine.offline_queue import (
    OfflineQueue,
    build_create_session_operation,
    build_set_log_operation,
    build_upsert_item_operation,
)
from training_engine.runtime import SetLogEntry
from training_engine.store import Found, NotFound
from training_engine.sync import is_network_available, sync_offline_queue


class InMemoryStore:
    """Dict-backed store that enforces primary keys like the real tables."""

    def __init__(self, *, ping_error: BaseException | None = None, ping_delay: float = 0.0):
        self.sessions: dict[str, dict] = {}
        self.set_logs: dict[str, dict] = {}
        self.item_updates: list[tuple[str, dict]] = []
        self.finalized: dict[str, dict] = {}
        self.fail_items: set[str] = set()
        self.ping_error = ping_error
        self.ping_delay = ping_delay
        self.writes = 0

    async def ping(self) -> None:
        if self.ping_delay:
            await asyncio.sleep(self.ping_delay)
        if self.ping_error is not None:
            raise self.ping_error

    async def fetch_session(self, session_id):
        row = self.sessions.get(session_id)
        return Found(row) if row is not None else NotFound()

    async def fetch_set_log(self, set_log_id):
        row = self.set_logs.get(set_log_id)
        return Found(row) if row is not None else NotFound()

    async def start_session(self, plan, *, mode):
        raise NotImplementedError

    async def create_session(self, session_id, payload):
        if session_id in self.sessions:
            raise DuplicateRecordError("training_sessions", session_id)
        self.writes += 1
        self.sessions[session_id] = dict(payload)

    async def update_session_item(self, item_id, payload):
        if item_id in self.fail_items:
            raise RuntimeError(f"item {item_id} rejected")
        self.writes += 1
        self.item_updates.append((item_id, dict(payload)))

    async def insert_set_log(self, set_log_id, session_item_id, payload):
        if set_log_id in self.set_logs:
            raise DuplicateRecordError("training_set_logs", set_log_id)
        self.writes += 1
        self.set_logs[set_log_id] = {"session_item_id": session_item_id, **payload}

    async def finalize_session(self, session_id, payload):
        self.writes += 1
        self.finalized[session_id] = dict(payload)


def _entry(set_index: int) -> SetLogEntry:
    return SetLogEntry(
        id=f"item-1-set-{set_index}",
        exercise_id="squat",
        session_item_id="item-1",
        set_index=set_index,
        weight=100.0,
        reps=5,
        completed_at=FIXED_NOW + timedelta(minutes=set_index),
    )


async def _queue_with_session(tmp_path) -> OfflineQueue:
    queue = OfflineQueue(tmp_path / "queue.json")
    # Enqueued out of order; replay sorts by timestamp.
    await queue.enqueue(build_set_log_operation(_entry(2)))
    await queue.enqueue(build_set_log_operation(_entry(1)))
    await queue.enqueue(
        build_create_session_operation(
            "session-1",
            mode="manual",
            goals={"build_muscle": 1.0},
            started_at=FIXED_NOW,
            now=FIXED_NOW,
        )
    )
    return queue


@pytest.mark.asyncio
async def test_empty_queue_is_a_no_op(tmp_path):
    store = InMemoryStore()
    result = await sync_offline_queue(OfflineQueue(tmp_path / "queue.json"), store)

    assert (result.success, result.failed, result.offline) == (0, 0, False)
    assert get_metrics()["sync_passes"] == 0


@pytest.mark.asyncio
async def test_replays_every_operation_and_empties_queue(tmp_path):
    queue = await _queue_with_session(tmp_path)
    store = InMemoryStore()

    result = await sync_offline_queue(queue, store)

    assert (result.success, result.failed, result.errors) == (3, 0, ())
    assert set(store.sessions) == {"session-1"}
    assert set(store.set_logs) == {"item-1-set-1", "item-1-set-2"}
    assert await queue.size() == 0
    metrics = get_metrics()
    assert metrics["operations_synced"] == 3
    assert metrics["operations"]["insertSetLog"]["successes"] == 2


@pytest.mark.asyncio
async def test_already_persisted_rows_count_as_success_without_writing(tmp_path):
    queue = await _queue_with_session(tmp_path)
    store = InMemoryStore()
    store.sessions["session-1"] = {"mode": "manual"}
    store.set_logs["item-1-set-1"] = {"reps": 5}

    result = await sync_offline_queue(queue, store)

    assert result.success == 3
    assert store.writes == 1
    assert get_metrics()["operations"]["createSession"]["duplicates"] == 1


@pytest.mark.asyncio
async def test_second_pass_after_crash_creates_no_duplicates(tmp_path):
    store = InMemoryStore()
    queue = await _queue_with_session(tmp_path)
    await sync_offline_queue(queue, store)

    # The same operations queued again, as after a crash before dequeue.
    replay = await _queue_with_session(tmp_path)
    result = await sync_offline_queue(replay, store)

    assert result.success == 3
    assert len(store.sessions) == 1
    assert len(store.set_logs) == 2


@pytest.mark.asyncio
async def test_duplicate_write_race_counts_as_success(tmp_path):
    class RacingStore(InMemoryStore):
        async def fetch_set_log(self, set_log_id):
            return NotFound()

    queue = OfflineQueue(tmp_path / "queue.json")
    await queue.enqueue(build_set_log_operation(_entry(1)))
    store = RacingStore()
    store.set_logs["item-1-set-1"] = {}

    result = await sync_offline_queue(queue, store)

    assert (result.success, result.failed) == (1, 0)
    assert await queue.size() == 0


@pytest.mark.asyncio
async def test_failures_stay_queued_and_do_not_abort_the_pass(tmp_path):
    queue = await _queue_with_session(tmp_path)
    await queue.enqueue(build_upsert_item_operation("session-1", "item-9", skipped=True, now=FIXED_NOW))
    store = InMemoryStore()
    store.fail_items.add("item-9")

    result = await sync_offline_queue(queue, store)

    assert (result.success, result.failed) == (3, 1)
    assert result.errors == ("upsertItem: item item-9 rejected",)
    remaining = await queue.load()
    assert [op.type for op in remaining] == ["upsertItem"]
    assert get_metrics()["operations_failed"] == 1


@pytest.mark.asyncio
async def test_offline_probe_skips_the_pass(tmp_path):
    queue = await _queue_with_session(tmp_path)
    store = InMemoryStore(ping_error=OSError("Connection refused"))

    result = await sync_offline_queue(queue, store)

    assert result.offline
    assert result.success == 0
    assert await queue.size() == 3
    assert get_metrics()["sync_passes_offline"] == 1


@pytest.mark.asyncio
async def test_probe_can_be_disabled(tmp_path):
    queue = await _queue_with_session(tmp_path)
    store = InMemoryStore(ping_error=OSError("Connection refused"))

    result = await sync_offline_queue(queue, store, probe=False)

    assert result.success == 3


class TestNetworkProbe:
    @pytest.mark.asyncio
    async def test_reachable(self):
        assert await is_network_available(InMemoryStore())

    @pytest.mark.asyncio
    async def test_timeout_reports_offline(self):
        assert not await is_network_available(InMemoryStore(ping_delay=1.0), timeout=0.01)

    @pytest.mark.asyncio
    async def test_connection_failure_reports_offline(self):
        store = InMemoryStore(ping_error=psycopg.OperationalError("could not connect to server"))
        assert not await is_network_available(store)

    @pytest.mark.asyncio
    async def test_other_errors_fail_open(self):
        assert await is_network_available(InMemoryStore(ping_error=RuntimeError("boom")))
        assert await is_network_available(InMemoryStore(ping_error=psycopg.OperationalError("server closed")))
