"""In-memory sync metrics.

A sync pass runs on one event loop, so plain dicts are safe without locking.
"""

import time

_start_time = time.monotonic()

_metrics: dict = {
    "sync_passes": 0,
    "sync_passes_offline": 0,
    "operations_synced": 0,
    "operations_failed": 0,
    "operations": {},
}


def record_sync_operation(operation_type: str, duration_ms: float, success: bool, *, duplicate: bool = False) -> None:
    """Record the outcome of replaying one queued operation."""
    op = _metrics["operations"].setdefault(operation_type, {
        "attempts": 0,
        "successes": 0,
        "duplicates": 0,
        "failures": 0,
        "total_duration_ms": 0.0,
    })
    op["attempts"] += 1
    op["total_duration_ms"] += duration_ms
    if success:
        op["successes"] += 1
        _metrics["operations_synced"] += 1
        if duplicate:
            op["duplicates"] += 1
    else:
        op["failures"] += 1
        _metrics["operations_failed"] += 1


def record_sync_pass(*, offline: bool = False) -> None:
    _metrics["sync_passes"] += 1
    if offline:
        _metrics["sync_passes_offline"] += 1


def get_metrics() -> dict:
    """Return a snapshot of current metrics."""
    return {
        "uptime_seconds": round(time.monotonic() - _start_time, 1),
        "sync_passes": _metrics["sync_passes"],
        "sync_passes_offline": _metrics["sync_passes_offline"],
        "operations_synced": _metrics["operations_synced"],
        "operations_failed": _metrics["operations_failed"],
        "operations": {
            name: dict(stats)
            for name, stats in _metrics["operations"].items()
        },
    }


def reset_metrics() -> None:
    _metrics["sync_passes"] = 0
    _metrics["sync_passes_offline"] = 0
    _metrics["operations_synced"] = 0
    _metrics["operations_failed"] = 0
    _metrics["operations"] = {}
