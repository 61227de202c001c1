"""Identifier types, synthetic-id guard, and deterministic ids.

Two families of ids flow through the engine:

* ids assigned by the persistence layer (sessions, session items), which are
  the only ids allowed on runtime state and in outbound payloads;
* client-side placeholder ids, which carry the ``local-`` prefix and must
  never reach runtime state or a payload builder.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, NewType

from .errors import SyntheticIdentifierError

PersistedSessionId = NewType("PersistedSessionId", str)
PersistedItemId = NewType("PersistedItemId", str)

RUNTIME_ID_PREFIX = "local-"


def is_runtime_id(value: str) -> bool:
    return value.startswith(RUNTIME_ID_PREFIX)


def ensure_persisted_id(value: str | None, *, field_name: str) -> str:
    """Reject empty or locally generated ids where a persisted id is required."""
    if value is None or not str(value).strip():
        raise SyntheticIdentifierError(f"{field_name} must be a persisted identifier, got empty value")
    normalized = str(value).strip()
    if is_runtime_id(normalized):
        raise SyntheticIdentifierError(
            f"{field_name} must be a persisted identifier, got local id {normalized!r}"
        )
    return normalized


def persisted_session_id(value: str) -> PersistedSessionId:
    return PersistedSessionId(ensure_persisted_id(value, field_name="session_id"))


def persisted_item_id(value: str) -> PersistedItemId:
    return PersistedItemId(ensure_persisted_id(value, field_name="item_id"))


def _stable_hash(value: str, size: int = 20) -> str:
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return digest[:size]


def stable_fingerprint(payload: Any, size: int = 20) -> str:
    """Stable fingerprint of a JSON-serializable payload (key order independent)."""
    canonical_json = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return _stable_hash(canonical_json, size)


def set_log_id(item_id: PersistedItemId, set_index: int) -> str:
    return f"{item_id}-set-{set_index}"


def upsert_operation_id(item_id: PersistedItemId, timestamp_ms: int) -> str:
    return f"{item_id}-upsert-{timestamp_ms}"


def finalize_operation_id(session_id: PersistedSessionId) -> str:
    return f"{session_id}-finalize"
