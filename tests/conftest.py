from __future__ import annotations

from datetime import datetime, timezone

import pytest

from training_engine.metrics import reset_metrics
from training_engine.rules import EngineData

FIXED_NOW = datetime(2026, 3, 2, 7, 30, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def engine_data() -> EngineData:
    return EngineData.load()


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()
