from typing import Any

import pytest

from datamodel import Medication
from storage.kv import MemoryKeyValueStore


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def make_medication():
    """构造已校验的 Medication，默认每天 08:00 提醒"""
    def factory(**overrides: Any) -> Medication:
        data: dict[str, Any] = {
            "name": "Aspirin",
            "times": [{"time": "08:00", "time_slot": "morning"}],
            "frequency": "daily",
            "created_at": "2024-01-01T08:00:00",
        }
        data.update(overrides)
        return Medication.model_validate(data)

    return factory
