import json
import sys

import pytest

from logger import event_logger, log_paths, logger, normalize_level, setup_logging
from storage.record import RecordStore
from tracking.recorder import ResponseRecorder


@pytest.fixture
def log_file(tmp_path):
    yield tmp_path / "logs" / "medication.log"
    logger.configure(handlers=[{"sink": sys.stderr, "level": "INFO"}], extra={})


def _read_events(path) -> list[dict]:
    return [json.loads(line)["record"] for line in path.read_text(encoding="utf-8").splitlines()]


@pytest.mark.parametrize("raw, expected", [
    ("debug", "DEBUG"),
    (" Warn ", "WARNING"),
    ("FATAL", "CRITICAL"),
    ("verbose", "INFO"),
])
def test_normalize_level(raw, expected) -> None:
    assert normalize_level(raw) == expected


def test_log_paths() -> None:
    paths = log_paths("logs/medication.log")
    assert str(paths.error).endswith("medication_error.log")
    assert str(paths.events).endswith("medication_events.jsonl")


def test_sinks_are_split(log_file) -> None:
    paths = setup_logging("debug", log_file, console_level="critical")
    logger.info("普通日志")
    event_logger.bind(medication_id="m1", event="taken").info("记录用药")
    logger.error("写入失败")
    logger.remove()

    main_text = paths.main.read_text(encoding="utf-8")
    assert "普通日志" in main_text
    assert "记录用药" in main_text

    error_text = paths.error.read_text(encoding="utf-8")
    assert "写入失败" in error_text
    assert "普通日志" not in error_text

    events = _read_events(paths.events)
    assert len(events) == 1
    assert events[0]["message"] == "记录用药"
    assert events[0]["extra"]["medication_id"] == "m1"
    assert events[0]["extra"]["event"] == "taken"


@pytest.mark.asyncio
async def test_responses_reach_event_log(log_file, kv) -> None:
    paths = setup_logging("info", log_file, console_level="critical")
    record = await ResponseRecorder(RecordStore(kv)).record("m1", "cancelled", delay_minutes=5)
    logger.remove()

    events = _read_events(paths.events)
    assert [e["extra"]["event"] for e in events] == ["cancelled"]
    assert events[0]["extra"]["record_id"] == record.id
