from __future__ import annotations

from datamodel import ResponseRecord
from errors import ValidationError
from events import bus, E
from logger import event_logger
from metrics import runtime_metrics
from storage.collection import validate_one
from storage.record import RecordStore

__all__ = ["ResponseRecorder", "VALID_ACTIONS"]

VALID_ACTIONS = ("taken", "cancelled")  # 只允许服用和取消


class ResponseRecorder:
    """把用户对提醒的响应追加到用药记录

    不涉及延迟状态，若响应的是一次延迟提醒，由调用方另行清除延迟。
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def record(self, medication_id: str, action: str, delay_minutes: int | None = None) -> ResponseRecord:
        if not isinstance(medication_id, str) or medication_id.strip() == "":
            raise ValidationError("记录必须包含有效的用药提醒ID")
        if action not in VALID_ACTIONS:
            raise ValidationError(f"记录必须包含有效的动作 (taken, cancelled): {action!r}")

        record = validate_one(
            ResponseRecord,
            {"medication_id": medication_id, "action": action, "delay_minutes": delay_minutes},
            "用药记录",
        )
        record = await self.store.append(record)
        runtime_metrics.record_response(action)
        bus.emit(E.RESPONSE_RECORDED, record=record)
        event_logger.bind(medication_id=medication_id, event=action, record_id=record.id).info(
            f"记录用药: action={action}, delay_minutes={delay_minutes}"
        )
        return record
