"""用药记录查询与文本导出"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from datamodel import DELAYED_ACTION, Medication, ResponseRecord
from utils import as_local, now_local, parse_iso

__all__ = ["RecordView", "filter_records", "export_records_text", "UNKNOWN_MEDICATION_NAME"]

UNKNOWN_MEDICATION_NAME = "未知药品"
_ACTION_TEXT = {"taken": "服用", "cancelled": "取消"}


@dataclass
class RecordView:
    record: ResponseRecord
    medication_name: str
    local_time: datetime

    @property
    def action_text(self) -> str:
        return _ACTION_TEXT.get(self.record.action, self.record.action)

    def to_dict(self) -> dict:
        return {
            **self.record.to_storage(),
            "medicationName": self.medication_name,
            "localTime": self.local_time.strftime("%Y-%m-%d %H:%M:%S"),
        }


def filter_records(
    records: Iterable[ResponseRecord],
    medications: Iterable[Medication],
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    medication_id: str | None = None,
) -> list[RecordView]:
    """按日期范围(含两端，本地日历日)与用药提醒筛选记录，最新的在前"""
    names = {m.id: m.name for m in medications}
    views = []
    for record in records:
        if record.action == DELAYED_ACTION:
            continue
        if medication_id and record.medication_id != medication_id:
            continue
        local_time = as_local(parse_iso(record.timestamp))
        if start_date and local_time.date() < start_date:
            continue
        if end_date and local_time.date() > end_date:
            continue
        views.append(RecordView(
            record=record,
            medication_name=names.get(record.medication_id, UNKNOWN_MEDICATION_NAME),
            local_time=local_time,
        ))
    views.sort(key=lambda v: v.local_time, reverse=True)
    return views


def export_records_text(views: list[RecordView], exported_at: datetime | None = None) -> str:
    """生成文本格式的用药记录清单"""
    exported_at = as_local(exported_at or now_local())
    lines = [
        "用药记录清单",
        "",
        f"导出时间: {exported_at:%Y-%m-%d %H:%M:%S}",
        f"记录总数: {len(views)}",
        "",
    ]
    for view in views:
        lines.append(f"[{view.local_time:%Y-%m-%d %H:%M:%S}] {view.medication_name} - {view.action_text}")
    return "\n".join(lines) + "\n"
