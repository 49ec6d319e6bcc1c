"""依从率统计

依从率 = 服用记录数 / 记录总数 * 100，保留两位小数；没有记录时为 0。
按月统计以记录时间戳所在的本地日历月份 "YYYY-MM" 为键。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping

from datamodel import DELAYED_ACTION, DelayState, Frequency, Medication, ResponseRecord, TimeSlot
from utils import as_local, month_key, now_iso, now_local, parse_iso

__all__ = ["MonthlyStat", "AdherenceReport", "adherence_rate", "calculate_adherence",
           "monthly_adherence_stats", "summarize"]


def adherence_rate(taken: int, total: int) -> float:
    if total <= 0:
        return 0.0
    # 两位小数，恰好一半时向上进位 (3.125 -> 3.13)
    rate = Decimal(taken / total * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return float(rate)


@dataclass
class MonthlyStat:
    total: int = 0
    taken: int = 0

    @property
    def adherence_rate(self) -> float:
        return adherence_rate(self.taken, self.total)

    def to_dict(self) -> dict:
        return {"total": self.total, "taken": self.taken, "adherenceRate": self.adherence_rate}


@dataclass
class AdherenceReport:
    total_records: int
    taken_records: int
    adherence_rate: float
    monthly_stats: dict[str, MonthlyStat] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "totalRecords": self.total_records,
            "takenRecords": self.taken_records,
            "adherenceRate": self.adherence_rate,
            "monthlyStats": {month: stat.to_dict() for month, stat in self.monthly_stats.items()},
        }


def _qualifying(records: Iterable[ResponseRecord], medication_id: str | None = None) -> list[ResponseRecord]:
    return [
        r for r in records
        if r.action != DELAYED_ACTION and (medication_id is None or r.medication_id == medication_id)
    ]


def monthly_adherence_stats(records: Iterable[ResponseRecord]) -> dict[str, MonthlyStat]:
    stats: dict[str, MonthlyStat] = {}
    for record in records:
        stat = stats.setdefault(month_key(parse_iso(record.timestamp)), MonthlyStat())
        stat.total += 1
        if record.action == "taken":
            stat.taken += 1
    return stats


def calculate_adherence(records: Iterable[ResponseRecord], medication_id: str | None = None) -> AdherenceReport:
    """计算依从率；指定 medication_id 时只统计该用药提醒"""
    filtered = _qualifying(records, medication_id)
    taken = sum(1 for r in filtered if r.action == "taken")
    return AdherenceReport(
        total_records=len(filtered),
        taken_records=taken,
        adherence_rate=adherence_rate(taken, len(filtered)),
        monthly_stats=monthly_adherence_stats(filtered),
    )


def summarize(
    medications: list[Medication],
    records: list[ResponseRecord],
    delays: Mapping[str, DelayState],
    now: datetime | None = None,
) -> dict:
    """总览统计"""
    now = as_local(now or now_local())
    one_week_ago = now - timedelta(days=7)

    taken = sum(1 for r in records if r.action == "taken")
    cancelled = sum(1 for r in records if r.action == "cancelled")
    recent = [r for r in records if as_local(parse_iso(r.timestamp)) >= one_week_ago]
    recent_taken = sum(1 for r in recent if r.action == "taken")

    return {
        "totalMedications": len(medications),
        "activeMedications": sum(1 for m in medications if m.enabled),
        "totalRecords": len(records),
        "pendingDelays": len(delays),
        "takenRecords": taken,
        "cancelledRecords": cancelled,
        "overallAdherenceRate": calculate_adherence(records).adherence_rate,
        # 按时间点所属时间段统计
        "timeSlotStats": {
            slot.value: sum(1 for m in medications for t in m.times if t.time_slot == slot)
            for slot in TimeSlot
        },
        "frequencyStats": {
            freq.value: sum(1 for m in medications if m.frequency == freq)
            for freq in Frequency
        },
        "recentWeekStats": {
            "total": len(recent),
            "taken": recent_taken,
            "rate": adherence_rate(recent_taken, len(recent)),
        },
        "lastUpdated": now_iso(),
    }
