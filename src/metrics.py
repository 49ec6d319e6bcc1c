"""
一个简单的运行时指标收集类，用于统计提醒检查次数、触发次数、用户响应等信息。
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class RuntimeMetrics:
    tick_count: int = 0
    reminder_fired_count: int = 0
    delayed_fired_count: int = 0
    taken_count: int = 0
    cancelled_count: int = 0
    snooze_count: int = 0
    storage_error_count: int = 0
    last_tick_at: float | None = None

    def record_tick(self) -> None:
        self.tick_count += 1
        self.last_tick_at = time.time()

    def record_fire(self, delayed: bool = False) -> None:
        if delayed:
            self.delayed_fired_count += 1
        else:
            self.reminder_fired_count += 1

    def record_response(self, action: str) -> None:
        if action == "taken":
            self.taken_count += 1
        elif action == "cancelled":
            self.cancelled_count += 1

    def record_snooze(self) -> None:
        self.snooze_count += 1

    def record_storage_error(self) -> None:
        self.storage_error_count += 1

    def snapshot(self) -> dict:
        responded = self.taken_count + self.cancelled_count
        session_rate = 0.0
        if responded > 0:
            session_rate = self.taken_count / responded * 100

        return {
            "tick_count": self.tick_count,
            "reminder_fired_count": self.reminder_fired_count,
            "delayed_fired_count": self.delayed_fired_count,
            "taken_count": self.taken_count,
            "cancelled_count": self.cancelled_count,
            "snooze_count": self.snooze_count,
            "storage_error_count": self.storage_error_count,
            "session_adherence_rate": round(session_rate, 2),
            "last_tick_at_epoch": self.last_tick_at,
            "last_tick_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_tick_at))
                if self.last_tick_at is not None
                else None
            ),
        }


runtime_metrics = RuntimeMetrics()


__all__ = ["RuntimeMetrics", "runtime_metrics"]
