"""用药提醒协调器

把调度器、延迟状态机、记录器和各个存储组合在一起，对外提供"确认服药 / 稍后提醒 / 取消本次"
等用户操作。记录器与延迟状态机互不依赖，由这里负责组合:
- 确认/取消时若该用药提醒仍有待触发的延迟，一并清除；
- 响应的是延迟提醒时，记录中附带延迟分钟数。
"""

import asyncio
from datetime import datetime
from typing import Any

from datamodel import DelayState, Medication, ReminderFire, ResponseRecord
from events import bus, E
from logger import event_logger, logger
from metrics import runtime_metrics
from scheduling.delay import DelayStateMachine
from scheduling.recurrence import UnknownFrequencyPolicy
from scheduling.scheduler import ReminderScheduler
from storage.backup import BackupManager
from storage.delay import DelayStore
from storage.kv import KeyValueStore
from storage.medication import MedicationStore
from storage.record import RecordStore
from storage.settings import SettingsStore
from tracking.recorder import ResponseRecorder
from utils import now_local

__all__ = ["MedicationReminderApp"]


class MedicationReminderApp:
    def __init__(
        self,
        kv: KeyValueStore,
        *,
        check_interval: float = 60,
        strict_weekly: bool = False,
        unknown_policy: UnknownFrequencyPolicy = UnknownFrequencyPolicy.ALWAYS_DUE,
    ) -> None:
        self.kv = kv
        self.medications = MedicationStore(kv)
        self.records = RecordStore(kv)
        self.settings = SettingsStore(kv)
        self.delays = DelayStateMachine(DelayStore(kv))
        self.recorder = ResponseRecorder(self.records)
        self.backups = BackupManager(kv)
        self.scheduler = ReminderScheduler(
            self.medications,
            self.delays,
            interval=check_interval,
            strict_weekly=strict_weekly,
            unknown_policy=unknown_policy,
        )
        self.scheduler.add_listener(self._on_reminder_fired)
        # 正在展示给用户、尚未响应的提醒: medication_id -> 最近一次触发
        self.active_reminders: dict[str, ReminderFire] = {}

    def _on_reminder_fired(self, fire: ReminderFire) -> None:
        self.active_reminders[fire.medication.id] = fire

    def get_status(self) -> dict[str, object]:
        return {
            "active_reminders": len(self.active_reminders),
            "scheduler": self.scheduler.get_status(),
        }

    # --- 调度 ---

    def start(self, shutdown_event: asyncio.Event) -> asyncio.Task[None]:
        return self.scheduler.start(shutdown_event)

    async def check_reminders(self, now: datetime | None = None) -> list[ReminderFire]:
        return await self.scheduler.tick(now)

    def wake(self) -> None:
        self.scheduler.wake()

    def get_active_reminders(self) -> list[ReminderFire]:
        return sorted(self.active_reminders.values(), key=lambda f: f.fired_at)

    # --- 用户响应 ---

    async def confirm(self, medication_id: str) -> ResponseRecord:
        """确认服药"""
        return await self._resolve(medication_id, "taken")

    async def cancel(self, medication_id: str) -> ResponseRecord:
        """取消本次用药"""
        return await self._resolve(medication_id, "cancelled")

    async def _resolve(self, medication_id: str, action: str) -> ResponseRecord:
        fire = self.active_reminders.get(medication_id)
        pending = await self.delays.get_delay(medication_id)

        delay_minutes = None
        if pending is not None:
            delay_minutes = pending.delay_minutes
        elif fire is not None and fire.delayed:
            delay_minutes = fire.delay_minutes

        record = await self.recorder.record(medication_id, action, delay_minutes)
        if pending is not None:
            await self.delays.clear_delay(medication_id)
        self.active_reminders.pop(medication_id, None)
        return record

    async def snooze(
        self,
        medication_id: str,
        minutes: int | None = None,
        now: datetime | None = None,
    ) -> DelayState | None:
        """稍后提醒；用药提醒不存在时返回 None"""
        if await self.medications.get(medication_id) is None:
            logger.warning(f"设置延迟失败，用药提醒不存在: medication_id={medication_id}")
            return None
        if minutes is None:
            minutes = (await self.settings.load()).reminder_snooze_time

        state = await self.delays.set_delay(medication_id, minutes, now or now_local())
        self.active_reminders.pop(medication_id, None)
        runtime_metrics.record_snooze()
        bus.emit(E.REMINDER_SNOOZED, medication_id=medication_id, delay=state)
        event_logger.bind(medication_id=medication_id, event="snoozed", delay_time=state.delay_time).info(
            f"将在 {minutes} 分钟后再次提醒"
        )
        return state

    # --- 用药提醒管理 ---

    async def add_medication(self, data: dict[str, Any]) -> Medication:
        return await self.medications.add(data)

    async def update_medication(self, medication_id: str, updates: dict[str, Any]) -> bool:
        return await self.medications.update(medication_id, updates)

    async def delete_medication(self, medication_id: str, cascade_records: bool = False) -> bool:
        """删除用药提醒及其延迟；cascade_records=True 时一并删除其用药记录"""
        if not await self.medications.delete(medication_id):
            return False
        await self.delays.clear_delay(medication_id)
        self.active_reminders.pop(medication_id, None)
        if cascade_records:
            await self.records.delete_for_medication(medication_id)
        return True

    async def delete_medication_time(self, medication_id: str, time: str, time_slot: str) -> bool:
        if not await self.medications.delete_time(medication_id, time, time_slot):
            return False
        if await self.medications.get(medication_id) is None:
            await self.delays.clear_delay(medication_id)
            self.active_reminders.pop(medication_id, None)
        return True

