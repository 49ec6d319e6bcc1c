"""提醒调度器

每次检查(tick)时:
1. 取当前本地时间的 "HH:MM"，秒被忽略，匹配窗口为整分钟；
2. 有待触发延迟的用药提醒：延迟时间的分钟与当前分钟相同则触发延迟提醒并清除延迟，
   且不再检查它的常规时间点；
3. 没有延迟的用药提醒：任一时间点等于当前分钟且今天需要提醒时，按时间点逐个触发。

调度器本身不写记录，只通知监听者和事件总线。每次检查都重新从存储读取数据。
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Callable

from datamodel import Medication, ReminderFire
from errors import ReminderError
from events import bus, E
from logger import event_logger, logger
from metrics import runtime_metrics
from scheduling.delay import DelayStateMachine
from scheduling.recurrence import UnknownFrequencyPolicy, is_due_today
from storage.medication import MedicationStore
from utils import as_local, hhmm, now_local, parse_iso

__all__ = ["ReminderScheduler", "FireListener"]

FireListener = Callable[[ReminderFire], None]


class ReminderScheduler:
    def __init__(
        self,
        medications: MedicationStore,
        delays: DelayStateMachine,
        *,
        interval: float = 60,
        strict_weekly: bool = False,
        unknown_policy: UnknownFrequencyPolicy = UnknownFrequencyPolicy.ALWAYS_DUE,
    ) -> None:
        self.medications = medications
        self.delays = delays
        self.interval = interval
        self.strict_weekly = strict_weekly
        self.unknown_policy = unknown_policy

        self._listeners: list[FireListener] = []
        # 同一分钟内重复检查时不重复触发: (medication_id, 时间点下标)
        self._fired_minute: str | None = None
        self._fired_keys: set[tuple[str, int]] = set()

        self._wake_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._last_check_at: float | None = None

    def add_listener(self, listener: FireListener) -> None:
        self._listeners.append(listener)

    def get_status(self) -> dict[str, object]:
        return {
            "running": self._task is not None and not self._task.done(),
            "last_check_at_epoch": self._last_check_at,
            "interval_seconds": self.interval,
        }

    def _dispatch(self, fire: ReminderFire) -> None:
        runtime_metrics.record_fire(delayed=fire.delayed)
        event_logger.bind(
            medication_id=fire.medication.id, event="delayed_fired" if fire.delayed else "fired", time=fire.time,
        ).info(f"触发{'延迟' if fire.delayed else ''}提醒: {fire.medication.name} @ {fire.time}")
        for listener in self._listeners:
            try:
                listener(fire)
            except Exception:
                logger.exception(f"提醒监听者处理失败: {getattr(listener, '__name__', listener)!r}")
        bus.emit(E.REMINDER_FIRED, fire=fire)

    def _already_fired(self, minute: str, key: tuple[str, int]) -> bool:
        if minute != self._fired_minute:
            self._fired_minute = minute
            self._fired_keys.clear()
        if key in self._fired_keys:
            return True
        self._fired_keys.add(key)
        return False

    async def tick(self, now: datetime | None = None) -> list[ReminderFire]:
        """执行一次检查，返回本次触发的提醒"""
        now = as_local(now or now_local())
        current_time = hhmm(now)
        minute = now.strftime("%Y-%m-%d %H:%M")
        runtime_metrics.record_tick()

        medications = await self.medications.load_all()
        delays = await self.delays.all_pending()

        fires: list[ReminderFire] = []
        for medication in medications:
            if not medication.enabled:
                continue

            delay = delays.get(medication.id)
            if delay is not None:
                if hhmm(parse_iso(delay.delay_time)) == current_time:
                    fire = ReminderFire(
                        medication=medication,
                        fired_at=now,
                        time=current_time,
                        delayed=True,
                        delay_minutes=delay.delay_minutes,
                    )
                    self._dispatch(fire)
                    await self.delays.clear_delay(medication.id)
                    fires.append(fire)
                    # 延迟提醒同时覆盖本分钟的常规时间点
                    for index, entry in enumerate(medication.times):
                        if entry.time == current_time:
                            self._already_fired(minute, (medication.id, index))
                continue

            fires.extend(self._fire_scheduled(medication, now, current_time, minute))

        logger.trace(f"提醒检查完成: time={current_time}, medications={len(medications)}, fired={len(fires)}")
        return fires

    def _fire_scheduled(self, medication: Medication, now: datetime, current_time: str, minute: str) -> list[ReminderFire]:
        matching = [i for i, entry in enumerate(medication.times) if entry.time == current_time]
        if not matching:
            return []
        if not is_due_today(medication, now, strict_weekly=self.strict_weekly, unknown_policy=self.unknown_policy):
            return []

        fires = []
        # 重复的时间点各自独立触发
        for index in matching:
            if self._already_fired(minute, (medication.id, index)):
                continue
            entry = medication.times[index]
            fire = ReminderFire(medication=medication, fired_at=now, time=entry.time, time_slot=entry.time_slot)
            self._dispatch(fire)
            fires.append(fire)
        return fires

    def wake(self) -> None:
        """宿主进程重新回到前台时调用，立即补查一次"""
        logger.debug("收到唤醒信号，立即检查提醒")
        self._wake_event.set()

    async def _wait_next(self, shutdown_event: asyncio.Event) -> None:
        waiters = [
            asyncio.create_task(self._wake_event.wait()),
            asyncio.create_task(shutdown_event.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=self.interval, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        self._wake_event.clear()

    async def main_loop(self, shutdown_event: asyncio.Event) -> None:
        logger.info(f"提醒主循环已启动, interval={self.interval}s")
        while not shutdown_event.is_set():
            self._last_check_at = time.time()
            try:
                await self.tick()
            except ReminderError as e:
                logger.error(f"检查提醒失败: {e}")
            await self._wait_next(shutdown_event)
        logger.info("提醒主循环已关闭")

    def start(self, shutdown_event: asyncio.Event) -> asyncio.Task[None]:
        """启动后台检查；重复调用会先停止之前的检查任务"""
        if self._task is not None and not self._task.done():
            logger.debug("重新启动提醒检查，取消之前的检查任务")
            self._task.cancel()
        self._task = asyncio.create_task(self.main_loop(shutdown_event))
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
