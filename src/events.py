"""事件总线模块，定义了事件总线类 Bus 及事件名集合 E

调度器触发提醒后只负责发出事件，提醒的展示、声音、系统通知等都由订阅方完成。
"""

from __future__ import annotations
from pyee.asyncio import AsyncIOEventEmitter
from typing import Awaitable, Callable, Set

from logger import logger

AsyncHandler = Callable[..., Awaitable[None]]

# 事件名集中定义
class E:
    MEDICATION_CREATED = "medication.created"
    REMINDER_FIRED = "reminder.fired"
    REMINDER_SNOOZED = "reminder.snoozed"
    RESPONSE_RECORDED = "response.recorded"
    DELAY_CLEARED = "delay.cleared"
    APP_RESUMED = "app.resumed"  # 宿主进程重新回到前台，需要立即补查一次

# 独占事件：仅允许一个处理器注册
EXCLUSIVE_EVENTS = {E.APP_RESUMED}


class Bus(AsyncIOEventEmitter):
    def __init__(self) -> None:
        super().__init__()
        self._exclusive: Set[str] = set()

    def on(self, event: str) -> Callable[[AsyncHandler], AsyncHandler]:
        """注册事件处理器装饰器"""
        def decorator(handler: AsyncHandler) -> AsyncHandler:
            if event in EXCLUSIVE_EVENTS:
                if event in self._exclusive:
                    raise RuntimeError(f"独占事件的唯一处理器已注册: {event}")
                self._exclusive.add(event)

            logger.debug(f"注册事件处理器: {event} -> {handler.__name__}")
            super(Bus, self).on(event, handler)
            return handler

        return decorator


bus = Bus()

__all__ = ["bus", "E", "Bus"]
