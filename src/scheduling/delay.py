"""延迟(稍后提醒)状态机

每个用药提醒最多只有一个待触发的延迟: NONE -> PENDING -> NONE。
重复设置延迟时新值覆盖旧值，不会叠加。
"""

from __future__ import annotations

from datetime import datetime, timedelta

from datamodel import DelayState
from errors import ValidationError
from events import bus, E
from logger import logger
from storage.delay import DelayStore
from utils import now_local, to_iso

__all__ = ["DelayStateMachine"]


class DelayStateMachine:
    def __init__(self, store: DelayStore) -> None:
        self.store = store

    async def set_delay(
        self,
        medication_id: str,
        delay_minutes: int,
        original_time: datetime | None = None,
    ) -> DelayState:
        """进入 PENDING，覆盖该用药提醒已有的延迟"""
        if not isinstance(medication_id, str) or medication_id == "":
            raise ValidationError("延迟设置必须包含有效的用药提醒ID")
        if isinstance(delay_minutes, bool) or not isinstance(delay_minutes, int) or delay_minutes <= 0:
            raise ValidationError(f"延迟分钟数必须是正整数: {delay_minutes!r}")

        original_time = original_time or now_local()
        state = DelayState(
            original_time=to_iso(original_time),
            delay_time=to_iso(original_time + timedelta(minutes=delay_minutes)),
            delay_minutes=delay_minutes,
        )
        delays = await self.store.load_all()
        replaced = medication_id in delays
        delays[medication_id] = state
        await self.store.save_all(delays)
        logger.debug(
            f"设置延迟提醒: medication_id={medication_id}, delay_minutes={delay_minutes}, "
            f"delay_time={state.delay_time}, replaced={replaced}"
        )
        return state

    async def clear_delay(self, medication_id: str) -> bool:
        """回到 NONE；原本就没有延迟时返回 False"""
        delays = await self.store.load_all()
        if medication_id not in delays:
            return False
        del delays[medication_id]
        await self.store.save_all(delays)
        bus.emit(E.DELAY_CLEARED, medication_id=medication_id)
        logger.debug(f"清除延迟提醒: medication_id={medication_id}")
        return True

    async def get_delay(self, medication_id: str) -> DelayState | None:
        return await self.store.get(medication_id)

    async def is_pending(self, medication_id: str) -> bool:
        return await self.get_delay(medication_id) is not None

    async def all_pending(self) -> dict[str, DelayState]:
        return await self.store.load_all()
