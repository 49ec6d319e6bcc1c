from __future__ import annotations

from datamodel import DelayState
from errors import StorageError
from logger import logger
from storage.collection import DELAYS_KEY, filter_valid, read_json, validate_one, write_json
from storage.kv import KeyValueStore

__all__ = ["DelayStore"]


class DelayStore:
    """延迟提醒集合: medication_id -> DelayState"""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    async def load_all(self) -> dict[str, DelayState]:
        try:
            raw = await read_json(self.kv, DELAYS_KEY)
        except StorageError as e:
            logger.error(f"获取延迟设置失败: {e}")
            return {}
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            logger.error(f"延迟设置数据结构异常, 期望对象, 实际为 {type(raw).__name__}")
            return {}

        delays: dict[str, DelayState] = {}
        dropped = 0
        for key, item in raw.items():
            valid, invalid = filter_valid(DelayState, [item], f"延迟设置({key})")
            dropped += invalid
            if valid:
                delays[key] = valid[0]

        if dropped:
            logger.warning(f"过滤掉 {dropped} 条无效的延迟设置，已写回存储")
            try:
                await self.save_all(delays)
            except StorageError as e:
                logger.error(f"写回清理后的延迟设置失败: {e}")
        return delays

    async def save_all(self, delays: dict[str, DelayState | dict]) -> None:
        validated = {key: validate_one(DelayState, state, "延迟设置") for key, state in delays.items()}
        await write_json(self.kv, DELAYS_KEY, {key: state.to_storage() for key, state in validated.items()})

    async def get(self, medication_id: str) -> DelayState | None:
        return (await self.load_all()).get(medication_id)
