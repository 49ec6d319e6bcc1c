from __future__ import annotations

from typing import Any

from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_snake

from datamodel import AppSettings
from errors import StorageError
from logger import logger
from storage.collection import SETTINGS_KEY, read_json, validate_one, write_json
from storage.kv import KeyValueStore

__all__ = ["SettingsStore"]


class SettingsStore:
    """应用设置；未保存过或数据损坏时返回默认值"""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    async def load(self) -> AppSettings:
        try:
            raw = await read_json(self.kv, SETTINGS_KEY)
        except StorageError as e:
            logger.error(f"获取应用设置失败: {e}")
            return AppSettings()
        if not isinstance(raw, dict):
            return AppSettings()
        try:
            return AppSettings.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning(f"应用设置无效，使用默认值: {e.error_count()} 处错误")
            return AppSettings()

    async def save(self, updates: dict[str, Any]) -> AppSettings:
        """合并到当前设置后保存，返回保存后的设置"""
        current = (await self.load()).model_dump()
        current.update({to_snake(k): v for k, v in updates.items()})
        merged = validate_one(AppSettings, current, "应用设置")
        await write_json(self.kv, SETTINGS_KEY, merged.to_storage())
        logger.debug(f"保存应用设置: fields={sorted(updates)}")
        return merged
