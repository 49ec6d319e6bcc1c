from __future__ import annotations

from typing import Any

from pydantic.alias_generators import to_snake

from datamodel import Medication, TimeSlot
from errors import StorageError
from events import bus, E
from logger import logger
from storage.collection import MEDICATIONS_KEY, filter_valid, read_json, validate_all, validate_one, write_json
from storage.kv import KeyValueStore
from utils import new_id, normalize_hhmm, now_iso

__all__ = ["MedicationStore"]

_IMMUTABLE_FIELDS = ("id", "created_at", "createdAt")


class MedicationStore:
    """用药提醒集合"""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    async def load_all(self) -> list[Medication]:
        """获取所有用药提醒；无效数据会被过滤并写回存储"""
        try:
            raw = await read_json(self.kv, MEDICATIONS_KEY)
        except StorageError as e:
            logger.error(f"获取用药提醒失败: {e}")
            return []
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.error(f"用药提醒数据结构异常, 期望列表, 实际为 {type(raw).__name__}")
            return []

        medications, dropped = filter_valid(Medication, raw, "用药提醒")
        if dropped:
            logger.warning(f"过滤掉 {dropped} 条无效的用药提醒，已写回存储")
            try:
                await self.save_all(medications)
            except StorageError as e:
                logger.error(f"写回清理后的用药提醒失败: {e}")
        return medications

    async def save_all(self, medications: list[Medication | dict]) -> None:
        """保存用药提醒列表；任意一项无效则拒绝写入"""
        validated = validate_all(Medication, medications, "用药提醒")
        await write_json(self.kv, MEDICATIONS_KEY, [m.to_storage() for m in validated])

    async def get(self, medication_id: str) -> Medication | None:
        for medication in await self.load_all():
            if medication.id == medication_id:
                return medication
        return None

    async def add(self, data: dict[str, Any]) -> Medication:
        """添加用药提醒，分配 ID 与创建时间"""
        payload = {to_snake(k): v for k, v in data.items() if k not in _IMMUTABLE_FIELDS}
        payload["id"] = new_id()
        payload["created_at"] = now_iso()
        payload.setdefault("enabled", True)
        medication = validate_one(Medication, payload, "用药提醒")

        medications = await self.load_all()
        medications.append(medication)
        await self.save_all(medications)
        bus.emit(E.MEDICATION_CREATED, medication=medication)
        logger.info(f"添加用药提醒: id={medication.id}, name={medication.name}")
        return medication

    async def update(self, medication_id: str, updates: dict[str, Any]) -> bool:
        """合并更新字段；找不到返回 False，合并后无效抛 ValidationError"""
        medications = await self.load_all()
        for index, medication in enumerate(medications):
            if medication.id != medication_id:
                continue
            merged = medication.model_dump()
            merged.update({to_snake(k): v for k, v in updates.items() if k not in _IMMUTABLE_FIELDS})
            medications[index] = validate_one(Medication, merged, "用药提醒")
            await self.save_all(medications)
            logger.debug(f"更新用药提醒: id={medication_id}, fields={sorted(updates)}")
            return True
        return False

    async def delete(self, medication_id: str) -> bool:
        medications = await self.load_all()
        remaining = [m for m in medications if m.id != medication_id]
        if len(remaining) == len(medications):
            return False
        await self.save_all(remaining)
        logger.info(f"删除用药提醒: id={medication_id}")
        return True

    async def delete_time(self, medication_id: str, time: str, time_slot: str) -> bool:
        """删除某个用药提醒中的一个时间点；没有剩余时间点时删除整个提醒"""
        time = normalize_hhmm(time)
        medications = await self.load_all()
        for index, medication in enumerate(medications):
            if medication.id != medication_id:
                continue
            times = [t for t in medication.times if not (t.time == time and t.time_slot == time_slot)]
            if not times:
                medications.pop(index)
                logger.info(f"最后一个时间点已删除，移除用药提醒: id={medication_id}")
            else:
                medications[index] = medication.model_copy(update={"times": times})
            await self.save_all(medications)
            return True
        return False

    async def by_time_slot(self, time_slot: TimeSlot | str) -> list[Medication]:
        """获取包含指定时间段的用药提醒"""
        slot = TimeSlot(time_slot).value
        return [m for m in await self.load_all() if any(t.time_slot == slot for t in m.times)]
