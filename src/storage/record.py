from __future__ import annotations

from datamodel import ResponseRecord
from errors import StorageError
from logger import logger
from storage.collection import RECORDS_KEY, filter_valid, read_json, validate_all, validate_one, write_json
from storage.kv import KeyValueStore

__all__ = ["RecordStore"]


class RecordStore:
    """用药记录(事件日志)，只追加，不做原地修改"""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    async def load_all(self) -> list[ResponseRecord]:
        try:
            raw = await read_json(self.kv, RECORDS_KEY)
        except StorageError as e:
            logger.error(f"获取用药记录失败: {e}")
            return []
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.error(f"用药记录数据结构异常, 期望列表, 实际为 {type(raw).__name__}")
            return []

        records, dropped = filter_valid(ResponseRecord, raw, "用药记录")
        if dropped:
            logger.warning(f"过滤掉 {dropped} 条无效的用药记录，已写回存储")
            try:
                await self.save_all(records)
            except StorageError as e:
                logger.error(f"写回清理后的用药记录失败: {e}")
        return records

    async def save_all(self, records: list[ResponseRecord | dict]) -> None:
        validated = validate_all(ResponseRecord, records, "用药记录")
        await write_json(self.kv, RECORDS_KEY, [r.to_storage() for r in validated])

    async def append(self, record: ResponseRecord | dict) -> ResponseRecord:
        """读取完整列表、追加、整体写回"""
        record = validate_one(ResponseRecord, record, "用药记录")
        records = await self.load_all()
        records.append(record)
        await self.save_all(records)
        logger.trace(f"追加用药记录: id={record.id}, medication_id={record.medication_id}, action={record.action}")
        return record

    async def for_medication(self, medication_id: str) -> list[ResponseRecord]:
        return [r for r in await self.load_all() if r.medication_id == medication_id]

    async def delete_for_medication(self, medication_id: str) -> int:
        """删除特定用药提醒的所有记录，返回删除数量"""
        records = await self.load_all()
        remaining = [r for r in records if r.medication_id != medication_id]
        removed = len(records) - len(remaining)
        if removed:
            await self.save_all(remaining)
            logger.info(f"删除用药记录: medication_id={medication_id}, count={removed}")
        return removed

    async def clear_all(self) -> None:
        await self.kv.remove(RECORDS_KEY)
        logger.info("已清空所有用药记录")
