"""数据备份、恢复、导入与导出

备份快照与导出数据均为整体集合快照；恢复与导入先校验全部数据，校验通过后再一次性写入，
任何一项不合法则整体拒绝。
"""

from __future__ import annotations

from typing import Any

from datamodel import AppSettings, DelayState, Medication, ResponseRecord
from errors import StorageError, ValidationError
from logger import logger
from storage.collection import (
    BACKUP_INDEX_KEY,
    BACKUP_KEY_PREFIX,
    DELAYS_KEY,
    MEDICATIONS_KEY,
    RECORDS_KEY,
    SETTINGS_KEY,
    dumps,
    read_json,
    validate_all,
    validate_one,
    write_json,
)
from storage.delay import DelayStore
from storage.kv import KeyValueStore
from storage.medication import MedicationStore
from storage.record import RecordStore
from storage.settings import SettingsStore
from utils import is_valid_iso, new_id, now_iso, parse_iso

__all__ = ["BackupManager", "DATA_VERSION"]

DATA_VERSION = "1.0"


class BackupManager:
    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv
        self.medications = MedicationStore(kv)
        self.records = RecordStore(kv)
        self.settings = SettingsStore(kv)
        self.delays = DelayStore(kv)

    async def _snapshot(self) -> dict[str, Any]:
        return {
            "medications": [m.to_storage() for m in await self.medications.load_all()],
            "records": [r.to_storage() for r in await self.records.load_all()],
            "settings": (await self.settings.load()).to_storage(),
            "delays": {k: v.to_storage() for k, v in (await self.delays.load_all()).items()},
        }

    async def _load_index(self) -> list[dict[str, str]]:
        try:
            index = await read_json(self.kv, BACKUP_INDEX_KEY)
        except StorageError as e:
            logger.error(f"读取备份索引失败: {e}")
            return []
        if not isinstance(index, list):
            return []
        entries = [b for b in index if isinstance(b, dict) and "key" in b and is_valid_iso(b.get("date"))]
        if len(entries) != len(index):
            logger.warning(f"备份索引中有 {len(index) - len(entries)} 条无效记录，已忽略")
        return entries

    # --- 备份 ---

    async def create_backup(self) -> dict[str, Any]:
        """创建数据备份并记录到备份索引，返回备份内容"""
        backup_data = await self._snapshot()
        backup_data["backupDate"] = now_iso()
        backup_data["version"] = DATA_VERSION

        backup_key = f"{BACKUP_KEY_PREFIX}{new_id()}"
        index = await self._load_index()
        index.append({"key": backup_key, "date": backup_data["backupDate"]})
        await self.kv.set_many({
            backup_key: dumps(backup_data),
            BACKUP_INDEX_KEY: dumps(index),
        })
        logger.info(
            f"创建备份: key={backup_key}, medications={len(backup_data['medications'])}, "
            f"records={len(backup_data['records'])}"
        )
        return backup_data

    async def list_backups(self) -> list[dict[str, Any]]:
        """获取所有备份记录(含数量摘要)，损坏的备份会被跳过"""
        backups = []
        for entry in await self._load_index():
            try:
                data = await read_json(self.kv, entry["key"])
            except StorageError as e:
                logger.warning(f"备份内容损坏，已跳过: key={entry['key']}, error={e}")
                continue
            if not isinstance(data, dict):
                continue
            backups.append({
                **entry,
                "medicationsCount": len(data.get("medications") or []),
                "recordsCount": len(data.get("records") or []),
            })
        return backups

    async def restore_from_backup(self, backup_key: str) -> bool:
        """从备份恢复数据；备份不存在返回 False，备份内容无效抛 ValidationError"""
        data = await read_json(self.kv, backup_key)
        if data is None:
            logger.warning(f"备份不存在: key={backup_key}")
            return False
        await self._replace_all(data, "备份")
        logger.info(f"已从备份恢复数据: key={backup_key}")
        return True

    async def delete_backup(self, backup_key: str) -> bool:
        index = await self._load_index()
        remaining = [b for b in index if b["key"] != backup_key]
        if len(remaining) == len(index) and await self.kv.get(backup_key) is None:
            return False
        await self.kv.remove(backup_key)
        await write_json(self.kv, BACKUP_INDEX_KEY, remaining)
        logger.debug(f"删除备份: key={backup_key}")
        return True

    async def cleanup_old_backups(self, keep_count: int = 5) -> int:
        """按备份时间倒序保留最近 keep_count 个备份，返回清理数量"""
        backups = await self.list_backups()
        ordered = sorted(
            enumerate(backups),
            key=lambda pair: (parse_iso(pair[1]["date"]).timestamp(), pair[0]),
            reverse=True,
        )
        if len(ordered) <= keep_count:
            return 0

        deleted = 0
        for _, backup in ordered[keep_count:]:
            if await self.delete_backup(backup["key"]):
                deleted += 1
        logger.info(f"清理旧备份: deleted={deleted}, keep={keep_count}")
        return deleted

    # --- 导入导出 ---

    async def export_data(self) -> dict[str, Any]:
        data = await self._snapshot()
        data["version"] = DATA_VERSION
        data["exportedAt"] = now_iso()
        return data

    async def import_data(self, data: Any) -> None:
        """导入数据，全部校验通过后整体替换，并在导入后创建一次备份"""
        await self._replace_all(data, "导入")
        logger.info("导入数据成功")
        await self.create_backup()

    async def _replace_all(self, data: Any, what: str) -> None:
        if not isinstance(data, dict) or not data.get("version"):
            raise ValidationError(f"无效的{what}数据格式")
        for field in ("medications", "records", "settings"):
            if data.get(field) is None:
                raise ValidationError(f"{what}数据不完整: 缺少 {field}")
        if not isinstance(data["medications"], list) or not isinstance(data["records"], list):
            raise ValidationError(f"{what}数据格式无效")
        delays = data.get("delays")
        if delays is None:
            delays = {}
        elif not isinstance(delays, dict):
            raise ValidationError(f"{what}数据格式无效: delays 必须是对象")

        medications = validate_all(Medication, data["medications"], "用药提醒")
        records = validate_all(ResponseRecord, data["records"], "用药记录")
        settings = validate_one(AppSettings, data["settings"], "应用设置")
        validated_delays = {k: validate_one(DelayState, v, "延迟设置") for k, v in delays.items()}

        await self.kv.set_many({
            MEDICATIONS_KEY: dumps([m.to_storage() for m in medications]),
            RECORDS_KEY: dumps([r.to_storage() for r in records]),
            SETTINGS_KEY: dumps(settings.to_storage()),
            DELAYS_KEY: dumps({k: v.to_storage() for k, v in validated_delays.items()}),
        })

    # --- 清空 ---

    async def clear_all_data(self) -> None:
        """清空所有集合与全部备份"""
        for key in (MEDICATIONS_KEY, RECORDS_KEY, SETTINGS_KEY, DELAYS_KEY):
            await self.kv.remove(key)
        for entry in await self._load_index():
            await self.kv.remove(entry["key"])
        for key in await self.kv.keys(BACKUP_KEY_PREFIX):
            await self.kv.remove(key)
        await self.kv.remove(BACKUP_INDEX_KEY)
        logger.warning("已清空所有数据")
