"""数据维护：过期记录清理、无效延迟清理与定期备份"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta

from errors import ReminderError
from logger import logger
from storage.backup import BackupManager
from storage.delay import DelayStore
from storage.kv import KeyValueStore
from storage.medication import MedicationStore
from storage.record import RecordStore
from utils import as_local, now_iso, now_local, parse_iso

__all__ = ["cleanup_expired_records", "cleanup_invalid_delays", "cleanup_data", "MaintenanceWorker"]


async def cleanup_expired_records(kv: KeyValueStore, days_to_keep: int = 365, now: datetime | None = None) -> int:
    """清理早于 days_to_keep 天的用药记录，返回清理数量"""
    cutoff = as_local(now or now_local()) - timedelta(days=days_to_keep)
    store = RecordStore(kv)
    records = await store.load_all()
    kept = [r for r in records if as_local(parse_iso(r.timestamp)) >= cutoff]
    removed = len(records) - len(kept)
    if removed:
        await store.save_all(kept)
        logger.info(f"清理过期用药记录: removed={removed}, cutoff={cutoff:%Y-%m-%d %H:%M}")
    return removed


async def cleanup_invalid_delays(kv: KeyValueStore) -> int:
    """清理指向已删除用药提醒的延迟设置，返回清理数量"""
    delay_store = DelayStore(kv)
    delays = await delay_store.load_all()
    medication_ids = {m.id for m in await MedicationStore(kv).load_all()}
    valid = {k: v for k, v in delays.items() if k in medication_ids}
    removed = len(delays) - len(valid)
    if removed:
        await delay_store.save_all(valid)
        logger.info(f"清理无效延迟设置: removed={removed}")
    return removed


async def cleanup_data(kv: KeyValueStore, days_to_keep: int = 365, now: datetime | None = None) -> dict:
    expired = await cleanup_expired_records(kv, days_to_keep, now)
    invalid = await cleanup_invalid_delays(kv)
    return {
        "expiredRecordsCleaned": expired,
        "invalidDelaysCleaned": invalid,
        "totalCleaned": expired + invalid,
        "cleanedAt": now_iso(),
    }


class MaintenanceWorker:
    """启动时立即清理一次，之后按间隔定期清理与备份"""

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        retention_days: int = 365,
        backup_keep_count: int = 5,
        cleanup_interval: float = 24 * 60 * 60,
        backup_interval: float = 7 * 24 * 60 * 60,
        poll_interval: float = 60,
    ) -> None:
        self.kv = kv
        self.backups = BackupManager(kv)
        self.retention_days = retention_days
        self.backup_keep_count = backup_keep_count
        self.cleanup_interval = cleanup_interval
        self.backup_interval = backup_interval
        self.poll_interval = poll_interval
        self.last_cleanup_at: float | None = None
        self.last_backup_at: float | None = None

    def get_status(self) -> dict[str, object]:
        return {
            "last_cleanup_at_epoch": self.last_cleanup_at,
            "last_backup_at_epoch": self.last_backup_at,
        }

    async def run_once(self, now: float | None = None) -> None:
        now = time.time() if now is None else now
        if self.last_cleanup_at is None or now - self.last_cleanup_at >= self.cleanup_interval:
            result = await cleanup_data(self.kv, self.retention_days)
            self.last_cleanup_at = now
            logger.debug(f"定期清理完成: {result}")

        if self.last_backup_at is None:
            # 首次运行只记录起点，满一个周期后才备份
            self.last_backup_at = now
        elif now - self.last_backup_at >= self.backup_interval:
            await self.backups.create_backup()
            await self.backups.cleanup_old_backups(self.backup_keep_count)
            self.last_backup_at = now

    async def main_loop(self, shutdown_event: asyncio.Event) -> None:
        logger.info("数据维护循环已启动")
        while not shutdown_event.is_set():
            try:
                await self.run_once()
            except ReminderError as e:
                logger.error(f"数据维护失败: {e}")
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("数据维护循环已关闭")
