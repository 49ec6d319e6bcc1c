from logger import setup_logging, logger
from config.settings import *
setup_logging(
    log_level=LOG_LEVEL,
    log_file=LOG_FILE,
    console_level="INFO",
)

import asyncio
import signal
import time

from admin.http_server import main_loop as admin_http_main
from admin.schemas import RuntimeControl
from core.reminder_app import MedicationReminderApp
from datamodel import ReminderFire
from events import bus, E
from storage.kv import SqliteKeyValueStore
from storage.maintenance import MaintenanceWorker
import storage.db_config as db_config

shutdown_event = asyncio.Event()


def signal_handler(sig, frame):
    """处理 SIGINT (Ctrl+C) 信号"""
    logger.info("收到中断信号,正在依次关闭组件...")
    shutdown_event.set()


def _register_handlers(app: MedicationReminderApp) -> None:
    @bus.on(E.REMINDER_FIRED)
    async def announce_reminder(fire: ReminderFire) -> None:
        # 没有界面时以日志代替弹窗
        medication = fire.medication
        hint = "(这是延迟提醒)" if fire.delayed else ""
        notes = f", 备注: {medication.notes}" if medication.notes else ""
        logger.info(f"该服药了: {medication.name} @ {fire.time}{hint}{notes}")

    @bus.on(E.APP_RESUMED)
    async def on_app_resumed() -> None:
        app.wake()


async def main():
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if hasattr(signal, "SIGCONT"):
        # 进程从挂起中恢复(如 Ctrl+Z 后 fg)时立即补查一次提醒
        asyncio.get_running_loop().add_signal_handler(signal.SIGCONT, lambda: bus.emit(E.APP_RESUMED))

    conn = await db_config.init_db(DB_PATH)
    kv = SqliteKeyValueStore(conn)

    app = MedicationReminderApp(
        kv,
        check_interval=REMINDER_CHECK_INTERVAL_SECONDS,
        strict_weekly=STRICT_WEEKLY_RECURRENCE,
    )
    _register_handlers(app)

    maintenance = MaintenanceWorker(
        kv,
        retention_days=RECORD_RETENTION_DAYS,
        backup_keep_count=BACKUP_KEEP_COUNT,
        cleanup_interval=CLEANUP_INTERVAL_HOURS * 60 * 60,
        backup_interval=BACKUP_INTERVAL_DAYS * 24 * 60 * 60,
    )

    try:
        tasks = [
            app.start(shutdown_event),
            maintenance.main_loop(shutdown_event),
        ]

        if ENABLE_ADMIN_HTTP:
            control = RuntimeControl(
                shutdown_event=shutdown_event,
                started_at=time.time(),
                app=app,
                auth_token=ADMIN_AUTH_TOKEN,
                maintenance=maintenance,
            )
            tasks.append(admin_http_main(control, ADMIN_HTTP_HOST, ADMIN_HTTP_PORT))
        else:
            logger.warning("本地 HTTP API 已禁用")

        await asyncio.gather(*tasks)
    finally:
        logger.info("关闭用药提醒服务...")
        await app.scheduler.stop()

        logger.info("关闭数据库连接...")
        await db_config.close_db()
        logger.info("用药提醒服务已关闭")


if __name__ == "__main__":
    logger.info("启动用药提醒服务...")
    asyncio.run(main())
