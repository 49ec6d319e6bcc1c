import os
from dotenv import load_dotenv
from logger import logger, normalize_level
load_dotenv()

__all__ = [
    "DB_PATH", "LOG_FILE", "LOG_LEVEL",
    "REMINDER_CHECK_INTERVAL_SECONDS", "STRICT_WEEKLY_RECURRENCE",
    "RECORD_RETENTION_DAYS", "BACKUP_KEEP_COUNT", "CLEANUP_INTERVAL_HOURS", "BACKUP_INTERVAL_DAYS",
    "ENABLE_ADMIN_HTTP", "ADMIN_HTTP_HOST", "ADMIN_HTTP_PORT", "ADMIN_AUTH_TOKEN",
]


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on", "y")


def _parse_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"{name} 非法: {raw}, 已回退到 {default}")
        return default
    if value < minimum:
        logger.warning(f"{name} 不能小于 {minimum}: {value}, 已回退到 {default}")
        return default
    return value


# 存储与日志
DB_PATH = os.getenv("DB_PATH", "data/medication.db")
LOG_FILE = os.getenv("LOG_FILE", "logs/medication.log")
_raw_log_level = os.getenv("LOG_LEVEL", "DEBUG")
LOG_LEVEL = normalize_level(_raw_log_level, "DEBUG")
if LOG_LEVEL != _raw_log_level.strip().upper():
    logger.warning(f"LOG_LEVEL 已归一为 {LOG_LEVEL}: {_raw_log_level}")


# 提醒调度
REMINDER_CHECK_INTERVAL_SECONDS = _parse_int("REMINDER_CHECK_INTERVAL_SECONDS", 60)
# 默认 weekly 与 daily 行为一致，开启后仅在与创建日相同的星期几提醒
STRICT_WEEKLY_RECURRENCE = _parse_bool("STRICT_WEEKLY_RECURRENCE", False)


# 数据维护
RECORD_RETENTION_DAYS = _parse_int("RECORD_RETENTION_DAYS", 365)
BACKUP_KEEP_COUNT = _parse_int("BACKUP_KEEP_COUNT", 5)
CLEANUP_INTERVAL_HOURS = _parse_int("CLEANUP_INTERVAL_HOURS", 24)
BACKUP_INTERVAL_DAYS = _parse_int("BACKUP_INTERVAL_DAYS", 7)


# 本地 HTTP API
ENABLE_ADMIN_HTTP = _parse_bool("ENABLE_ADMIN_HTTP", True)
ADMIN_HTTP_HOST = os.getenv("ADMIN_HTTP_HOST", "127.0.0.1")
ADMIN_HTTP_PORT = _parse_int("ADMIN_HTTP_PORT", 18090)
ADMIN_AUTH_TOKEN = os.getenv("ADMIN_AUTH_TOKEN", "")
if ENABLE_ADMIN_HTTP and ADMIN_AUTH_TOKEN == "":
    logger.warning("已启用本地 HTTP API, 但 ADMIN_AUTH_TOKEN 未设置, API 将拒绝所有请求")
