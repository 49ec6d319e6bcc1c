"""时间工具

所有调度与统计都基于宿主机本地时间。内部统一使用不带时区的本地时间(naive)做比较，
落盘时使用带本地时区偏移的 ISO 8601 字符串。
"""

import re
from datetime import datetime

from ulid import ULID

__all__ = ["new_id", "now_local", "as_local", "parse_iso", "to_iso", "now_iso",
           "hhmm", "normalize_hhmm", "is_valid_hhmm", "is_valid_iso", "month_key"]

_HHMM_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")


def new_id() -> str:
    """生成唯一 ID (ULID，按时间有序)"""
    return str(ULID())


def now_local() -> datetime:
    return datetime.now()


def as_local(dt: datetime) -> datetime:
    """转换为本地时间并去掉时区信息；naive 时间视为本地时间原样返回"""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone().replace(tzinfo=None)


def parse_iso(value: str) -> datetime:
    # 兼容浏览器 toISOString() 产生的 "Z" 后缀
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt.isoformat()


def now_iso() -> str:
    return to_iso(now_local())


def hhmm(dt: datetime) -> str:
    """本地时间的 "HH:MM" 表示，秒被忽略"""
    return as_local(dt).strftime("%H:%M")


def is_valid_hhmm(value: str) -> bool:
    return isinstance(value, str) and _HHMM_RE.match(value) is not None


def normalize_hhmm(value: str) -> str:
    """"8:05" -> "08:05" """
    match = _HHMM_RE.match(value)
    if match is None:
        raise ValueError(f"时间格式非法: {value}")
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def is_valid_iso(value: str) -> bool:
    if not isinstance(value, str) or value == "":
        return False
    try:
        parse_iso(value)
    except ValueError:
        return False
    return True


def month_key(dt: datetime) -> str:
    return as_local(dt).strftime("%Y-%m")
