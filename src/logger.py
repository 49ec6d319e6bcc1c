"""日志模块

setup_logging 之后有四路输出:
- 控制台 (stderr)
- 运行日志 <log_file>，以及只收 ERROR 以上级别的 <stem>_error<suffix>
- 用药事件日志 <stem>_events.jsonl: 只收录经 event_logger 写入的提醒触发、延迟与用户响应，每行一个 JSON

业务代码直接 `from logger import logger`；提醒相关的事件用 `event_logger.bind(medication_id=...)`。
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import NamedTuple, Union

from loguru import logger

LEVELS = ("TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL")
_LEVEL_ALIAS = {"FATAL": "CRITICAL", "WARN": "WARNING"}

CONSOLE_FORMAT = (
    "<green>{time:MM-DD HH:mm:ss}</green> "
    "<level>{level: <7}</level> "
    "<cyan>{name}:{line}</cyan> "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"

# 提醒触发/延迟/响应统一带上这个标记，事件日志只收录带标记的记录
event_logger = logger.bind(medication_event=True)


class LogPaths(NamedTuple):
    main: Path
    error: Path
    events: Path


def normalize_level(level: str, default: str = "INFO") -> str:
    """大小写与别名归一；无法识别时返回 default"""
    level = str(level).strip().upper()
    level = _LEVEL_ALIAS.get(level, level)
    return level if level in LEVELS else default


def log_paths(log_file: Union[str, Path]) -> LogPaths:
    log_file = Path(log_file)
    return LogPaths(
        main=log_file,
        error=log_file.with_name(f"{log_file.stem}_error{log_file.suffix}"),
        events=log_file.with_name(f"{log_file.stem}_events.jsonl"),
    )


def _is_medication_event(record: dict) -> bool:
    return bool(record["extra"].get("medication_event"))


def setup_logging(
    log_level: str,
    log_file: Union[str, Path],
    console_level: str = "INFO",
    *,
    retention_days: int = 30,
) -> LogPaths:
    paths = log_paths(log_file)
    paths.main.parent.mkdir(parents=True, exist_ok=True)
    rotating = {"rotation": "10 MB", "compression": "zip", "encoding": "utf-8"}

    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": normalize_level(console_level),
                "format": CONSOLE_FORMAT,
                "colorize": True,
            },
            {
                "sink": paths.main,
                "level": normalize_level(log_level, "DEBUG"),
                "format": FILE_FORMAT,
                "retention": f"{retention_days} days",
                **rotating,
            },
            {
                "sink": paths.error,
                "level": "ERROR",
                "format": FILE_FORMAT,
                "retention": f"{retention_days * 3} days",
                "backtrace": True,
                **rotating,
            },
            {
                "sink": paths.events,
                "level": "INFO",
                "filter": _is_medication_event,
                "serialize": True,
                # 与用药记录的默认保留期一致
                "retention": "365 days",
                **rotating,
            },
        ],
        extra={"medication_event": False},
    )
    return paths


__all__ = ["setup_logging", "normalize_level", "log_paths", "LogPaths", "logger", "event_logger"]
