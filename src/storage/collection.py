"""集合读写的公共逻辑：JSON 编解码与逐项校验"""

from __future__ import annotations

import json
from typing import Any, Iterable, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from errors import StorageError, ValidationError
from logger import logger
from metrics import runtime_metrics
from storage.kv import KeyValueStore

__all__ = ["MEDICATIONS_KEY", "RECORDS_KEY", "SETTINGS_KEY", "DELAYS_KEY", "BACKUP_INDEX_KEY", "BACKUP_KEY_PREFIX",
           "dumps", "read_json", "write_json", "filter_valid", "validate_all", "validate_one"]

MEDICATIONS_KEY = "medication_reminders"
RECORDS_KEY = "medication_records"
SETTINGS_KEY = "app_settings"
DELAYS_KEY = "medication_delays"
BACKUP_INDEX_KEY = "backup_timestamps"
BACKUP_KEY_PREFIX = "backup_"

M = TypeVar("M", bound=BaseModel)


def dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


async def read_json(kv: KeyValueStore, key: str) -> Any | None:
    """读取并解析 JSON；键不存在返回 None，内容损坏抛 StorageError"""
    raw = await kv.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        runtime_metrics.record_storage_error()
        raise StorageError(f"存储内容已损坏: {key}") from e


async def write_json(kv: KeyValueStore, key: str, value: Any) -> None:
    await kv.set(key, dumps(value))


def validate_one(model: type[M], item: Any, what: str) -> M:
    if isinstance(item, BaseModel):
        item = item.model_dump()
    try:
        return model.model_validate(item)
    except PydanticValidationError as e:
        errors = [{"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]} for err in e.errors()]
        raise ValidationError(f"无效的{what}数据: {e.error_count()} 处错误", errors) from e


def validate_all(model: type[M], items: Iterable[Any], what: str) -> list[M]:
    """写入前校验，任意一项非法则整体拒绝"""
    return [validate_one(model, item, what) for item in items]


def filter_valid(model: type[M], items: Iterable[Any], what: str) -> tuple[list[M], int]:
    """读取时校验，非法项被丢弃并返回丢弃数量"""
    valid: list[M] = []
    dropped = 0
    for item in items:
        try:
            valid.append(model.model_validate(item))
        except PydanticValidationError as e:
            dropped += 1
            logger.warning(f"丢弃无效的{what}数据: {e.error_count()} 处错误, item={item!r}")
    return valid, dropped
