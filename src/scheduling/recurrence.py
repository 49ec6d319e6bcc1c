"""重复规则判定

is_due_today 只依赖传入的用药提醒和参考时间(调用方提供的墙钟时间)，没有副作用。

- once:   仅在创建当天(本地日历日)提醒
- daily:  每天提醒
- weekly: 默认与 daily 相同(每天提醒)；strict_weekly=True 时仅在与创建日相同的星期几提醒
- custom: ceil(|参考时间 - 创建时间| / 1天) % custom_interval == 0 时提醒
- 未知频次: 由 UnknownFrequencyPolicy 决定，默认照常提醒
"""

import math
from datetime import datetime
from enum import Enum
from typing import Any

from datamodel import Frequency
from logger import logger
from utils import as_local, parse_iso

__all__ = ["UnknownFrequencyPolicy", "is_due_today"]

_SECONDS_PER_DAY = 24 * 60 * 60


class UnknownFrequencyPolicy(str, Enum):
    ALWAYS_DUE = "always_due"
    NEVER_DUE = "never_due"


def _created_at(medication: Any) -> datetime | None:
    try:
        return as_local(parse_iso(medication.created_at))
    except (TypeError, ValueError, AttributeError):
        logger.warning(f"用药提醒创建时间无效，今日不提醒: id={getattr(medication, 'id', None)}")
        return None


def _unknown(medication: Any, policy: UnknownFrequencyPolicy) -> bool:
    logger.warning(
        f"用药提醒频次无效: id={getattr(medication, 'id', None)}, "
        f"frequency={getattr(medication, 'frequency', None)!r}, policy={policy.value}"
    )
    return policy == UnknownFrequencyPolicy.ALWAYS_DUE


def is_due_today(
    medication: Any,
    reference: datetime,
    *,
    strict_weekly: bool = False,
    unknown_policy: UnknownFrequencyPolicy = UnknownFrequencyPolicy.ALWAYS_DUE,
) -> bool:
    """判断用药提醒在参考时间所在的日期是否需要提醒"""
    reference = as_local(reference)
    frequency = getattr(medication, "frequency", None)

    if frequency == Frequency.DAILY:
        return True

    if frequency == Frequency.ONCE:
        created = _created_at(medication)
        return created is not None and created.date() == reference.date()

    if frequency == Frequency.WEEKLY:
        if not strict_weekly:
            return True
        created = _created_at(medication)
        return created is not None and created.weekday() == reference.weekday()

    if frequency == Frequency.CUSTOM:
        interval = getattr(medication, "custom_interval", None)
        if not isinstance(interval, int) or interval <= 0:
            return _unknown(medication, unknown_policy)
        created = _created_at(medication)
        if created is None:
            return False
        diff_days = math.ceil(abs((reference - created).total_seconds()) / _SECONDS_PER_DAY)
        return diff_days % interval == 0

    return _unknown(medication, unknown_policy)
