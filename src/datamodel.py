from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from utils import is_valid_iso, new_id, normalize_hhmm, now_iso

__all__ = [
    "Frequency", "TimeSlot", "TimeEntry", "Medication",
    "RecordAction", "DELAYED_ACTION", "ResponseRecord",
    "DelayState",
    "AppSettings",
    "ReminderFire",
]

# 存储/导出格式沿用 camelCase 键名，Python 侧使用 snake_case 字段
class _StoredModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, use_enum_values=True)

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ----------------- Medication 数据模型 ----------------
class Frequency(str, Enum):
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class TimeSlot(str, Enum):
    MORNING = "morning"
    NOON = "noon"
    EVENING = "evening"


class TimeEntry(_StoredModel):
    time: str  # 格式: "HH:MM"
    time_slot: TimeSlot

    @field_validator("time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        return normalize_hhmm(value)


class Medication(_StoredModel):
    id: str = Field(default_factory=new_id, min_length=1)
    name: str
    times: list[TimeEntry] = Field(min_length=1)
    frequency: Frequency
    custom_interval: Optional[int] = None  # 仅 frequency == custom 时有意义，单位: 天
    notes: Optional[str] = None
    enabled: bool = True
    created_at: str = Field(default_factory=now_iso)  # once/custom 频次的计算起点

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        value = value.strip()
        if value == "":
            raise ValueError("用药提醒必须包含有效的名称")
        return value

    @field_validator("created_at")
    @classmethod
    def _check_created_at(cls, value: str) -> str:
        if not is_valid_iso(value):
            raise ValueError("创建时间必须是有效的 ISO 时间戳")
        return value

    @model_validator(mode="after")
    def _check_custom_interval(self) -> "Medication":
        if self.frequency == Frequency.CUSTOM and (self.custom_interval is None or self.custom_interval <= 0):
            raise ValueError("自定义频次必须包含大于0的间隔天数")
        return self


# ----------------- Record 数据模型 ----------------
RecordAction = Literal["taken", "cancelled"]
# "delayed" 仅作为瞬时信号存在，不会写入历史记录
DELAYED_ACTION = "delayed"


class ResponseRecord(_StoredModel):
    id: str = Field(default_factory=new_id, min_length=1)
    medication_id: str = Field(min_length=1)
    action: RecordAction
    timestamp: str = Field(default_factory=now_iso)
    delay_minutes: Optional[int] = Field(default=None, ge=0)

    @field_validator("timestamp")
    @classmethod
    def _check_timestamp(cls, value: str) -> str:
        if not is_valid_iso(value):
            raise ValueError("记录必须包含有效的时间戳")
        return value


# ----------------- Delay 数据模型 ----------------
class DelayState(_StoredModel):
    original_time: str
    delay_time: str  # original_time + delay_minutes
    delay_minutes: int = Field(gt=0)

    @field_validator("original_time", "delay_time")
    @classmethod
    def _check_iso(cls, value: str) -> str:
        if not is_valid_iso(value):
            raise ValueError("延迟时间必须是有效的 ISO 时间戳")
        return value


# ----------------- Settings 数据模型 ----------------
class AppSettings(_StoredModel):
    model_config = ConfigDict(extra="allow")  # 保留未知的设置项

    sound_enabled: bool = True
    notification_enabled: bool = True
    theme: str = "light"
    volume: float = Field(default=0.8, ge=0, le=1)
    reminder_snooze_time: int = Field(default=5, ge=1)  # 默认延迟分钟数


# ----------------- 提醒触发事件 ----------------
@dataclass
class ReminderFire:
    medication: Medication
    fired_at: datetime
    time: str  # 触发时对应的 "HH:MM"
    time_slot: Optional[str] = None  # 延迟提醒没有对应的时间段
    delayed: bool = False
    delay_minutes: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "medication": self.medication.to_storage(),
            "firedAt": self.fired_at.isoformat(),
            "time": self.time,
            "timeSlot": self.time_slot,
            "delayed": self.delayed,
            "delayMinutes": self.delay_minutes,
        }
