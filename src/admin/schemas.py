from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from core.reminder_app import MedicationReminderApp
from storage.maintenance import MaintenanceWorker


@dataclass
class RuntimeControl:
    shutdown_event: asyncio.Event
    started_at: float
    app: MedicationReminderApp
    auth_token: str
    maintenance: MaintenanceWorker | None = None


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MedicationCreate(_ApiModel):
    name: str
    times: list[dict[str, Any]]
    frequency: str
    custom_interval: Optional[int] = None
    notes: Optional[str] = None
    enabled: bool = True


class MedicationUpdate(_ApiModel):
    name: Optional[str] = None
    times: Optional[list[dict[str, Any]]] = None
    frequency: Optional[str] = None
    custom_interval: Optional[int] = None
    notes: Optional[str] = None
    enabled: Optional[bool] = None


class SnoozeRequest(_ApiModel):
    minutes: Optional[int] = Field(default=None, gt=0)

