from __future__ import annotations

import asyncio
import time
from datetime import date
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from datamodel import TimeSlot
from errors import StorageError, ValidationError
from logger import logger
from metrics import runtime_metrics
from tracking.adherence import calculate_adherence, summarize
from tracking.history import export_records_text, filter_records

from .auth import require_admin_auth
from .schemas import MedicationCreate, MedicationUpdate, RuntimeControl, SnoozeRequest


def create_app(control: RuntimeControl) -> FastAPI:
    app = FastAPI(title="Medication Reminder API", version="1.0.0")
    reminders = control.app

    async def authed(request: Request) -> dict[str, str]:
        return await require_admin_auth(request, control.auth_token)

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning(f"请求数据无效: path={request.url.path}, error={exc}")
        return JSONResponse(status_code=400, content={"detail": str(exc), "errors": exc.errors})

    @app.exception_handler(StorageError)
    async def _storage_error(request: Request, exc: StorageError) -> JSONResponse:
        runtime_metrics.record_storage_error()
        logger.error(f"存储操作失败: path={request.url.path}, error={exc}")
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    def health_payload() -> dict[str, Any]:
        return {
            "status": "ok",
            "now_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "uptime_seconds": max(0.0, time.time() - control.started_at),
            "shutdown_requested": control.shutdown_event.is_set(),
        }

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/api/v1/health")
    async def api_health() -> dict[str, Any]:
        return health_payload()

    @app.get("/api/v1/metrics")
    async def get_metrics(request: Request) -> dict[str, Any]:
        await authed(request)
        return {
            "runtime": runtime_metrics.snapshot(),
            "components": {
                "reminder": reminders.get_status(),
                "maintenance": control.maintenance.get_status() if control.maintenance else None,
            },
            "active_tasks": len(asyncio.all_tasks()),
        }

    # --- 用药提醒 ---

    @app.get("/api/v1/medications")
    async def list_medications(request: Request, time_slot: TimeSlot | None = None) -> dict[str, Any]:
        await authed(request)
        if time_slot is None:
            medications = await reminders.medications.load_all()
        else:
            medications = await reminders.medications.by_time_slot(time_slot)
        return {"items": [m.to_storage() for m in medications], "total": len(medications)}

    @app.post("/api/v1/medications", status_code=201)
    async def create_medication(payload: MedicationCreate, request: Request) -> dict[str, Any]:
        await authed(request)
        medication = await reminders.add_medication(payload.model_dump(exclude_none=True))
        return medication.to_storage()

    @app.get("/api/v1/medications/{medication_id}")
    async def get_medication(medication_id: str, request: Request) -> dict[str, Any]:
        await authed(request)
        medication = await reminders.medications.get(medication_id)
        if medication is None:
            raise HTTPException(status_code=404, detail="用药提醒不存在")
        return medication.to_storage()

    @app.patch("/api/v1/medications/{medication_id}")
    async def update_medication(medication_id: str, payload: MedicationUpdate, request: Request) -> dict[str, Any]:
        await authed(request)
        if not await reminders.update_medication(medication_id, payload.model_dump(exclude_unset=True)):
            raise HTTPException(status_code=404, detail="用药提醒不存在")
        medication = await reminders.medications.get(medication_id)
        return medication.to_storage()

    @app.delete("/api/v1/medications/{medication_id}")
    async def delete_medication(medication_id: str, request: Request, cascade_records: bool = False) -> dict[str, Any]:
        await authed(request)
        if not await reminders.delete_medication(medication_id, cascade_records=cascade_records):
            raise HTTPException(status_code=404, detail="用药提醒不存在")
        return {"ok": True}

    @app.delete("/api/v1/medications/{medication_id}/times")
    async def delete_medication_time(medication_id: str, time: str, time_slot: str, request: Request) -> dict[str, Any]:
        await authed(request)
        try:
            deleted = await reminders.delete_medication_time(medication_id, time, time_slot)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if not deleted:
            raise HTTPException(status_code=404, detail="用药提醒不存在")
        return {"ok": True}

    # --- 提醒与响应 ---

    @app.get("/api/v1/reminders/active")
    async def active_reminders(request: Request) -> dict[str, Any]:
        await authed(request)
        items = [fire.to_dict() for fire in reminders.get_active_reminders()]
        return {"items": items, "total": len(items)}

    @app.post("/api/v1/reminders/{medication_id}/confirm")
    async def confirm_reminder(medication_id: str, request: Request) -> dict[str, Any]:
        await authed(request)
        record = await reminders.confirm(medication_id)
        return record.to_storage()

    @app.post("/api/v1/reminders/{medication_id}/cancel")
    async def cancel_reminder(medication_id: str, request: Request) -> dict[str, Any]:
        await authed(request)
        record = await reminders.cancel(medication_id)
        return record.to_storage()

    @app.post("/api/v1/reminders/{medication_id}/snooze")
    async def snooze_reminder(medication_id: str, payload: SnoozeRequest, request: Request) -> dict[str, Any]:
        await authed(request)
        state = await reminders.snooze(medication_id, payload.minutes)
        if state is None:
            raise HTTPException(status_code=404, detail="用药提醒不存在")
        return state.to_storage()

    @app.post("/api/v1/scheduler/wake")
    async def wake_scheduler(request: Request) -> dict[str, Any]:
        await authed(request)
        reminders.wake()
        return {"ok": True}

    # --- 用药记录与统计 ---

    @app.get("/api/v1/records")
    async def list_records(
        request: Request,
        start_date: date | None = None,
        end_date: date | None = None,
        medication_id: str | None = None,
    ) -> dict[str, Any]:
        await authed(request)
        views = filter_records(
            await reminders.records.load_all(),
            await reminders.medications.load_all(),
            start_date=start_date,
            end_date=end_date,
            medication_id=medication_id,
        )
        return {"items": [v.to_dict() for v in views], "total": len(views)}

    @app.get("/api/v1/records/export")
    async def export_records(
        request: Request,
        start_date: date | None = None,
        end_date: date | None = None,
        medication_id: str | None = None,
    ) -> PlainTextResponse:
        await authed(request)
        views = filter_records(
            await reminders.records.load_all(),
            await reminders.medications.load_all(),
            start_date=start_date,
            end_date=end_date,
            medication_id=medication_id,
        )
        if not views:
            raise HTTPException(status_code=404, detail="没有可导出的记录")
        filename = f"medication_records_{date.today().isoformat()}.txt"
        return PlainTextResponse(
            export_records_text(views),
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.delete("/api/v1/records")
    async def clear_records(request: Request) -> dict[str, Any]:
        await authed(request)
        await reminders.records.clear_all()
        return {"ok": True}

    @app.get("/api/v1/adherence")
    async def get_adherence(request: Request, medication_id: str | None = None) -> dict[str, Any]:
        await authed(request)
        report = calculate_adherence(await reminders.records.load_all(), medication_id)
        return report.to_dict()

    @app.get("/api/v1/stats")
    async def get_stats(request: Request) -> dict[str, Any]:
        await authed(request)
        return summarize(
            await reminders.medications.load_all(),
            await reminders.records.load_all(),
            await reminders.delays.all_pending(),
        )

    # --- 设置、备份、导入导出 ---

    @app.get("/api/v1/settings")
    async def get_settings(request: Request) -> dict[str, Any]:
        await authed(request)
        return (await reminders.settings.load()).to_storage()

    @app.put("/api/v1/settings")
    async def save_settings(payload: dict[str, Any], request: Request) -> dict[str, Any]:
        await authed(request)
        return (await reminders.settings.save(payload)).to_storage()

    @app.get("/api/v1/backups")
    async def list_backups(request: Request) -> dict[str, Any]:
        await authed(request)
        items = await reminders.backups.list_backups()
        return {"items": items, "total": len(items)}

    @app.post("/api/v1/backups", status_code=201)
    async def create_backup(request: Request) -> dict[str, Any]:
        await authed(request)
        backup = await reminders.backups.create_backup()
        return {
            "backupDate": backup["backupDate"],
            "medicationsCount": len(backup["medications"]),
            "recordsCount": len(backup["records"]),
        }

    @app.post("/api/v1/backups/{backup_key}/restore")
    async def restore_backup(backup_key: str, request: Request) -> dict[str, Any]:
        await authed(request)
        if not await reminders.backups.restore_from_backup(backup_key):
            raise HTTPException(status_code=404, detail="备份不存在")
        return {"ok": True}

    @app.delete("/api/v1/backups/{backup_key}")
    async def delete_backup(backup_key: str, request: Request) -> dict[str, Any]:
        await authed(request)
        if not await reminders.backups.delete_backup(backup_key):
            raise HTTPException(status_code=404, detail="备份不存在")
        return {"ok": True}

    @app.get("/api/v1/export")
    async def export_data(request: Request) -> dict[str, Any]:
        await authed(request)
        return await reminders.backups.export_data()

    @app.post("/api/v1/import")
    async def import_data(payload: dict[str, Any], request: Request) -> dict[str, Any]:
        await authed(request)
        await reminders.backups.import_data(payload)
        return {"ok": True}

    @app.delete("/api/v1/data")
    async def clear_all_data(request: Request) -> dict[str, Any]:
        await authed(request)
        await reminders.backups.clear_all_data()
        reminders.active_reminders.clear()
        return {"ok": True}

    return app
