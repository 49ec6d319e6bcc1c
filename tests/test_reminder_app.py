from datetime import datetime

import pytest

from core.reminder_app import MedicationReminderApp
from tracking.adherence import calculate_adherence

ASPIRIN = {"name": "Aspirin", "times": [{"time": "08:00", "timeSlot": "morning"}], "frequency": "daily"}
MORNING = datetime(2024, 1, 5, 8, 0)


@pytest.fixture
def app(kv) -> MedicationReminderApp:
    return MedicationReminderApp(kv, check_interval=3600)


@pytest.mark.asyncio
async def test_fire_and_confirm(app) -> None:
    medication = await app.add_medication(ASPIRIN)

    fires = await app.check_reminders(MORNING)
    assert len(fires) == 1
    assert [f.medication.id for f in app.get_active_reminders()] == [medication.id]

    record = await app.confirm(medication.id)
    assert record.action == "taken"
    assert record.delay_minutes is None
    assert app.get_active_reminders() == []

    report = calculate_adherence(await app.records.load_all())
    assert report.total_records == 1
    assert report.adherence_rate == 100.0


@pytest.mark.asyncio
async def test_snooze_then_confirm_delayed_reminder(app) -> None:
    medication = await app.add_medication(ASPIRIN)
    await app.check_reminders(MORNING)

    state = await app.snooze(medication.id, now=MORNING)
    assert state.delay_minutes == 5
    assert app.get_active_reminders() == []

    assert await app.check_reminders(datetime(2024, 1, 5, 8, 3)) == []
    fires = await app.check_reminders(datetime(2024, 1, 5, 8, 5))
    assert [f.delayed for f in fires] == [True]
    assert not await app.delays.is_pending(medication.id)

    record = await app.confirm(medication.id)
    assert record.delay_minutes == 5
    assert [r.action for r in await app.records.load_all()] == ["taken"]


@pytest.mark.asyncio
async def test_snooze_uses_configured_minutes(app) -> None:
    medication = await app.add_medication(ASPIRIN)
    await app.settings.save({"reminderSnoozeTime": 15})

    assert (await app.snooze(medication.id, now=MORNING)).delay_minutes == 15
    assert (await app.snooze(medication.id, 30, now=MORNING)).delay_minutes == 30


@pytest.mark.asyncio
async def test_cancel_clears_pending_delay(app) -> None:
    medication = await app.add_medication(ASPIRIN)
    await app.snooze(medication.id, now=MORNING)

    record = await app.cancel(medication.id)
    assert record.action == "cancelled"
    assert record.delay_minutes == 5
    assert not await app.delays.is_pending(medication.id)
    assert await app.check_reminders(datetime(2024, 1, 5, 8, 5)) == []


@pytest.mark.asyncio
async def test_snooze_unknown_medication(app) -> None:
    assert await app.snooze("missing") is None
    assert await app.delays.all_pending() == {}


@pytest.mark.asyncio
async def test_delete_medication_cleans_up(app) -> None:
    medication = await app.add_medication(ASPIRIN)
    other = await app.add_medication({**ASPIRIN, "name": "Vitamin C"})
    await app.check_reminders(MORNING)
    await app.confirm(medication.id)
    await app.confirm(other.id)
    await app.snooze(medication.id, now=MORNING)

    assert await app.delete_medication(medication.id, cascade_records=True)
    assert await app.medications.get(medication.id) is None
    assert not await app.delays.is_pending(medication.id)
    assert [r.medication_id for r in await app.records.load_all()] == [other.id]
    assert not await app.delete_medication(medication.id)


@pytest.mark.asyncio
async def test_delete_medication_keeps_records_by_default(app) -> None:
    medication = await app.add_medication(ASPIRIN)
    await app.confirm(medication.id)

    assert await app.delete_medication(medication.id)
    assert len(await app.records.load_all()) == 1


@pytest.mark.asyncio
async def test_delete_last_time_removes_medication(app) -> None:
    medication = await app.add_medication(ASPIRIN)
    await app.snooze(medication.id, now=MORNING)

    assert await app.delete_medication_time(medication.id, "08:00", "morning")
    assert await app.medications.get(medication.id) is None
    assert not await app.delays.is_pending(medication.id)


@pytest.mark.asyncio
async def test_disabled_medication_is_silent(app) -> None:
    medication = await app.add_medication(ASPIRIN)
    assert await app.update_medication(medication.id, {"enabled": False})
    assert await app.check_reminders(MORNING) == []
