import json

import pytest

from errors import ValidationError
from storage.collection import DELAYS_KEY, MEDICATIONS_KEY, RECORDS_KEY, SETTINGS_KEY
from storage.db_config import close_db, init_db
from storage.delay import DelayStore
from storage.kv import SqliteKeyValueStore
from storage.medication import MedicationStore
from storage.record import RecordStore
from storage.settings import SettingsStore

ASPIRIN = {
    "name": "Aspirin",
    "times": [{"time": "08:00", "timeSlot": "morning"}, {"time": "20:00", "timeSlot": "evening"}],
    "frequency": "daily",
}


@pytest.mark.asyncio
async def test_add_assigns_identity(kv) -> None:
    store = MedicationStore(kv)
    medication = await store.add({**ASPIRIN, "id": "forged", "createdAt": "2000-01-01T00:00:00"})

    assert medication.id != "forged"
    assert medication.created_at != "2000-01-01T00:00:00"
    assert medication.enabled

    stored = json.loads(kv.data[MEDICATIONS_KEY])
    assert stored[0]["id"] == medication.id
    assert stored[0]["times"][0] == {"time": "08:00", "timeSlot": "morning"}
    assert "createdAt" in stored[0]


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"name": "  "},
    {"times": []},
    {"times": [{"time": "25:00", "timeSlot": "morning"}]},
    {"frequency": "hourly"},
    {"frequency": "custom"},
    {"frequency": "custom", "customInterval": 0},
])
async def test_add_rejects_invalid_medication(kv, overrides) -> None:
    store = MedicationStore(kv)
    with pytest.raises(ValidationError):
        await store.add({**ASPIRIN, **overrides})
    assert MEDICATIONS_KEY not in kv.data


@pytest.mark.asyncio
async def test_update_merges_fields(kv) -> None:
    store = MedicationStore(kv)
    medication = await store.add(ASPIRIN)

    assert await store.update(medication.id, {"name": "Ibuprofen", "createdAt": "2000-01-01T00:00:00"})
    updated = await store.get(medication.id)
    assert updated.name == "Ibuprofen"
    assert updated.created_at == medication.created_at
    assert updated.times == medication.times

    assert not await store.update("missing", {"name": "x"})
    with pytest.raises(ValidationError):
        await store.update(medication.id, {"times": []})
    assert (await store.get(medication.id)).name == "Ibuprofen"


@pytest.mark.asyncio
async def test_delete_time_removes_medication_with_last_entry(kv) -> None:
    store = MedicationStore(kv)
    medication = await store.add(ASPIRIN)

    assert await store.delete_time(medication.id, "8:00", "morning")
    assert [t.time for t in (await store.get(medication.id)).times] == ["20:00"]

    assert await store.delete_time(medication.id, "20:00", "evening")
    assert await store.get(medication.id) is None
    assert not await store.delete_time(medication.id, "20:00", "evening")


@pytest.mark.asyncio
async def test_by_time_slot(kv) -> None:
    store = MedicationStore(kv)
    await store.add(ASPIRIN)
    await store.add({**ASPIRIN, "name": "Vitamin C", "times": [{"time": "12:00", "timeSlot": "noon"}]})

    assert [m.name for m in await store.by_time_slot("noon")] == ["Vitamin C"]
    assert len(await store.by_time_slot("morning")) == 1


@pytest.mark.asyncio
async def test_load_drops_invalid_entries_and_persists(kv, make_medication) -> None:
    valid = make_medication().to_storage()
    kv.data[MEDICATIONS_KEY] = json.dumps([valid, {"name": "broken"}, "garbage"])

    medications = await MedicationStore(kv).load_all()

    assert [m.id for m in medications] == [valid["id"]]
    assert json.loads(kv.data[MEDICATIONS_KEY]) == [valid]


@pytest.mark.asyncio
async def test_corrupt_collections_read_as_empty(kv) -> None:
    kv.data[MEDICATIONS_KEY] = "{not json"
    kv.data[RECORDS_KEY] = json.dumps({"unexpected": "shape"})
    kv.data[DELAYS_KEY] = "[]"
    kv.data[SETTINGS_KEY] = "???"

    assert await MedicationStore(kv).load_all() == []
    assert await RecordStore(kv).load_all() == []
    assert await DelayStore(kv).load_all() == {}
    assert (await SettingsStore(kv).load()).reminder_snooze_time == 5


@pytest.mark.asyncio
async def test_delay_store_drops_invalid_entries(kv) -> None:
    kv.data[DELAYS_KEY] = json.dumps({
        "m1": {"originalTime": "2024-01-05T08:00:00", "delayTime": "2024-01-05T08:05:00", "delayMinutes": 5},
        "m2": {"originalTime": "later", "delayTime": "2024-01-05T08:05:00", "delayMinutes": 5},
    })

    delays = await DelayStore(kv).load_all()

    assert list(delays) == ["m1"]
    assert list(json.loads(kv.data[DELAYS_KEY])) == ["m1"]


@pytest.mark.asyncio
async def test_record_store_delete_and_clear(kv) -> None:
    store = RecordStore(kv)
    await store.append({"medicationId": "m1", "action": "taken"})
    await store.append({"medicationId": "m2", "action": "taken"})
    await store.append({"medicationId": "m1", "action": "cancelled"})

    assert await store.delete_for_medication("m1") == 2
    assert await store.delete_for_medication("m1") == 0
    assert [r.medication_id for r in await store.load_all()] == ["m2"]

    await store.clear_all()
    assert RECORDS_KEY not in kv.data


@pytest.mark.asyncio
async def test_settings_merge_and_validation(kv) -> None:
    store = SettingsStore(kv)
    assert (await store.load()).theme == "light"

    saved = await store.save({"theme": "dark", "reminderSnoozeTime": 10, "language": "zh-CN"})
    assert saved.theme == "dark"
    assert saved.reminder_snooze_time == 10

    stored = json.loads(kv.data[SETTINGS_KEY])
    assert stored["reminderSnoozeTime"] == 10
    assert stored["soundEnabled"] is True
    assert stored["language"] == "zh-CN"

    with pytest.raises(ValidationError):
        await store.save({"volume": 2})
    assert (await store.load()).volume == 0.8


@pytest.mark.asyncio
async def test_sqlite_store(tmp_path) -> None:
    conn = await init_db(str(tmp_path / "data" / "test.db"))
    try:
        kv = SqliteKeyValueStore(conn)
        await kv.set("backup_a", "1")
        await kv.set_many({"backupX": "2", "backup_b": "3"})
        await kv.set("backup_a", "4")

        assert await kv.get("backup_a") == "4"
        assert await kv.get("missing") is None
        assert await kv.keys("backup_") == ["backup_a", "backup_b"]

        await kv.remove("backup_a")
        assert await kv.get("backup_a") is None

        medication = await MedicationStore(kv).add(ASPIRIN)
        assert (await MedicationStore(kv).get(medication.id)).name == "Aspirin"
    finally:
        await close_db()
