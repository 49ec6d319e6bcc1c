import json

import pytest

from errors import ValidationError
from storage.backup import DATA_VERSION, BackupManager
from storage.collection import BACKUP_INDEX_KEY, MEDICATIONS_KEY
from storage.medication import MedicationStore
from storage.record import RecordStore

ASPIRIN = {"name": "Aspirin", "times": [{"time": "08:00", "timeSlot": "morning"}], "frequency": "daily"}


@pytest.fixture
def manager(kv) -> BackupManager:
    return BackupManager(kv)


@pytest.mark.asyncio
async def test_create_and_list_backups(kv, manager) -> None:
    await MedicationStore(kv).add(ASPIRIN)
    await RecordStore(kv).append({"medicationId": "m1", "action": "taken"})

    backup = await manager.create_backup()
    assert backup["version"] == DATA_VERSION
    assert "backupDate" in backup

    backups = await manager.list_backups()
    assert len(backups) == 1
    assert backups[0]["key"].startswith("backup_")
    assert backups[0]["medicationsCount"] == 1
    assert backups[0]["recordsCount"] == 1


@pytest.mark.asyncio
async def test_restore_from_backup(kv, manager) -> None:
    medications = MedicationStore(kv)
    original = await medications.add(ASPIRIN)
    await manager.create_backup()
    key = (await manager.list_backups())[0]["key"]

    await medications.delete(original.id)
    await medications.add({**ASPIRIN, "name": "Ibuprofen"})

    assert await manager.restore_from_backup(key)
    assert [m.id for m in await medications.load_all()] == [original.id]
    assert not await manager.restore_from_backup("backup_missing")


@pytest.mark.asyncio
async def test_export_import_round_trip(kv, manager) -> None:
    await MedicationStore(kv).add(ASPIRIN)
    exported = await manager.export_data()
    assert exported["version"] == DATA_VERSION
    assert "exportedAt" in exported

    await manager.clear_all_data()
    assert await MedicationStore(kv).load_all() == []

    await manager.import_data(exported)
    assert [m.name for m in await MedicationStore(kv).load_all()] == ["Aspirin"]
    # 导入后自动备份
    assert len(await manager.list_backups()) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("mutate", [
    lambda d: d.pop("version"),
    lambda d: d.pop("records"),
    lambda d: d.update(delays=[]),
    lambda d: d["medications"].append({"name": "no times"}),
    lambda d: d["records"].append({"medicationId": "m1", "action": "delayed", "timestamp": "2024-01-01T00:00:00"}),
])
async def test_import_is_all_or_nothing(kv, manager, mutate) -> None:
    await MedicationStore(kv).add(ASPIRIN)
    before = kv.data[MEDICATIONS_KEY]

    data = await manager.export_data()
    data["medications"] = []
    mutate(data)

    with pytest.raises(ValidationError):
        await manager.import_data(data)
    assert kv.data[MEDICATIONS_KEY] == before
    assert await manager.list_backups() == []


@pytest.mark.asyncio
async def test_cleanup_keeps_most_recent(manager) -> None:
    for _ in range(7):
        await manager.create_backup()
    keys = [b["key"] for b in await manager.list_backups()]

    assert await manager.cleanup_old_backups(keep_count=5) == 2
    remaining = [b["key"] for b in await manager.list_backups()]
    assert remaining == keys[2:]
    assert await manager.cleanup_old_backups(keep_count=5) == 0


@pytest.mark.asyncio
async def test_delete_backup(kv, manager) -> None:
    await manager.create_backup()
    key = (await manager.list_backups())[0]["key"]

    assert await manager.delete_backup(key)
    assert key not in kv.data
    assert json.loads(kv.data[BACKUP_INDEX_KEY]) == []
    assert not await manager.delete_backup(key)


@pytest.mark.asyncio
async def test_clear_all_data(kv, manager) -> None:
    await MedicationStore(kv).add(ASPIRIN)
    await manager.create_backup()

    await manager.clear_all_data()
    assert kv.data == {}


@pytest.mark.asyncio
async def test_malformed_index_dates_are_ignored(kv, manager) -> None:
    for _ in range(3):
        await manager.create_backup()
    index = json.loads(kv.data[BACKUP_INDEX_KEY])
    kv.data["backup_legacy"] = json.dumps({"medications": [], "records": []})
    index.insert(0, {"key": "backup_legacy", "date": "last tuesday"})
    index.append({"key": "backup_undated"})
    kv.data[BACKUP_INDEX_KEY] = json.dumps(index)

    backups = await manager.list_backups()
    assert len(backups) == 3
    assert "backup_legacy" not in [b["key"] for b in backups]

    assert await manager.cleanup_old_backups(keep_count=2) == 1
    assert len(await manager.list_backups()) == 2
