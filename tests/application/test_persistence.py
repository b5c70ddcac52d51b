import asyncio

import pytest

from fakes import NOW, MemoryStorage
from sprout.application.backup import BackupService
from sprout.application.persistence import PersistenceGatekeeper
from sprout.application.store import CardStore
from sprout.domain.errors import PersistSafetyViolation
from sprout.domain.models import BasicCard, StoreData
from sprout.domain.scheduling import CardState
from sprout.domain.settings import SproutSettings


def filled(n: int) -> StoreData:
    data = StoreData()
    for i in range(n):
        data.cards[f"c{i}"] = BasicCard(id=f"c{i}", question="q", answer="a")
        data.states[f"c{i}"] = CardState.new(f"c{i}", NOW)
    return data


def gatekeeper(storage, store, backups=None, attempts=3) -> PersistenceGatekeeper:
    return PersistenceGatekeeper(storage, store, SproutSettings, backups, attempts)


@pytest.mark.asyncio
async def test_first_save_creates_document():
    storage = MemoryStorage()
    store = CardStore(filled(2))

    report = await gatekeeper(storage, store).save()

    assert report.attempts == 1
    assert not report.last_resort
    assert set(storage.document) == {"settings", "store"}
    assert set(storage.document["store"]["cards"]) == {"c0", "c1"}
    assert storage.document["settings"]["indexing"]["delimiter"] == "|"


@pytest.mark.asyncio
async def test_unknown_document_keys_are_preserved():
    storage = MemoryStorage({"plugin_extra": {"keep": True}})
    await gatekeeper(storage, CardStore()).save()
    assert storage.document["plugin_extra"] == {"keep": True}


@pytest.mark.asyncio
async def test_retries_when_file_changes_during_save():
    storage = MemoryStorage({})
    calls = []

    def external_writer():
        calls.append(1)
        if len(calls) == 1:
            storage.tick()

    storage.on_load = external_writer

    report = await gatekeeper(storage, CardStore(filled(1))).save()

    assert report.attempts == 2
    assert storage.saves == 1


@pytest.mark.asyncio
async def test_last_resort_write_after_repeated_races():
    storage = MemoryStorage({})
    storage.on_load = storage.tick

    report = await gatekeeper(storage, CardStore(filled(1)), attempts=3).save()

    assert report.last_resort
    assert report.attempts == 4
    assert storage.saves == 1


@pytest.mark.asyncio
async def test_refused_write_leaves_file_untouched():
    on_disk = CardStore(filled(250)).to_document()
    storage = MemoryStorage({"store": on_disk})

    with pytest.raises(PersistSafetyViolation):
        await gatekeeper(storage, CardStore()).save()

    assert storage.saves == 0
    assert storage.document["store"] == on_disk


@pytest.mark.asyncio
async def test_authorized_bulk_delete_is_written_once():
    storage = MemoryStorage({"store": CardStore(filled(250)).to_document()})
    store = CardStore()
    store.authorize_bulk_delete()
    keeper = gatekeeper(storage, store)

    await keeper.save()

    assert storage.document["store"]["cards"] == {}
    assert not store.bulk_delete_authorized


@pytest.mark.asyncio
async def test_regression_backs_up_first(tmp_path):
    storage = MemoryStorage({"store": CardStore(filled(20)).to_document()})
    backups = BackupService(tmp_path / "backups")

    report = await gatekeeper(storage, CardStore(filled(8)), backups).save()

    assert report.backup_path is not None
    assert report.backup_path.exists()
    assert "pre-save" in report.backup_path.name
    assert len(storage.document["store"]["cards"]) == 8


@pytest.mark.asyncio
async def test_concurrent_saves_are_serialized():
    storage = MemoryStorage()
    keeper = gatekeeper(storage, CardStore(filled(3)))

    reports = await asyncio.gather(keeper.save(), keeper.save(), keeper.save())

    assert [r.attempts for r in reports] == [1, 1, 1]
    assert storage.saves == 3
    assert not keeper.busy
