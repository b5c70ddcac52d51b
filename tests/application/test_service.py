"""End-to-end tests for SproutService over in-memory notes and storage."""

import pytest

from fakes import NOW, MemoryNotes, MemoryStorage
from sprout.application.backup import BackupService
from sprout.application.service import SproutService
from sprout.domain.constants import MS_PER_DAY, MS_PER_MINUTE
from sprout.domain.errors import PersistSafetyViolation, UnknownCardError
from sprout.domain.scheduling import Grade, Stage


def many_cards(n: int) -> str:
    return "\n".join(f"^sprout-c{i}\nQ|q{i}|\nA|a{i}|\n" for i in range(n))


# --- Load ---


@pytest.mark.asyncio
async def test_load_migrates_legacy_document():
    storage = MemoryStorage(
        {
            "settings": {"scheduler": {"learningStepsMinutes": [1, 10], "requestRetention": 0.95}},
            "store": {
                "version": 10,
                "cards": {
                    "abc": {
                        "id": "abc",
                        "type": "basic",
                        "q": "Q?",
                        "a": "A",
                        "sourceNotePath": "n.md",
                        "createdAt": 1,
                    }
                },
                "states": {"abc": {"id": "abc", "stage": "review", "due": 5, "scheduledDays": 3}},
            },
        }
    )
    service = SproutService(MemoryNotes(), storage)
    await service.load()

    assert service.store.get_card("abc").question == "Q?"
    assert service.store.get_state("abc").scheduled_days == 3
    assert service.settings.scheduling.learning_steps_minutes == [1.0, 10.0]
    assert service.settings.scheduling.request_retention == 0.95


@pytest.mark.asyncio
async def test_load_without_file(service):
    await service.load()
    assert service.store.data.cards == {}


# --- Sync + grade ---


@pytest.mark.asyncio
async def test_sync_then_grade_good(service, notes, storage, clock):
    notes.notes["math.md"] = "^sprout-abc123\nQ|What is 2+2?\nA|4\n"
    await service.load()

    result = await service.sync_all()
    assert result.added_count == 1
    assert storage.document["store"]["cards"]["abc123"]["question"] == "What is 2+2?"

    graded = await service.grade("abc123", Grade.GOOD)

    assert graded.next_state.stage is Stage.LEARNING
    assert graded.next_state.learning_step_index == 1
    assert graded.next_due == NOW + 1440 * MS_PER_MINUTE
    saved = storage.document["store"]
    assert saved["states"]["abc123"]["stage"] == "learning"
    assert len(saved["review_log"]) == 1
    assert saved["analytics"]["total_reviews"] == 1


@pytest.mark.asyncio
async def test_grade_with_single_step_ladder_graduates(service, notes):
    notes.notes["math.md"] = "^sprout-abc123\nQ|What is 2+2?\nA|4\n"
    await service.load()
    service.settings.scheduling.learning_steps_minutes = [10]
    await service.sync_all()

    graded = await service.grade("abc123", Grade.GOOD)

    assert graded.next_state.stage is Stage.REVIEW
    assert graded.next_due == NOW + 2 * MS_PER_DAY


@pytest.mark.asyncio
async def test_grade_unknown_card(service):
    await service.load()
    with pytest.raises(UnknownCardError):
        await service.grade("ghost", Grade.GOOD)


@pytest.mark.asyncio
async def test_grade_quarantined_card(service, notes):
    notes.notes["n.md"] = "^sprout-bad\nQ|only a question|\n"
    await service.load()
    await service.sync_all()
    with pytest.raises(UnknownCardError):
        await service.grade("bad", Grade.GOOD)


@pytest.mark.asyncio
async def test_suspended_card_is_not_graded(service, notes, storage):
    notes.notes["n.md"] = "^sprout-s\nQ|q|\nA|a|\n"
    await service.load()
    await service.sync_all()
    [suspended] = await service.suspend(["s"])

    result = await service.grade("s", Grade.EASY)

    assert result.next_state == suspended
    assert storage.document["store"]["review_log"] == []


@pytest.mark.asyncio
async def test_suspend_unsuspend_round_trip(service, notes, clock):
    notes.notes["n.md"] = "^sprout-s\nQ|q|\nA|a|\n"
    await service.load()
    await service.sync_all()
    graded = (await service.grade("s", Grade.EASY)).next_state

    await service.suspend(["s"])
    assert service.due() == []
    clock.now += 30 * MS_PER_DAY
    [restored] = await service.unsuspend(["s"])

    assert restored == graded


@pytest.mark.asyncio
async def test_reset_all(service, notes):
    notes.notes["n.md"] = many_cards(3)
    await service.load()
    await service.sync_all()
    for i in range(3):
        await service.grade(f"c{i}", Grade.EASY)

    states = await service.reset_scheduling()

    assert len(states) == 3
    assert all(s.stage is Stage.NEW for s in states)
    assert len(service.store.data.review_log) == 3


# --- Mass delete guard ---


@pytest.mark.asyncio
async def test_mass_delete_refused_then_allowed(service, notes, storage):
    notes.notes["n.md"] = many_cards(20)
    await service.load()
    await service.sync_all()
    notes.notes["n.md"] = "everything deleted\n"

    with pytest.raises(PersistSafetyViolation):
        await service.sync_all()
    assert len(storage.document["store"]["cards"]) == 20

    await service.sync_all(allow_mass_delete=True)
    assert storage.document["store"]["cards"] == {}


# --- Rewrite / backups / queries ---


@pytest.mark.asyncio
async def test_rewrite_note_canonicalises(service, notes):
    notes.notes["n.md"] = "Intro\n\n^sprout-r\nA |  4\nQ|2+2\n\nOutro\n"
    await service.load()

    changed = await service.rewrite_note("n.md")

    assert changed == 1
    assert notes.notes["n.md"] == "Intro\n\n^sprout-r\nQ|2+2|\nA|4|\n\nOutro\n"
    assert await service.rewrite_note("n.md") == 0


@pytest.mark.asyncio
async def test_rewrite_note_leaves_following_table_untouched(service, notes):
    tail = "\nSome unrelated prose.\n\n| col | col |\n| --- | --- |\n"
    notes.notes["n.md"] = "^sprout-abc123\nQ|What is 2+2?\nA|4\n" + tail
    await service.load()

    assert await service.rewrite_note("n.md") == 1

    assert notes.notes["n.md"] == "^sprout-abc123\nQ|What is 2+2?|\nA|4|\n" + tail


@pytest.mark.asyncio
async def test_restore_backup(notes, storage, clock, tmp_path):
    backups = BackupService(tmp_path / "backups")
    service = SproutService(notes, storage, backups, clock=clock)
    notes.notes["n.md"] = many_cards(12)
    await service.load()
    await service.sync_all()
    path = await service.create_backup("manual")

    notes.notes["n.md"] = ""
    await service.sync_all(allow_mass_delete=True)
    assert service.store.data.cards == {}

    await service.restore_backup(path)

    assert len(storage.document["store"]["cards"]) == 12
    assert any("pre-restore" in p.name for p in backups.list())


@pytest.mark.asyncio
async def test_status_and_due(service, notes):
    notes.notes["n.md"] = many_cards(2) + "\n^sprout-bad\nQ|q|\n"
    await service.load()
    await service.sync_all()
    await service.grade("c0", Grade.AGAIN)

    st = service.status()
    assert st.cards == 2
    assert st.quarantined == 1
    assert st.reviews == 1
    assert st.due == 0

    rows = service.due()
    assert rows == []
    await service.bury("c1")
    assert service.store.get_state("c1").due > NOW
