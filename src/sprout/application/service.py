"""
SproutService: the handle callers hold.

Everything that used to be reachable through a process-wide plugin object
(store, settings, codec, persistence) hangs off an instance of this class,
so several vaults can be open side by side and tests build their own.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sprout.application import scheduler
from sprout.application.backup import BackupService
from sprout.application.codec import BlockCodec
from sprout.application.locator import replace_block, scan_blocks
from sprout.application.persistence import PersistenceGatekeeper, SaveReport
from sprout.application.reconciler import Reconciler, SyncResult
from sprout.application.store import CardStore
from sprout.application.utils.text import split_lines
from sprout.domain.constants import SAVE_MAX_ATTEMPTS
from sprout.domain.errors import UnknownCardError
from sprout.domain.interfaces import DocumentStorage, NoteRepository
from sprout.domain.migrations import migrate_settings
from sprout.domain.models import CHILD_TYPES
from sprout.domain.scheduling import CardState, Grade, GradeResult, Stage
from sprout.domain.settings import SproutSettings


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class StoreStatus:
    cards: int
    states: int
    due: int
    suspended: int
    quarantined: int
    reviews: int
    groups: int

    def as_dict(self) -> dict[str, int]:
        return dict(self.__dict__)


class SproutService:
    def __init__(
        self,
        notes: NoteRepository,
        storage: DocumentStorage,
        backups: BackupService | None = None,
        clock: Callable[[], int] = now_ms,
        save_attempts: int = SAVE_MAX_ATTEMPTS,
    ):
        self.notes = notes
        self.storage = storage
        self.backups = backups
        self.clock = clock
        self.logger = logging.getLogger(__name__)

        self.settings = SproutSettings()
        self.store = CardStore()
        self.gatekeeper = PersistenceGatekeeper(
            storage, self.store, lambda: self.settings, backups, save_attempts
        )
        self.reconciler = Reconciler(notes, self.store, self.settings.indexing)
        self._sync_lock = asyncio.Lock()

    # ---------- Lifecycle ----------

    async def load(self) -> None:
        """Read the data file once and apply migrations."""
        document = await self.storage.load()
        if document is None:
            self.logger.info("No data file found; starting with an empty store")
            document = {}
        elif "store" not in document:
            self.logger.warning("Data file has no store section; starting with an empty store")

        self.settings = SproutSettings.model_validate(migrate_settings(document.get("settings")))
        self._use_store(CardStore.load(document.get("store")))
        self.logger.debug(
            f"Loaded {len(self.store.data.cards)} cards, {len(self.store.data.states)} states"
        )

    def _use_store(self, store: CardStore) -> None:
        self.store = store
        self.gatekeeper.store = store
        self.reconciler = Reconciler(self.notes, store, self.settings.indexing)

    @property
    def codec(self) -> BlockCodec:
        return self.reconciler.codec

    async def save(self) -> SaveReport:
        return await self.gatekeeper.save()

    # ---------- Sync ----------

    async def sync_file(self, path: str) -> SyncResult:
        async with self._sync_lock:
            result = await self.reconciler.reconcile_file(path, self.clock())
            await self.save()
            return result

    async def sync_all(self, allow_mass_delete: bool = False) -> SyncResult:
        """
        Whole-vault sync. A routine backup is taken first (once a day).
        ``allow_mass_delete`` lets the save through even if nearly every card vanished.
        """
        async with self._sync_lock:
            if self.backups is not None:
                try:
                    document = await self.storage.load()
                    await asyncio.to_thread(self.backups.ensure_routine, document)
                except Exception as e:
                    self.logger.warning(f"Routine backup skipped: {e}")
            result = await self.reconciler.reconcile_all(self.clock())
            if allow_mass_delete:
                self.store.authorize_bulk_delete()
            await self.save()
            return result

    async def rewrite_note(self, path: str) -> int:
        """Rewrite every valid block of a note in canonical form. Returns blocks changed."""
        async with self._sync_lock:
            text = await self.notes.read(path)
            lines, _, _ = split_lines(text)
            delimiter = self.settings.indexing.delimiter
            rewrites = []
            for block in scan_blocks(lines, delimiter, self.settings.indexing.ignore_in_code_fences):
                if block.anchor_id is None:
                    continue
                card = self.codec.parse(block.text, path)
                if card is None:
                    continue
                canonical = self.codec.serialize(card)
                if canonical != block.lines:
                    rewrites.append((card.id, canonical))

            for card_id, canonical in rewrites:
                text = replace_block(text, card_id, canonical, delimiter)
            if rewrites:
                await self.notes.write(path, text)
                self.logger.info(f"Rewrote {len(rewrites)} block(s) in {path}")
            return len(rewrites)

    # ---------- Scheduling ----------

    def _require_schedulable(self, card_id: str) -> None:
        card = self.store.get_card(card_id)
        if card is None or self.store.is_quarantined(card_id):
            raise UnknownCardError(card_id)

    async def grade(self, card_id: str, grade: Grade, now: int | None = None) -> GradeResult:
        now = self.clock() if now is None else now
        self._require_schedulable(card_id)
        prev = self.store.ensure_state(card_id, now)
        result = scheduler.grade_card(prev, grade, self.settings.scheduling, now)
        if result.next_state is not prev:
            self.store.record_review(prev, grade, result, now)
        await self.save()
        return result

    async def suspend(self, card_ids: list[str]) -> list[CardState]:
        now = self.clock()
        states = [self.store.suspend(cid, now) for cid in card_ids]
        await self.save()
        return states

    async def unsuspend(self, card_ids: list[str]) -> list[CardState]:
        now = self.clock()
        states = [self.store.unsuspend(cid, now) for cid in card_ids]
        await self.save()
        return states

    async def reset_scheduling(self, card_ids: list[str] | None = None) -> list[CardState]:
        """Reset the given cards (all scheduled cards when None) to new."""
        ids = list(self.store.data.states) if card_ids is None else card_ids
        states = self.store.reset_scheduling(ids, self.clock())
        await self.save()
        return states

    async def bury(self, card_id: str) -> CardState:
        now = self.clock()
        self._require_schedulable(card_id)
        state = scheduler.bury_card(self.store.ensure_state(card_id, now), now)
        self.store.upsert_state(state)
        await self.save()
        return state

    # ---------- Backups ----------

    async def create_backup(self, reason: str = "manual") -> Path | None:
        if self.backups is None:
            return None
        document = await self.storage.load()
        if not document:
            return None
        return await asyncio.to_thread(self.backups.create, document, reason)

    async def restore_backup(self, path: Path) -> SaveReport:
        """Replace the store with a backup's. The guard is told this is deliberate."""
        if self.backups is None:
            raise FileNotFoundError("No backup directory configured")
        document = await asyncio.to_thread(self.backups.restore, path)
        async with self._sync_lock:
            current = await self.storage.load()
            if current and current.get("store"):
                await asyncio.to_thread(self.backups.create_safely, current, "pre-restore")
            self._use_store(CardStore.load(document["store"]))
            self.store.authorize_bulk_delete()
            return await self.save()

    # ---------- Queries ----------

    def status(self) -> StoreStatus:
        now = self.clock()
        data = self.store.data
        return StoreStatus(
            cards=sum(1 for c in self.store.get_all_cards() if c.type not in CHILD_TYPES),
            states=len(data.states),
            due=len(self.store.due_cards(now)),
            suspended=sum(1 for s in data.states.values() if s.stage is Stage.SUSPENDED),
            quarantined=len(data.quarantine),
            reviews=len(data.review_log),
            groups=len(data.tags),
        )

    def due(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Due cards with their content, earliest first."""
        rows = []
        for state in self.store.due_cards(self.clock())[:limit]:
            card = self.store.get_card(state.id)
            rows.append(
                {
                    "id": state.id,
                    "type": card.type if card else None,
                    "stage": state.stage.value,
                    "due": state.due,
                }
            )
        return rows
