"""
Persistence gatekeeper: the only code path that writes the data file.

A save is read-merge-write. The lock serializes overlapping saves; the mtime
check catches writers outside this process and retries from a fresh read.
After ``max_attempts`` lost races one last write goes through unconditionally
(still subject to the safety guard).
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sprout.application.backup import BackupService
from sprout.application.store import CardStore
from sprout.domain.constants import SAVE_MAX_ATTEMPTS
from sprout.domain.errors import ConcurrentModificationError, PersistSafetyViolation
from sprout.domain.interfaces import DocumentStorage
from sprout.domain.models import StoreData
from sprout.domain.settings import SproutSettings

logger = logging.getLogger(__name__)


@dataclass
class SaveReport:
    attempts: int
    last_resort: bool = False
    backup_path: Path | None = None
    reason: str = "ok"


class PersistenceGatekeeper:
    def __init__(
        self,
        storage: DocumentStorage,
        store: CardStore,
        settings_provider: Callable[[], SproutSettings],
        backups: BackupService | None = None,
        max_attempts: int = SAVE_MAX_ATTEMPTS,
    ):
        self.storage = storage
        self.store = store
        self.settings_provider = settings_provider
        self.backups = backups
        self.max_attempts = max(1, max_attempts)
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def save(self) -> SaveReport:
        """
        Persist the current store and settings.

        Raises:
            PersistSafetyViolation: The store looks like data loss; nothing was written.
        """
        async with self._lock:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    return await self._attempt(attempt, check_mtime=True)
                except ConcurrentModificationError as e:
                    logger.warning(f"Save attempt {attempt}/{self.max_attempts} lost a race: {e}")
            logger.warning("Data file kept changing; writing unconditionally")
            return await self._attempt(self.max_attempts + 1, check_mtime=False)

    async def _attempt(self, attempt: int, check_mtime: bool) -> SaveReport:
        before = await self.storage.mtime()
        document = await self.storage.load()
        if document is None:
            logger.info("No data file yet; it will be created")
            document = {}

        on_disk = self._disk_store(document)
        candidate = self.store.snapshot()
        verdict = self.store.assess_persist_safety(candidate, on_disk)
        if not verdict.allow:
            logger.error(f"Persist safety refused the write: {verdict.reason}")
            raise PersistSafetyViolation(verdict.reason)

        backup_path = None
        if verdict.backup_first and self.backups is not None and document:
            logger.warning(f"Backing up before a risky write: {verdict.reason}")
            backup_path = await asyncio.to_thread(self.backups.create_safely, document, "pre-save")

        if check_mtime:
            after = await self.storage.mtime()
            if after != before:
                raise ConcurrentModificationError(before, after)

        merged = dict(document)
        merged["settings"] = self.settings_provider().model_dump(mode="json")
        merged["store"] = candidate.model_dump(mode="json")
        await self.storage.save(merged)
        self.store.mark_persisted(candidate)

        logger.debug(
            f"Saved {len(candidate.cards)} cards, {len(candidate.states)} states (attempt {attempt})"
        )
        return SaveReport(
            attempts=attempt,
            last_resort=not check_mtime,
            backup_path=backup_path,
            reason=verdict.reason,
        )

    def _disk_store(self, document: dict[str, Any]) -> StoreData | None:
        """
        The store currently on disk. None when the file has no store section,
        so the guard falls back to the last snapshot this process knew.
        """
        raw = document.get("store")
        if not raw:
            if document:
                logger.warning("Data file has no store section; treating it as empty")
            return None
        return CardStore.load(raw).data
