"""
Reconciler: merge the cards found in notes into the card store.

A pass runs in four phases so that a failing note never leaves the store
half-updated:

1. read every note in scope (any read failure aborts the pass);
2. give every card block a unique anchor in memory;
3. write back notes whose anchors changed (any write failure aborts the pass);
4. parse and classify every block, then delete ids in scope that were not seen.
"""

import logging
import posixpath
from dataclasses import dataclass, field

from sprout.application.codec import BlockCodec
from sprout.application.id_service import assign_anchors
from sprout.application.locator import scan_blocks
from sprout.application.store import CardStore
from sprout.application.utils.text import is_indexing_disabled, parse_frontmatter, split_lines
from sprout.domain.interfaces import NoteRepository
from sprout.domain.models import (
    CHILD_TYPES,
    Card,
    ClozeCard,
    ClozeChildCard,
    OcclusionCard,
    OcclusionChildCard,
    cloze_child_id,
    io_child_id,
)
from sprout.domain.settings import IndexingSettings


@dataclass
class SyncResult:
    added_count: int = 0
    updated_count: int = 0
    removed_count: int = 0
    quarantined_count: int = 0
    quarantined_ids: list[str] = field(default_factory=list)
    tags_deleted: int = 0
    ids_inserted: int = 0
    anchors_removed: int = 0
    notes_scanned: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added_count or self.updated_count or self.removed_count or self.ids_inserted)


def _plural(n: int, one: str, many: str) -> str:
    return f"{n} {one if n == 1 else many}"


def format_sync_notice(prefix: str, result: SyncResult) -> str:
    """e.g. ``"Sync complete: 3 new cards; 1 updated card; 2 cards deleted"``."""
    parts = []
    if result.added_count:
        parts.append(_plural(result.added_count, "new card", "new cards"))
    if result.updated_count:
        parts.append(_plural(result.updated_count, "updated card", "updated cards"))
    if result.removed_count:
        parts.append(_plural(result.removed_count, "card deleted", "cards deleted"))
    if result.ids_inserted:
        parts.append(_plural(result.ids_inserted, "ID inserted", "IDs inserted"))
    if result.anchors_removed:
        parts.append(_plural(result.anchors_removed, "orphan anchor removed", "orphan anchors removed"))
    if result.tags_deleted:
        parts.append(_plural(result.tags_deleted, "empty group removed", "empty groups removed"))
    if result.quarantined_count:
        parts.append(_plural(result.quarantined_count, "card quarantined", "cards quarantined"))
    if not parts:
        return f"{prefix}: no changes."
    return f"{prefix}: " + "; ".join(parts)


class Reconciler:
    def __init__(
        self,
        notes: NoteRepository,
        store: CardStore,
        indexing: IndexingSettings | None = None,
    ):
        self.notes = notes
        self.store = store
        self.indexing = indexing or IndexingSettings()
        self.codec = BlockCodec(self.indexing.delimiter)
        self.logger = logging.getLogger(__name__)

    async def reconcile_file(self, path: str, now: int) -> SyncResult:
        """Sync one note. Only ids whose source is this note can be removed."""
        path = posixpath.normpath(path.replace("\\", "/")).lstrip("/")
        texts = {path: await self.notes.read(path)} if await self.notes.exists(path) else {}
        scope = {c.id for c in self.store.get_cards_by_note(path) if c.type not in CHILD_TYPES}
        scope |= {q.id for q in self.store.get_quarantine().values() if q.note_path == path}
        return await self._run(texts, scope, now)

    async def reconcile_all(self, now: int) -> SyncResult:
        """Sync every note in the vault; the only pass that sees cross-file deletions."""
        paths = await self.notes.list_notes()
        texts = {}
        for path in paths:
            texts[path] = await self.notes.read(path)
        scope = {cid for cid, c in self.store.data.cards.items() if c.type not in CHILD_TYPES}
        scope |= set(self.store.get_quarantine())
        result = await self._run(texts, scope, now)
        self._sweep_orphan_children()
        return result

    async def _run(self, texts: dict[str, str], scope: set[str], now: int) -> SyncResult:
        result = SyncResult()
        delimiter = self.indexing.delimiter
        fences = self.indexing.ignore_in_code_fences

        # Phase 1: drop opted-out notes.
        indexed: dict[str, str] = {}
        for path, text in texts.items():
            meta, _ = parse_frontmatter(text)
            if is_indexing_disabled(meta):
                self.logger.debug(f"[sync] Skipped {path}: indexing disabled in frontmatter")
                continue
            indexed[path] = text
        result.notes_scanned = len(indexed)

        # Phase 2: anchors, in memory.
        seen_anchors: set[str] = set()
        used = self.store.known_ids() | set(self.store.data.states)
        pending_writes: dict[str, str] = {}
        for path, text in indexed.items():
            anchors = assign_anchors(text, seen_anchors, used, delimiter, fences, note_path=path)
            if anchors.changed:
                pending_writes[path] = anchors.text
                indexed[path] = anchors.text
            result.ids_inserted += len(anchors.inserted) + len(anchors.reassigned)
            result.anchors_removed += anchors.removed

        # Phase 3: write back.
        for path, text in pending_writes.items():
            await self.notes.write(path, text)
            self.logger.info(f"[sync] Updated anchors in {path}")

        # Phase 4: classify.
        seen: set[str] = set()
        for path, text in indexed.items():
            lines, _, _ = split_lines(text)
            for block in scan_blocks(lines, delimiter, fences):
                if block.anchor_id is None or block.is_orphan_anchor:
                    continue
                await self._apply_block(path, block.anchor_id, block.text, now, result)
                seen.add(block.anchor_id)

        for card_id in sorted(scope - seen):
            had_record = card_id in self.store.data.cards
            self.store.remove_card(card_id)
            if had_record:
                result.removed_count += 1
                self.logger.debug(f"[sync] Removed {card_id}")

        result.tags_deleted = self.store.rebuild_tag_registry()
        if result.quarantined_count:
            self.logger.warning(
                f"[sync] {result.quarantined_count} card(s) quarantined: {', '.join(result.quarantined_ids)}"
            )
        return result

    async def _apply_block(self, path: str, card_id: str, raw: str, now: int, result: SyncResult) -> None:
        outcome = self.codec.diagnose(raw, path)
        reason = outcome.reason
        card = outcome.card

        if card is not None and isinstance(card, OcclusionCard):
            image_path = await self._resolve_attachment(card.image_ref, path)
            if image_path is None:
                card, reason = None, f"Image file not found: {card.image_ref}"

        if card is None:
            if self.store.quarantine(card_id, path, raw, reason, now):
                self.logger.debug(f"[sync] Quarantined {card_id} in {path}: {reason}")
            result.quarantined_count += 1
            result.quarantined_ids.append(card_id)
            return

        self.store.clear_quarantine(card_id)
        existing = self.store.get_card(card_id)
        if existing is None:
            result.added_count += 1
            self.store.upsert_card(card)
        elif existing != card:
            result.updated_count += 1
            self.store.upsert_card(card)
        self._sync_children(card)

    async def _resolve_attachment(self, ref: str, note_path: str) -> str | None:
        candidates = [posixpath.normpath(posixpath.join(posixpath.dirname(note_path), ref)), ref.lstrip("/")]
        for candidate in candidates:
            if await self.notes.exists(candidate):
                return candidate
        return None

    def _desired_children(self, card: Card) -> list[Card]:
        common = {
            "source_note_path": card.source_note_path,
            "title": card.title,
            "info": card.info,
            "groups": card.groups,
        }
        if isinstance(card, ClozeCard):
            return [
                ClozeChildCard(
                    id=cloze_child_id(card.id, n), parent_id=card.id, cloze_index=n, text=card.text, **common
                )
                for n in card.cloze_indices
            ]
        if isinstance(card, OcclusionCard):
            return [
                OcclusionChildCard(
                    id=io_child_id(card.id, key),
                    parent_id=card.id,
                    group_key=key,
                    rect_ids=rect_ids,
                    image_ref=card.image_ref,
                    mask_mode=card.mask_mode,
                    **common,
                )
                for key, rect_ids in card.rect_groups().items()
            ]
        return []

    def _sync_children(self, card: Card) -> None:
        desired = {c.id: c for c in self._desired_children(card)}
        for child in self.store.get_children(card.id):
            if child.id not in desired:
                self.store.remove_card(child.id)
        for child_id, child in desired.items():
            if self.store.get_card(child_id) != child:
                self.store.upsert_card(child)
        self.store.prune_child_states(card.id, set(desired))

    def _sweep_orphan_children(self) -> None:
        for card in list(self.store.data.cards.values()):
            parent = getattr(card, "parent_id", None)
            if card.type in CHILD_TYPES and parent not in self.store.data.cards:
                self.logger.debug(f"[sync] Removing orphaned child {card.id}")
                self.store.remove_card(card.id)
