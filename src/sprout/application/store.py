"""
Card store: the canonical in-memory maps plus the persist-safety guard.

The persisted file is the only durable copy of review history. It cannot be
rebuilt from notes, so ``assess_persist_safety`` is consulted before every
write and refuses snapshots that look like accidental data loss.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from sprout.application import scheduler
from sprout.application.groups import count_group_references
from sprout.domain.constants import (
    SAFETY_MIN_DISK_TOTAL,
    SAFETY_NEAR_EMPTY_RATIO,
    SAFETY_REGRESSION_RATIO,
)
from sprout.domain.errors import UnknownCardError
from sprout.domain.migrations import migrate_store
from sprout.domain.models import (
    CARD_ADAPTER,
    CHILD_TYPES,
    Card,
    OcclusionCard,
    OcclusionGeometry,
    QuarantineEntry,
    ReviewLogEntry,
    StoreData,
)
from sprout.domain.scheduling import CardState, Grade, GradeResult, Stage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistVerdict:
    allow: bool
    backup_first: bool
    reason: str


class CardStore:
    def __init__(self, data: StoreData | None = None):
        self.data = data or StoreData()
        self._bulk_delete_authorized = False
        self._last_persisted: StoreData | None = None

    # ---------- Loading / snapshots ----------

    @classmethod
    def load(cls, raw: dict[str, Any] | None) -> "CardStore":
        """Build a store from a raw ``store`` section, migrating it once."""
        migrated = migrate_store(raw)
        raw_cards = migrated.pop("cards", None) or {}
        data = StoreData.model_validate(migrated)

        for card_id, rec in raw_cards.items():
            try:
                data.cards[card_id] = CARD_ADAPTER.validate_python(rec)
            except ValidationError as e:
                # Records are rebuilt from notes on the next sync; states are kept.
                logger.warning(f"Dropping unreadable card record {card_id}: {e.error_count()} errors")

        store = cls(data)
        store._last_persisted = data.model_copy(deep=True)
        return store

    def snapshot(self) -> StoreData:
        return self.data.model_copy(deep=True)

    def to_document(self) -> dict[str, Any]:
        return self.data.model_dump(mode="json")

    # ---------- Read accessors ----------

    def get_all_cards(self) -> list[Card]:
        """Every live card, quarantined ids excluded."""
        return [c for cid, c in self.data.cards.items() if cid not in self.data.quarantine]

    def get_card(self, card_id: str) -> Card | None:
        return self.data.cards.get(card_id)

    def get_cards_by_note(self, note_path: str) -> list[Card]:
        return [c for c in self.data.cards.values() if c.source_note_path == note_path]

    def get_children(self, parent_id: str) -> list[Card]:
        return [
            c
            for c in self.data.cards.values()
            if c.type in CHILD_TYPES and getattr(c, "parent_id", None) == parent_id
        ]

    def get_state(self, card_id: str) -> CardState | None:
        return self.data.states.get(card_id)

    def is_quarantined(self, card_id: str) -> bool:
        return card_id in self.data.quarantine

    def get_quarantine(self) -> dict[str, QuarantineEntry]:
        return dict(self.data.quarantine)

    def due_cards(self, now: int) -> list[CardState]:
        """States due at ``now``, earliest first. Suspended and quarantined cards never appear."""
        due = [
            s
            for cid, s in self.data.states.items()
            if scheduler.is_due(s, now) and cid in self.data.cards and cid not in self.data.quarantine
        ]
        return sorted(due, key=lambda s: (s.due, s.id))

    def known_ids(self) -> set[str]:
        return set(self.data.cards) | set(self.data.quarantine)

    # ---------- Card mutations ----------

    def upsert_card(self, card: Card) -> None:
        self.data.cards[card.id] = card
        if isinstance(card, OcclusionCard):
            self.data.io[card.id] = OcclusionGeometry(
                image_ref=card.image_ref, mask_mode=card.mask_mode, rects=card.rects
            )

    def remove_card(self, card_id: str, keep_states: bool = False) -> list[str]:
        """
        Delete a record and everything hanging off it: state, quarantine entry,
        occlusion geometry, child records and their states.
        Returns every id that was removed.
        """
        removed = [card_id] + [c.id for c in self.get_children(card_id)]
        for cid in removed:
            self.data.cards.pop(cid, None)
            self.data.quarantine.pop(cid, None)
            if not keep_states:
                self.data.states.pop(cid, None)
        if not keep_states:
            # Child records may already be gone (quarantine) while their states remain.
            self.prune_child_states(card_id)
        self.data.io.pop(card_id, None)
        return removed

    def prune_child_states(self, parent_id: str, keep: set[str] | frozenset[str] = frozenset()) -> list[str]:
        """Drop states of ``parent_id``'s children whose ids are not in ``keep``."""
        prefix = f"{parent_id}::"
        stale = [sid for sid in self.data.states if sid.startswith(prefix) and sid not in keep]
        for sid in stale:
            del self.data.states[sid]
        return stale

    def quarantine(self, card_id: str, note_path: str, raw: str, reason: str, now: int) -> bool:
        """
        Quarantine a block. An existing record at that anchor is removed but its
        scheduling state (and its children's) is kept.
        Returns True when the entry is new or changed.
        """
        if card_id in self.data.cards:
            self.remove_card(card_id, keep_states=True)

        existing = self.data.quarantine.get(card_id)
        if existing and existing.raw == raw and existing.reason == reason and existing.note_path == note_path:
            return False
        self.data.quarantine[card_id] = QuarantineEntry(
            id=card_id, note_path=note_path, raw=raw, reason=reason, quarantined_at=now
        )
        return True

    def clear_quarantine(self, card_id: str) -> bool:
        return self.data.quarantine.pop(card_id, None) is not None

    def rebuild_tag_registry(self) -> int:
        """Recompute group reference counts; returns how many groups disappeared."""
        parents = [c for c in self.get_all_cards() if c.type not in CHILD_TYPES]
        fresh = count_group_references(c.groups for c in parents)
        deleted = [g for g, n in self.data.tags.items() if n > 0 and g not in fresh]
        self.data.tags = fresh
        if deleted:
            logger.info(f"Groups without cards removed: {', '.join(sorted(deleted))}")
        return len(deleted)

    # ---------- Scheduling state ----------

    def ensure_state(self, card_id: str, now: int) -> CardState:
        """Existing state, or a freshly stored new-card state. Idempotent."""
        state = self.data.states.get(card_id)
        if state is None:
            state = CardState.new(card_id, now)
            self.data.states[card_id] = state
        return state

    def upsert_state(self, state: CardState) -> None:
        self.data.states[state.id] = state

    def _require_card(self, card_id: str) -> None:
        if card_id not in self.data.cards and card_id not in self.data.states:
            raise UnknownCardError(card_id)

    def suspend(self, card_id: str, now: int) -> CardState:
        self._require_card(card_id)
        state = scheduler.suspend_card(self.ensure_state(card_id, now))
        self.upsert_state(state)
        return state

    def unsuspend(self, card_id: str, now: int) -> CardState:
        self._require_card(card_id)
        state = scheduler.unsuspend_card(self.ensure_state(card_id, now))
        self.upsert_state(state)
        return state

    def reset_scheduling(self, card_ids: list[str], now: int) -> list[CardState]:
        """
        Force the given cards back to new. Unknown ids are skipped. A non-empty
        reset arms the guard for the next save, like any other bulk change.
        """
        reset = []
        for cid in card_ids:
            if cid not in self.data.cards and cid not in self.data.states:
                logger.warning(f"Reset skipped unknown card {cid}")
                continue
            state = scheduler.reset_card_scheduling(self.ensure_state(cid, now), now)
            self.upsert_state(state)
            reset.append(state)
        if reset:
            self.authorize_bulk_delete()
        return reset

    def record_review(self, prev: CardState, grade: Grade, result: GradeResult, now: int) -> None:
        nxt = result.next_state
        self.upsert_state(nxt)
        self.data.review_log.append(
            ReviewLogEntry(
                card_id=prev.id,
                at=now,
                grade=grade,
                prev_stage=prev.stage,
                next_stage=nxt.stage,
                prev_due=result.prev_due,
                next_due=result.next_due,
                scheduled_days=nxt.scheduled_days,
            )
        )
        analytics = self.data.analytics
        analytics.total_reviews += 1
        analytics.grade_counts[grade.value] = analytics.grade_counts.get(grade.value, 0) + 1
        day = datetime.fromtimestamp(now / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
        analytics.daily_reviews[day] = analytics.daily_reviews.get(day, 0) + 1
        if prev.stage is Stage.REVIEW and nxt.stage is Stage.RELEARNING:
            analytics.lapses += 1

    # ---------- Persist safety ----------

    def authorize_bulk_delete(self) -> None:
        """Arm the guard to accept one large deletion on the next save."""
        self._bulk_delete_authorized = True

    @property
    def bulk_delete_authorized(self) -> bool:
        return self._bulk_delete_authorized

    def assess_persist_safety(
        self, candidate: StoreData | None = None, on_disk: StoreData | None = None
    ) -> PersistVerdict:
        """
        Decide whether ``candidate`` may overwrite ``on_disk`` (defaults: the
        current store and the last snapshot this store loaded or saved).
        """
        candidate = candidate if candidate is not None else self.data
        disk = on_disk if on_disk is not None else self._last_persisted
        if disk is None:
            return PersistVerdict(True, False, "no previous snapshot")

        disk_total = disk.total
        cand_total = candidate.total
        disk_cards = len(disk.cards)
        cand_cards = len(candidate.cards)

        refusal = None
        if disk_total >= SAFETY_MIN_DISK_TOTAL and cand_total <= disk_total * SAFETY_NEAR_EMPTY_RATIO:
            refusal = f"candidate holds {cand_total} cards+states but the file on disk holds {disk_total}"
        elif disk_cards >= SAFETY_MIN_DISK_TOTAL and cand_cards <= disk_cards * SAFETY_NEAR_EMPTY_RATIO:
            # States survive dropped records, so the card count is checked on its own.
            refusal = f"candidate holds {cand_cards} cards but the file on disk holds {disk_cards}"
        if refusal is not None:
            if self._bulk_delete_authorized:
                return PersistVerdict(True, True, "authorized bulk delete of nearly all cards")
            return PersistVerdict(False, False, refusal)

        if (
            not self._bulk_delete_authorized
            and disk_cards >= SAFETY_MIN_DISK_TOTAL
            and cand_cards < disk_cards * SAFETY_REGRESSION_RATIO
        ):
            return PersistVerdict(True, True, f"card count drops from {disk_cards} to {cand_cards}")

        return PersistVerdict(True, False, "ok")

    def mark_persisted(self, snapshot: StoreData) -> None:
        self._last_persisted = snapshot
        self._bulk_delete_authorized = False
