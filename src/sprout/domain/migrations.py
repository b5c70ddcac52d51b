"""
Versioned migrations for the persisted document.

Each section carries a ``version``; ``migrate_store`` and ``migrate_settings``
bring an arbitrary older payload up to the current shape exactly once, at load.
Nothing downstream checks for missing or legacy keys.
"""

import logging
from typing import Any

from .constants import MAX_REQUEST_RETENTION, MIN_REQUEST_RETENTION
from .models import STORE_VERSION
from .settings import SETTINGS_VERSION

logger = logging.getLogger(__name__)

_CARD_KEYS = {
    "sourceNotePath": "source_note_path",
    "parentId": "parent_id",
    "q": "question",
    "a": "answer",
    "clozeText": "text",
    "clozeIndex": "cloze_index",
    "correctIndex": "correct_index",
    "imageRef": "image_ref",
    "maskMode": "mask_mode",
    "groupKey": "group_key",
    "rectIds": "rect_ids",
    "oqSteps": "steps",
    "occlusions": "rects",
}

_STATE_KEYS = {
    "scheduledDays": "scheduled_days",
    "learningStepIndex": "learning_step_index",
    "stabilityDays": "stability_days",
    "lastReviewed": "last_reviewed",
}

# Fields the old store kept on records that no longer exist.
_DROPPED_CARD_KEYS = {
    "createdAt",
    "updatedAt",
    "lastSeenAt",
    "clozeChildren",
    "retired",
    "prompt_raw",
    "fields",
}
_DROPPED_STATE_KEYS = {"difficulty", "fsrsState", "suspendedDue", "buriedUntil", "ease"}
# Two-button mode graded pass/fail.
_LEGACY_GRADES = {"pass": "good", "fail": "again"}


def _rename(d: dict[str, Any], table: dict[str, str]) -> dict[str, Any]:
    return {table.get(k, k): v for k, v in d.items()}


def _migrate_card(raw: dict[str, Any]) -> dict[str, Any]:
    card = _rename(raw, _CARD_KEYS)
    for key in _DROPPED_CARD_KEYS:
        card.pop(key, None)
    if card.get("type") == "mcq" and card.get("options"):
        card["options"] = [
            o.get("text", "") if isinstance(o, dict) else str(o) for o in card["options"]
        ]
        card.pop("answer", None)
    if card.get("type") == "oq":
        card.setdefault("question", card.pop("stem", ""))
    return {k: v for k, v in card.items() if v is not None or k in ("title", "info")}


def _migrate_state(raw: dict[str, Any]) -> dict[str, Any]:
    state = _rename(raw, _STATE_KEYS)
    for key in _DROPPED_STATE_KEYS:
        state.pop(key, None)
    if state.get("stage") == "suspended" and "suspended_stage" not in state:
        # v10 and earlier did not remember the stage behind a suspension.
        state["suspended_stage"] = "review" if state.get("scheduled_days") else "new"
    return state


def _migrate_review(raw: Any) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    grade = _LEGACY_GRADES.get(raw.get("result"), raw.get("result"))
    if not raw.get("id") or grade not in ("again", "hard", "good", "easy"):
        return None
    return {
        "card_id": raw["id"],
        "at": raw.get("at", 0),
        "grade": grade,
        "prev_due": raw.get("prevDue", 0),
        "next_due": raw.get("nextDue", 0),
    }


def migrate_store(raw: dict[str, Any] | None) -> dict[str, Any]:
    """Bring a raw ``store`` section up to STORE_VERSION."""
    if not raw:
        return {"version": STORE_VERSION}

    data = dict(raw)
    version = data.get("version") if isinstance(data.get("version"), int) else 0

    if version < 11:
        logger.info(f"Migrating store from v{version} to v{STORE_VERSION}")
        data["cards"] = {
            cid: _migrate_card(rec)
            for cid, rec in (data.get("cards") or {}).items()
            if isinstance(rec, dict) and rec.get("type") not in ("lq", "fq")
        }
        data["states"] = {
            sid: _migrate_state(st)
            for sid, st in (data.get("states") or {}).items()
            if isinstance(st, dict)
        }
        data["review_log"] = [
            migrated
            for migrated in (_migrate_review(e) for e in data.pop("reviewLog", None) or [])
            if migrated is not None
        ]
        quarantine = {}
        for qid, entry in (data.get("quarantine") or {}).items():
            if not isinstance(entry, dict):
                continue
            quarantine[qid] = {
                "id": qid,
                "note_path": entry.get("notePath", entry.get("note_path", "")),
                "raw": entry.get("raw", ""),
                "reason": entry.get("reason", entry.get("error", "")),
                "quarantined_at": entry.get("quarantinedAt", entry.get("quarantined_at", 0)),
            }
        data["quarantine"] = quarantine
        # Event-stream analytics are not carried forward.
        data["analytics"] = {}
        data["io"] = {
            pid: _rename(geo, _CARD_KEYS)
            for pid, geo in (data.get("io") or {}).items()
            if isinstance(geo, dict)
        }
        data.setdefault("tags", {})
        data["version"] = 11

    return data


def migrate_settings(raw: dict[str, Any] | None) -> dict[str, Any]:
    """Bring a raw ``settings`` section up to SETTINGS_VERSION."""
    if not raw:
        return {"version": SETTINGS_VERSION}

    data = dict(raw)
    version = data.get("version") if isinstance(data.get("version"), int) else 1

    if version < 2:
        logger.info(f"Migrating settings from v{version} to v{SETTINGS_VERSION}")
        legacy = data.pop("scheduler", None) or data.get("scheduling") or {}
        retention = legacy.get("requestRetention", legacy.get("request_retention"))
        scheduling: dict[str, Any] = {}
        if "learningStepsMinutes" in legacy:
            scheduling["learning_steps_minutes"] = legacy["learningStepsMinutes"]
        if "relearningStepsMinutes" in legacy:
            scheduling["relearning_steps_minutes"] = legacy["relearningStepsMinutes"]
        if retention is not None:
            scheduling["request_retention"] = min(
                MAX_REQUEST_RETENTION, max(MIN_REQUEST_RETENTION, float(retention))
            )
        data["scheduling"] = scheduling

        indexing = data.get("indexing") or {}
        data["indexing"] = {
            "delimiter": indexing.get("delimiter", "|"),
            "ignore_in_code_fences": indexing.get(
                "ignoreInCodeFences", indexing.get("ignore_in_code_fences", True)
            ),
        }
        data["version"] = 2

    return {k: data[k] for k in ("version", "scheduling", "indexing") if k in data}
