"""Dated backups of the data file.

Backups are a safety net, never a dependency: ``create_safely`` and
``ensure_routine`` log and swallow failures so the primary save proceeds.
"""

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sprout.domain.constants import BACKUP_PREFIX, MAX_BACKUPS
from sprout.domain.errors import DocumentAccessError

logger = logging.getLogger(__name__)

_NAME_RE = re.compile(rf"^{re.escape(BACKUP_PREFIX)}(\d{{8}})-(\d{{6}})(?:-(\d+))?-([a-z0-9-]+)\.json$")


def _sort_key(path: Path) -> tuple[str, str, int]:
    # Same-second collisions carry a counter and are newer than the base name.
    m = _NAME_RE.match(path.name)
    return (m.group(1), m.group(2), int(m.group(3) or 0))


class BackupService:
    def __init__(self, directory: Path, max_count: int = MAX_BACKUPS):
        self.directory = Path(directory)
        self.max_count = max_count

    def list(self) -> list[Path]:
        """Backups, newest first."""
        if not self.directory.is_dir():
            return []
        found = [p for p in self.directory.iterdir() if _NAME_RE.match(p.name)]
        return sorted(found, key=_sort_key, reverse=True)

    def create(self, document: dict[str, Any], reason: str, now: datetime | None = None) -> Path:
        now = now or datetime.now(timezone.utc)
        stamp = now.strftime("%Y%m%d-%H%M%S")
        slug = re.sub(r"[^a-z0-9-]+", "-", reason.lower()).strip("-") or "manual"
        self.directory.mkdir(parents=True, exist_ok=True)

        path = self.directory / f"{BACKUP_PREFIX}{stamp}-{slug}.json"
        counter = 1
        while path.exists():
            path = self.directory / f"{BACKUP_PREFIX}{stamp}-{counter}-{slug}.json"
            counter += 1

        path.write_text(json.dumps(document, ensure_ascii=False), encoding="utf-8")
        logger.info(f"Backup written: {path.name}")
        self.prune()
        return path

    def create_safely(
        self, document: dict[str, Any], reason: str, now: datetime | None = None
    ) -> Path | None:
        try:
            return self.create(document, reason, now)
        except Exception as e:
            logger.warning(f"Backup ({reason}) failed: {e}")
            return None

    def prune(self) -> int:
        """Delete the oldest backups beyond max_count."""
        removed = 0
        for old in self.list()[self.max_count :]:
            try:
                old.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Could not delete old backup {old.name}: {e}")
        return removed

    def ensure_routine(self, document: dict[str, Any] | None, now: datetime | None = None) -> Path | None:
        """At most one routine backup per (UTC) day, only when there is something to keep."""
        if not document or not document.get("store"):
            return None
        now = now or datetime.now(timezone.utc)
        today = now.strftime("%Y%m%d")
        for p in self.list():
            m = _NAME_RE.match(p.name)
            if m and m.group(1) == today and m.group(4) == "routine":
                return None
        return self.create_safely(document, "routine", now)

    def restore(self, path: Path) -> dict[str, Any]:
        """The document held in a backup file."""
        path = Path(path)
        if not path.is_absolute() and not path.exists():
            path = self.directory / path
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise DocumentAccessError(f"Cannot read backup {path}: {e}") from e
        if not isinstance(data, dict) or "store" not in data:
            raise DocumentAccessError(f"Backup {path.name} has no store section")
        return data
