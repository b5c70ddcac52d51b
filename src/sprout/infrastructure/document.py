"""The persisted data file: one JSON document with ``settings`` and ``store``."""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from sprout.domain.errors import DocumentAccessError
from sprout.domain.interfaces import DocumentStorage

logger = logging.getLogger(__name__)


class JsonDocumentStorage(DocumentStorage):
    def __init__(self, path: Path):
        self.path = Path(path)

    async def load(self) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._load)

    def _load(self) -> dict[str, Any] | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise DocumentAccessError(f"Cannot read {self.path}: {e}") from e
        if not raw.strip():
            logger.warning(f"{self.path} is empty")
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise DocumentAccessError(f"{self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise DocumentAccessError(f"{self.path} does not hold a JSON object")
        return data

    async def save(self, document: dict[str, Any]) -> None:
        await asyncio.to_thread(self._save, document)

    def _save(self, document: dict[str, Any]) -> None:
        """Write to a temp file beside the target, then atomically replace it."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(document, f, ensure_ascii=False, indent=2)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise DocumentAccessError(f"Cannot write {self.path}: {e}") from e

    async def mtime(self) -> int | None:
        try:
            return self.path.stat().st_mtime_ns
        except FileNotFoundError:
            return None
