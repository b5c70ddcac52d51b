"""Markdown notes on the local filesystem."""

import asyncio
import logging
import os
from collections.abc import Iterator
from pathlib import Path

from sprout.domain.constants import IGNORED_DIR_NAMES, NOTE_SUFFIX
from sprout.domain.errors import NoteAccessError
from sprout.domain.interfaces import NoteRepository

logger = logging.getLogger(__name__)


def iter_markdown_files(root: Path) -> Iterator[Path]:
    """Markdown files under root, skipping hidden and tool directories."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(
            d for d in dirnames if d not in IGNORED_DIR_NAMES and not d.startswith(".")
        )
        for name in sorted(filenames):
            if name.endswith(NOTE_SUFFIX):
                yield Path(dirpath) / name


class FileSystemNoteRepository(NoteRepository):
    """Notes addressed by vault-relative POSIX paths."""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    def _abs(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root):
            raise NoteAccessError(path, ValueError("path escapes the vault"))
        return target

    def relative(self, path: Path) -> str:
        return Path(path).resolve().relative_to(self.root).as_posix()

    async def list_notes(self) -> list[str]:
        return sorted(self.relative(p) for p in iter_markdown_files(self.root))

    async def read(self, path: str) -> str:
        target = self._abs(path)
        try:
            return await asyncio.to_thread(target.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise NoteAccessError(path, e) from e

    async def write(self, path: str, text: str) -> None:
        target = self._abs(path)
        try:
            await asyncio.to_thread(_write_text, target, text)
        except OSError as e:
            raise NoteAccessError(path, e) from e
        logger.debug(f"Wrote {path}")

    async def exists(self, path: str) -> bool:
        try:
            return self._abs(path).is_file()
        except NoteAccessError:
            return False


def _write_text(target: Path, text: str) -> None:
    # newline="" keeps the note's own line endings.
    with open(target, "w", encoding="utf-8", newline="") as f:
        f.write(text)
