"""
Error taxonomy for Sprout.

Per-block parse problems are values (ParseFailure), never exceptions: they end
up in quarantine. Everything below SproutError aborts the single operation
that raised it.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ParseFailure:
    """Why one block could not be turned into a card."""

    reason: str
    line: int | None = None

    def __str__(self) -> str:
        if self.line is None:
            return self.reason
        return f"line {self.line}: {self.reason}"


class SproutError(Exception):
    """Base class for every error Sprout raises on purpose."""


class BlockNotFoundError(SproutError):
    def __init__(self, card_id: str, note_path: str | None = None):
        self.card_id = card_id
        self.note_path = note_path
        where = f" in {note_path}" if note_path else ""
        super().__init__(f"Card block ^sprout-{card_id} not found{where}")


class NoteAccessError(SproutError):
    """Reading or writing a note failed."""

    def __init__(self, note_path: str, cause: Exception | None = None):
        self.note_path = note_path
        self.cause = cause
        super().__init__(f"Cannot access note {note_path}: {cause}")


class DocumentAccessError(SproutError):
    """The persisted data file could not be read or written."""


class ConcurrentModificationError(SproutError):
    def __init__(self, before: int | None, after: int | None):
        self.before = before
        self.after = after
        super().__init__(f"Data file changed during save (mtime {before} -> {after})")


class PersistSafetyViolation(SproutError):
    """A candidate write looks like data loss and was refused."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Refusing to save: {reason}")


class UnknownCardError(SproutError):
    def __init__(self, card_id: str):
        self.card_id = card_id
        super().__init__(f"Unknown card id: {card_id}")
