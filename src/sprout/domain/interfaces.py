"""
Ports (interfaces) to the host environment.

Application services depend on these abstractions, not on the filesystem.
"""

from abc import ABC, abstractmethod
from typing import Any


class NoteRepository(ABC):
    """
    Port for reading and writing note text by vault-relative path.

    Implementations:
        - FileSystemNoteRepository: Markdown files under a vault directory.
    """

    @abstractmethod
    async def list_notes(self) -> list[str]:
        """Return every note path in the vault, sorted."""
        pass

    @abstractmethod
    async def read(self, path: str) -> str:
        """
        Read one note.

        Raises:
            NoteAccessError: The note is missing or unreadable.
        """
        pass

    @abstractmethod
    async def write(self, path: str, text: str) -> None:
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """True if a file (note or attachment) exists at the vault-relative path."""
        pass


class DocumentStorage(ABC):
    """
    Port for the single persisted document holding ``settings`` and ``store``.

    Implementations:
        - JsonDocumentStorage: atomic JSON file writes.
    """

    @abstractmethod
    async def load(self) -> dict[str, Any] | None:
        """Return the parsed document, or None when it does not exist yet."""
        pass

    @abstractmethod
    async def save(self, document: dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def mtime(self) -> int | None:
        """Last-modified time (ns) of the document, or None when absent."""
        pass
