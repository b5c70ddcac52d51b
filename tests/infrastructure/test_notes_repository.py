import pytest

from sprout.domain.errors import NoteAccessError
from sprout.infrastructure.notes import FileSystemNoteRepository, iter_markdown_files


@pytest.fixture
def vault(mock_vault):
    (mock_vault / "a.md").write_text("A")
    (mock_vault / "sub").mkdir()
    (mock_vault / "sub" / "b.md").write_text("B")
    (mock_vault / "sub" / "img.png").write_bytes(b"\x89PNG")
    (mock_vault / ".obsidian").mkdir()
    (mock_vault / ".obsidian" / "hidden.md").write_text("x")
    (mock_vault / ".sprout").mkdir()
    (mock_vault / ".sprout" / "notes.md").write_text("x")
    return mock_vault


def test_iter_markdown_files_skips_tool_dirs(vault):
    names = [p.relative_to(vault).as_posix() for p in iter_markdown_files(vault)]
    assert names == ["a.md", "sub/b.md"]


@pytest.mark.asyncio
async def test_list_and_read(vault):
    repo = FileSystemNoteRepository(vault)
    assert await repo.list_notes() == ["a.md", "sub/b.md"]
    assert await repo.read("sub/b.md") == "B"


@pytest.mark.asyncio
async def test_write_keeps_line_endings(vault):
    repo = FileSystemNoteRepository(vault)
    await repo.write("a.md", "one\r\ntwo\r\n")
    assert (vault / "a.md").read_bytes() == b"one\r\ntwo\r\n"


@pytest.mark.asyncio
async def test_exists_covers_attachments(vault):
    repo = FileSystemNoteRepository(vault)
    assert await repo.exists("sub/img.png")
    assert not await repo.exists("sub/missing.png")
    assert not await repo.exists("../outside.md")


@pytest.mark.asyncio
async def test_read_missing_note(vault):
    with pytest.raises(NoteAccessError) as exc:
        await FileSystemNoteRepository(vault).read("nope.md")
    assert exc.value.note_path == "nope.md"


@pytest.mark.asyncio
async def test_paths_cannot_escape_vault(vault):
    with pytest.raises(NoteAccessError):
        await FileSystemNoteRepository(vault).read("../secret.md")
