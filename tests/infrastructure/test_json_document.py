import json

import pytest

from sprout.domain.errors import DocumentAccessError
from sprout.infrastructure.document import JsonDocumentStorage


@pytest.mark.asyncio
async def test_missing_file(tmp_path):
    storage = JsonDocumentStorage(tmp_path / "data.json")
    assert await storage.load() is None
    assert await storage.mtime() is None


@pytest.mark.asyncio
async def test_save_and_load(tmp_path):
    storage = JsonDocumentStorage(tmp_path / "nested" / "data.json")
    await storage.save({"store": {"cards": {"a": 1}}, "text": "ünïcode"})

    assert await storage.load() == {"store": {"cards": {"a": 1}}, "text": "ünïcode"}
    assert isinstance(await storage.mtime(), int)
    assert [p.name for p in (tmp_path / "nested").iterdir()] == ["data.json"]


@pytest.mark.asyncio
async def test_empty_file_is_empty_document(tmp_path):
    path = tmp_path / "data.json"
    path.write_text("  ")
    assert await JsonDocumentStorage(path).load() == {}


@pytest.mark.asyncio
async def test_invalid_json(tmp_path):
    path = tmp_path / "data.json"
    path.write_text("{not json")
    with pytest.raises(DocumentAccessError):
        await JsonDocumentStorage(path).load()


@pytest.mark.asyncio
async def test_non_object_json(tmp_path):
    path = tmp_path / "data.json"
    path.write_text(json.dumps([1, 2]))
    with pytest.raises(DocumentAccessError):
        await JsonDocumentStorage(path).load()
