from __future__ import annotations

from pathlib import Path

import pytest

from conftest import VocabularyProvider, make_service
from docsearch.config import get_settings
from docsearch.embeddings.cache import EmbeddingCache
from docsearch.embeddings.service import CachedEmbeddingProvider, HashEmbeddingBackend
from docsearch.errors import DocumentNotFoundError
from docsearch.services.documents import DocumentService, build_service


@pytest.mark.asyncio
async def test_add_document_returns_summary_with_metadata(service: DocumentService):
    summary = await service.add_document(
        "notes.md",
        "# Heading\n\nThe cat sat.",
        author="Ada",
        tags=["pets", "notes"],
        description="Short note",
    )
    assert summary.title == "notes.md"
    assert summary.content_type == "text/markdown"
    assert summary.author == "Ada"
    assert summary.tags == ["pets", "notes"]
    assert summary.description == "Short note"
    assert summary.size == len("# Heading\n\nThe cat sat.")


@pytest.mark.asyncio
async def test_search_scenario_ranks_dog_sentence_first(service: DocumentService):
    summary = await service.add_document("Animals", "The cat sat. The dog ran. The bird flew.")
    response = await service.search_documents(summary.id, "dog")
    assert response.results[0].chunk.content.strip() == "The dog ran."
    assert "get_context_window" in response.hint

    window = service.get_context_window(summary.id, response.results[0].chunk.chunk_index, before=1, after=1)
    assert [chunk.chunk_index for chunk in window.window] == [0, 1, 2]
    assert window.total_chunks == 3


@pytest.mark.asyncio
async def test_delete_scenario(service: DocumentService):
    summary = await service.add_document("Animals", "The cat sat. The dog ran.")
    assert [doc.id for doc in service.keyword_search(["dog"])] == [summary.id]

    assert service.delete_document(summary.id)

    assert service.list_documents() == []
    assert service.keyword_search(["dog"]) == []
    with pytest.raises(DocumentNotFoundError):
        service.get_document(summary.id)
    assert not service.delete_document(summary.id)


@pytest.mark.asyncio
async def test_list_documents_filters(service: DocumentService):
    pets = await service.add_document("Pets", "The cat sat.", tags=["Pets"], author="Ada")
    await service.add_document("Birds", "The bird flew.", tags=["birds"], author="Bob")
    await service.add_document("Readme", "# Fish\n\nA fish swam.")

    assert [doc.id for doc in service.list_documents(tags=["pets"])] == [pets.id]
    assert [doc.title for doc in service.list_documents(author="bob")] == ["Birds"]
    assert [doc.title for doc in service.list_documents(content_type="text/markdown")] == ["Readme"]
    assert len(service.list_documents()) == 3


@pytest.mark.asyncio
async def test_process_uploads_adds_supported_files(service: DocumentService, tmp_path: Path):
    uploads = service.uploads_path()
    (uploads / "cats.txt").write_text("The cat sat. The cat slept.", encoding="utf-8")
    (uploads / "guide.md").write_text("# Guide\n\nThe dog ran.", encoding="utf-8")
    (uploads / "image.bin").write_bytes(b"\x00\x01")
    (uploads / "empty.txt").write_text("", encoding="utf-8")

    assert [path.name for path in service.list_uploads()] == ["cats.txt", "empty.txt", "guide.md"]

    report = await service.process_uploads()

    assert report.processed == 2
    assert len(report.errors) == 1
    assert report.errors[0].startswith("empty.txt")
    titles = sorted(doc.title for doc in service.list_documents())
    assert titles == ["cats", "guide"]
    guide = next(doc for doc in service.list_documents() if doc.title == "guide")
    assert guide.content_type == "text/markdown"
    for document_id in report.document_ids:
        document = service.get_document(document_id)
        assert (service.store.originals_dir / document.metadata["original_file"]).exists()


@pytest.mark.asyncio
async def test_process_uploads_replaces_documents_with_same_title(service: DocumentService):
    uploads = service.uploads_path()
    (uploads / "cats.txt").write_text("The cat sat.", encoding="utf-8")
    first = await service.process_uploads()

    (uploads / "cats.txt").write_text("The cat slept all day.", encoding="utf-8")
    second = await service.process_uploads()

    documents = service.list_documents()
    assert [doc.title for doc in documents] == ["cats"]
    assert documents[0].id == second.document_ids[0]
    assert documents[0].id != first.document_ids[0]


@pytest.mark.asyncio
async def test_process_uploads_keeps_title_when_content_exists_elsewhere(service: DocumentService):
    other = await service.add_document("other", "The dog ran.")
    notes = await service.add_document("notes", "The cat sat.")
    (service.uploads_path() / "notes.txt").write_text("The dog ran.", encoding="utf-8")

    report = await service.process_uploads()

    assert report.processed == 0
    assert len(report.errors) == 1
    assert report.errors[0].startswith("notes.txt")
    assert other.id in report.errors[0]
    assert sorted(doc.id for doc in service.list_documents()) == sorted([other.id, notes.id])
    assert service.get_document(notes.id).content == "The cat sat."


@pytest.mark.asyncio
async def test_non_list_tags_do_not_break_listing(service: DocumentService):
    odd = await service.add_document("doc", "The fish swam.", {"tags": 5})
    tagged = await service.add_document("pets", "The cat sat.", tags=["x"])

    assert odd.tags == []
    assert [doc.id for doc in service.list_documents(tags=["x"])] == [tagged.id]
    assert len(service.list_documents()) == 2


@pytest.mark.asyncio
async def test_cache_stats_and_persistence(tmp_path: Path):
    inner = VocabularyProvider()
    cache = EmbeddingCache(capacity=8)
    cache_path = tmp_path / "data" / "embedding_cache.json"
    service = make_service(tmp_path, CachedEmbeddingProvider(inner, cache), cache=cache, cache_path=cache_path)
    await service.startup()

    summary = await service.add_document("Animals", "The cat sat. The dog ran.")
    await service.search_documents(summary.id, "the cat sat.")
    stats = service.cache_stats()
    assert stats["enabled"]
    assert stats["hits"] == 1
    assert stats["size"] == 2
    assert stats["memory_bytes"] > 0

    await service.shutdown()
    assert cache_path.exists()

    restored_cache = EmbeddingCache(capacity=8)
    restored = make_service(tmp_path, CachedEmbeddingProvider(inner, restored_cache), cache=restored_cache, cache_path=cache_path)
    await restored.startup()
    assert restored.cache_stats()["size"] == 2


def test_cache_stats_when_disabled(service: DocumentService):
    assert service.cache_stats() == {"enabled": False}


def test_build_service_from_settings(tmp_path: Path):
    settings = get_settings(
        {
            "environment": "test",
            "data_dir": tmp_path / "data",
            "uploads_dir": tmp_path / "uploads",
            "embedding_dim": 32,
            "cache_size": 5,
            "index_enabled": False,
        }
    )
    service = build_service(settings)
    assert isinstance(service.provider, CachedEmbeddingProvider)
    assert isinstance(service.provider.provider, HashEmbeddingBackend)
    assert service.cache.capacity == 5
    assert service.store.index is None
    assert service.health() == {"model": "hash-bow-32", "ready": True, "documents": 0}
