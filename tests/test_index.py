from __future__ import annotations

import json
from pathlib import Path

from docsearch.ingestion.extractors import content_hash
from docsearch.models import Document
from docsearch.storage.index import STOPWORDS, DocumentIndex, extract_keywords


def _doc(doc_id: str, content: str, title: str = "Notes") -> Document:
    return Document(id=doc_id, title=title, content=content)


class FixedScanner:
    def __init__(self, root: Path, documents) -> None:
        self.entries = [(root / f"{doc.id}.json", doc) for doc in documents]
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return list(self.entries)


def test_extract_keywords_drops_short_tokens_and_stopwords():
    keywords = extract_keywords("The Dog, the CAT and an ox-cart: 42 go!")
    assert keywords == {"dog", "cat", "cart"}
    assert "the" in STOPWORDS


def test_put_is_idempotent(tmp_path: Path):
    index = DocumentIndex(tmp_path / "index.json", FixedScanner(tmp_path, []))
    doc = _doc("d1", "Alpha beta gamma")
    index.put(doc, tmp_path / "d1.json")
    once = index.keywords_for("d1")
    index.put(doc, tmp_path / "d1.json")
    assert len(index) == 1
    assert index.keywords_for("d1") == once
    assert index.keyword_search(["alpha"]) == {"d1"}


def test_reindexing_changed_content_drops_stale_keywords(tmp_path: Path):
    index = DocumentIndex(tmp_path / "index.json", FixedScanner(tmp_path, []))
    index.put(_doc("d1", "Alpha beta"), tmp_path / "d1.json")
    index.put(_doc("d1", "Gamma delta"), tmp_path / "d1.json")
    assert index.keyword_search(["alpha"]) == set()
    assert index.keyword_search(["gamma"]) == {"d1"}
    assert index.exists_by_content_hash(content_hash("Alpha beta")) is None
    assert index.exists_by_content_hash(content_hash("Gamma delta")) == "d1"


def test_remove_clears_every_entry(tmp_path: Path):
    index = DocumentIndex(tmp_path / "index.json", FixedScanner(tmp_path, []))
    index.put(_doc("d1", "Alpha beta"), tmp_path / "d1.json")
    index.put(_doc("d2", "Beta gamma"), tmp_path / "d2.json")
    assert index.remove("d1")
    assert not index.remove("d1")
    assert index.lookup("d1") is None
    assert index.exists_by_content_hash(content_hash("Alpha beta")) is None
    assert index.keyword_search(["alpha", "beta"]) == {"d2"}


def test_keyword_search_matches_any_term(tmp_path: Path):
    index = DocumentIndex(tmp_path / "index.json", FixedScanner(tmp_path, []))
    index.put(_doc("d1", "Alpha only"), tmp_path / "d1.json")
    index.put(_doc("d2", "Gamma only"), tmp_path / "d2.json")
    assert index.keyword_search(["alpha gamma"]) == {"d1", "d2"}
    assert index.keyword_search(["the"]) == set()


def test_persist_and_load_round_trip(tmp_path: Path):
    path = tmp_path / "index.json"
    scanner = FixedScanner(tmp_path, [])
    index = DocumentIndex(path, scanner)
    index.put(_doc("d1", "Alpha beta", title="First"), tmp_path / "d1.json")
    index.persist()

    data = json.loads(path.read_text(encoding="utf-8"))
    assert set(data) == {"version", "documents", "content_hashes", "keywords"}

    restored = DocumentIndex(path, scanner)
    assert restored.load()
    assert scanner.calls == 0
    assert restored.lookup("d1") == tmp_path / "d1.json"
    assert restored.keyword_search(["first"]) == {"d1"}
    assert restored.exists_by_content_hash(content_hash("Alpha beta")) == "d1"


def test_truncated_index_file_falls_back_to_rebuild(tmp_path: Path):
    path = tmp_path / "index.json"
    docs = [_doc("d1", "Alpha beta"), _doc("d2", "Gamma delta")]
    scanner = FixedScanner(tmp_path, docs)
    path.write_text("", encoding="utf-8")

    index = DocumentIndex(path, scanner)
    assert not index.load()
    assert scanner.calls == 1
    assert index.lookup("d1") == tmp_path / "d1.json"
    assert index.lookup("d2") == tmp_path / "d2.json"
    # the rebuilt index is written back
    assert json.loads(path.read_text(encoding="utf-8"))["documents"].keys() == {"d1", "d2"}


def test_missing_or_inconsistent_index_is_rebuilt(tmp_path: Path):
    path = tmp_path / "index.json"
    scanner = FixedScanner(tmp_path, [_doc("d1", "Alpha")])
    assert not DocumentIndex(path, scanner).load()

    path.write_text(
        json.dumps({"version": 1, "documents": {}, "content_hashes": {"abc": "ghost"}, "keywords": {}}),
        encoding="utf-8",
    )
    index = DocumentIndex(path, scanner)
    assert not index.load()
    assert index.lookup("d1") is not None
    assert index.lookup("ghost") is None
