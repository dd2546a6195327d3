# =============================================================================
# Unit Tests — Embedding Client and Index Builder
# =============================================================================
#
# The OpenAI client inside EmbeddingClient is replaced by a mock, so no
# API key or network call is needed. Document loading runs on tmp_path.
# =============================================================================

import asyncio
import json
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from dashlab.services.embedder import EmbeddingClient
from dashlab.config import Settings
from scripts.build_index import build_index, load_documents


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


def _embedding_response(*vectors_by_index):
    return SimpleNamespace(data=[
        SimpleNamespace(index=index, embedding=vector) for index, vector in vectors_by_index
    ])


def _client(batch_size: int = 100, dimensions: int | None = None) -> EmbeddingClient:
    client = EmbeddingClient(
        api_key="test-key", model="test-embedding", batch_size=batch_size, dimensions=dimensions,
    )
    client._client = MagicMock()
    client._client.embeddings.create = AsyncMock()
    return client


# ---------------------------------------------------------------------------
# Test: Embedding Client
# ---------------------------------------------------------------------------


class TestEmbeddingClient:
    def test_embed_query(self):
        client = _client()
        client._client.embeddings.create.return_value = _embedding_response((0, [0.1, 0.2]))

        assert _run(client.embed_query("Quel budget ?")) == [0.1, 0.2]
        client._client.embeddings.create.assert_called_once_with(
            model="test-embedding", input="Quel budget ?",
        )

    def test_dimensions_forwarded(self):
        client = _client(dimensions=256)
        client._client.embeddings.create.return_value = _embedding_response((0, [0.1]))

        _run(client.embed_query("x"))

        assert client._client.embeddings.create.call_args.kwargs["dimensions"] == 256

    def test_batch_keeps_input_order(self):
        client = _client(batch_size=2)
        client._client.embeddings.create.side_effect = [
            _embedding_response((1, [0.2]), (0, [0.1])),
            _embedding_response((0, [0.3])),
        ]

        vectors = _run(client.embed_batch(["a", "b", "c"]))

        assert vectors == [[0.1], [0.2], [0.3]]
        assert client._client.embeddings.create.call_count == 2

    def test_empty_batch(self):
        client = _client()
        assert _run(client.embed_batch([])) == []
        client._client.embeddings.create.assert_not_called()

    def test_error_propagates(self):
        client = _client()
        client._client.embeddings.create.side_effect = RuntimeError("embedding failed")

        with pytest.raises(RuntimeError):
            _run(client.embed_query("x"))


# ---------------------------------------------------------------------------
# Test: Document Loading
# ---------------------------------------------------------------------------


class TestLoadDocuments:
    def test_reads_supported_files(self, tmp_path):
        (tmp_path / "plan_velo.txt").write_text("Le plan vélo.", encoding="utf-8")
        (tmp_path / "rapports.json").write_text(json.dumps([
            {"text": "Rapport A", "title": "A", "author": "Alice", "date": "2024"},
            {"content": "Rapport B", "title": "B"},
        ]), encoding="utf-8")
        (tmp_path / "scan.pdf").write_bytes(b"%PDF")
        (tmp_path / "sub").mkdir()
        (tmp_path / "sub" / "notes.md").write_text("# Notes", encoding="utf-8")

        documents = load_documents(tmp_path)

        assert [d.title for d in documents] == ["plan velo", "A", "B", "notes"]
        assert documents[0].text == "Le plan vélo."
        assert documents[0].source_file == "plan_velo.txt"
        assert documents[1].author == "Alice"
        assert documents[2].text == "Rapport B"
        assert documents[3].source == "sub/notes.md"

    def test_single_json_object(self, tmp_path):
        (tmp_path / "doc.json").write_text(
            json.dumps({"text": "Contenu", "category": "mobilité"}), encoding="utf-8",
        )

        documents = load_documents(tmp_path)

        assert len(documents) == 1
        assert documents[0].title == "doc"
        assert documents[0].category == "mobilité"

    def test_non_object_entries_skipped(self, tmp_path):
        (tmp_path / "mixed.json").write_text(json.dumps(["texte seul", {"text": "ok"}]), encoding="utf-8")
        assert [d.text for d in load_documents(tmp_path)] == ["ok"]


# ---------------------------------------------------------------------------
# Test: Index Build
# ---------------------------------------------------------------------------


class TestBuildIndex:
    def test_indexes_chunks_and_logs_sizes(self, tmp_path, monkeypatch, caplog):
        (tmp_path / "a.txt").write_text("Le plan vélo vise 2030.", encoding="utf-8")
        (tmp_path / "b.txt").write_text(
            "Le tramway " + "dessert la ville " * 20 + "jusqu'en 2027.", encoding="utf-8",
        )

        embedder = MagicMock()
        embedder.embed_batch = AsyncMock(return_value=[[0.1], [0.2]])
        store = MagicMock()
        store.add_chunks.return_value = ["1", "2"]

        monkeypatch.setattr("scripts.build_index.settings", Settings(
            chunk_size=500, chunk_overlap=50, max_chunk_tokens=16, token_estimator="heuristic",
        ))
        monkeypatch.setattr("scripts.build_index.get_embedder", lambda: embedder)
        monkeypatch.setattr("scripts.build_index.get_vector_store", lambda store_type: store)

        with caplog.at_level(logging.INFO, logger="build_index"):
            count = _run(build_index(tmp_path, "tokens", None))

        assert count == 2
        contents, vectors, payloads = store.add_chunks.call_args.args
        assert contents[0] == "Le plan vélo vise 2030."
        assert vectors == [[0.1], [0.2]]
        assert "0 of 2 document(s) exceed 500 tokens" in caplog.text
        assert "Chunk sizes" in caplog.text
        assert "Some chunks exceed 16 tokens" in caplog.text

    def test_empty_folder(self, tmp_path, monkeypatch):
        monkeypatch.setattr("scripts.build_index.get_vector_store", MagicMock())

        assert _run(build_index(tmp_path, "tokens", None)) == 0
