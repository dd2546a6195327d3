# =============================================================================
# Unit Tests — Chunker Service
# =============================================================================
#
# Tests the token, character and paragraph chunking strategies without
# external dependencies. No API keys, databases, or network calls needed.
# =============================================================================

import pytest

from dashlab.services.chunker import (
    SourceDocument,
    chunk_by_characters,
    chunk_by_paragraphs,
    chunk_by_tokens,
    chunk_documents,
    chunk_statistics,
    needs_chunking,
)
from dashlab.services.tokens import estimate_tokens


class TestChunkByTokens:
    """Tests for chunk_by_tokens()."""

    def test_empty_text_raises(self):
        with pytest.raises(ValueError):
            chunk_by_tokens("")

    def test_short_text_produces_one_chunk(self):
        chunks = chunk_by_tokens("Phrase courte. Une autre.", max_tokens=100)
        assert chunks == ["Phrase courte. Une autre."]

    def test_every_chunk_respects_the_cap(self):
        text = "Le chiffre d'affaires progresse nettement. " * 100
        chunks = chunk_by_tokens(text, max_tokens=50, overlap_tokens=10)
        assert len(chunks) > 1
        assert all(estimate_tokens(c) <= 50 for c in chunks)

    def test_long_sentence_split_on_words(self):
        text = "mot " * 500
        chunks = chunk_by_tokens(text, max_tokens=30, overlap_tokens=0)
        assert len(chunks) > 1
        assert all(estimate_tokens(c) <= 30 for c in chunks)
        assert sum(len(c.split()) for c in chunks) == 500

    def test_long_word_is_hard_split(self):
        word = "a" * 1000
        chunks = chunk_by_tokens(word, max_tokens=20, overlap_tokens=0)
        assert all(estimate_tokens(c) <= 20 for c in chunks)
        assert "".join(chunks) == word

    def test_overlap_carries_tail_of_previous_chunk(self):
        text = " ".join(f"Phrase numéro {i}." for i in range(40))
        chunks = chunk_by_tokens(text, max_tokens=30, overlap_tokens=8)
        assert len(chunks) > 1
        last_number = int(chunks[0].rstrip(".").split()[-1])
        next_sentence = f"Phrase numéro {last_number + 1}."
        carried = chunks[1][: chunks[1].index(next_sentence)].strip()
        assert carried
        assert chunks[0].endswith(carried)

    def test_no_overlap_starts_on_a_sentence(self):
        text = " ".join(f"Phrase numéro {i}." for i in range(40))
        chunks = chunk_by_tokens(text, max_tokens=30, overlap_tokens=0)
        assert all(c.startswith("Phrase") for c in chunks)


class TestChunkByCharacters:
    """Tests for chunk_by_characters()."""

    def test_windows_overlap(self):
        chunks = chunk_by_characters("A" * 5000, char_size=2000, overlap=200)
        assert len(chunks) == 3
        assert all(len(c) <= 2000 for c in chunks)

    def test_window_moves_to_sentence_end(self):
        text = "x" * 1950 + ". " + "y" * 1000
        chunks = chunk_by_characters(text, char_size=2000, overlap=0)
        assert chunks[0].endswith(".")
        assert chunks[1].startswith("y")

    def test_short_text_single_chunk(self):
        assert chunk_by_characters("Bonjour.", char_size=2000) == ["Bonjour."]


class TestChunkByParagraphs:
    def test_groups_paragraphs(self):
        chunks = chunk_by_paragraphs("p1\n\np2\n\np3\n\np4", paragraphs_per_chunk=3)
        assert chunks == ["p1\n\np2\n\np3", "p4"]

    def test_blank_paragraphs_ignored(self):
        chunks = chunk_by_paragraphs("p1\n\n   \n\np2", paragraphs_per_chunk=1)
        assert chunks == ["p1", "p2"]


class TestChunkDocuments:
    """Tests for chunk_documents()."""

    def test_payload_carries_document_metadata(self):
        doc = SourceDocument(
            text="Une phrase. Une autre.",
            title="Rapport",
            author="Alice",
            date="2024-01-01",
            category="finance",
            source="rapport.txt",
            source_file="rapport.txt",
        )
        results = chunk_documents([doc], strategy="tokens", max_tokens=100)
        assert len(results) == 1
        payload = results[0].payload
        assert payload["text"] == results[0].content
        assert payload["title"] == "Rapport"
        assert payload["author"] == "Alice"
        assert payload["date"] == "2024-01-01"
        assert results[0].chunk_index == 1
        assert results[0].total_chunks == 1

    def test_empty_documents_skipped(self):
        docs = [SourceDocument(text="   "), SourceDocument(text="Du texte.")]
        results = chunk_documents(docs)
        assert [r.content for r in results] == ["Du texte."]

    def test_unknown_strategy_raises(self):
        with pytest.raises(ValueError, match="Unknown chunking strategy"):
            chunk_documents([SourceDocument(text="x")], strategy="semantic")

    def test_paragraph_strategy(self):
        doc = SourceDocument(text="\n\n".join(f"p{i}" for i in range(7)))
        results = chunk_documents([doc], strategy="paragraphs")
        assert len(results) == 3
        assert [r.chunk_index for r in results] == [1, 2, 3]


class TestChunkHelpers:
    def test_needs_chunking(self):
        assert needs_chunking("mot " * 2000, max_tokens=100)
        assert not needs_chunking("court", max_tokens=100)

    def test_statistics_empty(self):
        assert chunk_statistics([]) == {"total_chunks": 0, "total_tokens": 0, "warning": "OK"}

    def test_statistics_warns_on_large_chunks(self):
        stats = chunk_statistics(["court", "mot " * 3000], warn_above=1500)
        assert stats["total_chunks"] == 2
        assert stats["max_tokens"] > 1500
        assert stats["warning"] != "OK"
