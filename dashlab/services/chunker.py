# =============================================================================
# Text Chunker — Token-Bounded Fragments with Overlap
# =============================================================================
#
# Splits long document text into fragments that fit the per-chunk token cap
# used at query time, so that retrieved chunks rarely need truncation.
#
# STRATEGIES:
#   tokens      — sentence-aware packing up to max_tokens, with a tail of
#                 the previous chunk (overlap_tokens) carried into the next
#   characters  — fixed character windows, nudged to the nearest sentence end
#   paragraphs  — N blank-line-separated paragraphs per chunk
#
# Token sizes are measured with the same estimator as the query-time budget
# (see services/tokens.py), so a chunk produced with max_tokens=N is never
# truncated by a query-time cap of N.
#
# ALGORITHM (tokens):
# 1. Split text into sentences (terminated by . ! ? or end of text)
# 2. Sentences over the cap are split on word boundaries
# 3. Each piece is merged into the last chunk while the merge fits the cap
# 4. Otherwise a new chunk starts, prefixed with the last chunk's tail
#    (overlap) when prefix + piece still fits the cap
# =============================================================================

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from dashlab.services.tokens import TokenEstimator, estimate_tokens

logger = logging.getLogger(__name__)

_SENTENCE_RE = re.compile(r"[^.!?]+(?:[.!?]+|$)")
_WHITESPACE_RE = re.compile(r"\s+")
_PARAGRAPH_RE = re.compile(r"\n\n+")

STRATEGIES = ("tokens", "characters", "paragraphs")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class SourceDocument:
    """A document's extracted text plus the metadata stored with each chunk."""

    text: str
    title: str = ""
    author: str = ""
    date: str = ""
    category: str = ""
    source: str = ""
    source_file: str = ""


@dataclass
class ChunkResult:
    """
    A single chunk ready for embedding and storage.

    `payload` holds the fields the vector store keeps next to the vector
    (text, title, author, date, category, source, source_file) plus the
    chunk position.
    """

    content: str
    chunk_index: int  # 1-indexed position within the document
    total_chunks: int
    token_count: int
    payload: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def chunk_by_tokens(
    text: str,
    max_tokens: int = 1500,
    overlap_tokens: int = 50,
    estimate: TokenEstimator = estimate_tokens,
) -> list[str]:
    """
    Split text into sentence-aligned chunks of at most `max_tokens`.

    Args:
        text: Text to split. Must be a non-empty string.
        max_tokens: Token cap per chunk.
        overlap_tokens: Approximate size of the tail carried from one chunk
            into the next (0 disables overlap).
        estimate: Token estimator (heuristic by default).

    Returns:
        Chunks in document order.

    Raises:
        ValueError: If text is empty or not a string.
    """
    _require_text(text)

    sentences = [s.strip() for s in _SENTENCE_RE.findall(text)] or [text.strip()]
    chunks: list[str] = []

    for sentence in sentences:
        if not sentence:
            continue
        if estimate(sentence) > max_tokens:
            for piece in _split_long_sentence(sentence, max_tokens, estimate):
                _add_to_chunks(chunks, piece, max_tokens, overlap_tokens, estimate)
        else:
            _add_to_chunks(chunks, sentence, max_tokens, overlap_tokens, estimate)

    logger.info(
        "Text split into %d chunks (by tokens, max %d tokens)",
        len(chunks), max_tokens,
    )
    return chunks


def chunk_by_characters(
    text: str,
    char_size: int = 2000,
    overlap: int = 200,
) -> list[str]:
    """
    Split text into windows of `char_size` characters with `overlap`.

    Each window end is moved to the closest sentence end (. ! ? or newline)
    found between `char_size - 200` and `char_size + 100` characters.
    """
    _require_text(text)

    chunks: list[str] = []
    start = 0
    length = len(text)

    while start < length:
        end = min(start + char_size, length)

        if end < length:
            search_from = max(end - 100, 0)
            break_points = [
                pos for pos in (
                    text.find(".", search_from),
                    text.find("!", search_from),
                    text.find("?", search_from),
                    text.find("\n", search_from),
                )
                if pos != -1 and end - 200 < pos < end + 100
            ]
            if break_points:
                end = min(break_points) + 1

        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)

        if end >= length:
            break
        # Always advance, even when overlap >= window
        start = max(end - overlap, start + 1)

    logger.info(
        "Text split into %d chunks (by characters, %d chars)",
        len(chunks), char_size,
    )
    return chunks


def chunk_by_paragraphs(text: str, paragraphs_per_chunk: int = 3) -> list[str]:
    """Group blank-line-separated paragraphs, `paragraphs_per_chunk` at a time."""
    _require_text(text)

    paragraphs = [p for p in _PARAGRAPH_RE.split(text) if p.strip()]
    chunks: list[str] = []
    for i in range(0, len(paragraphs), paragraphs_per_chunk):
        chunk = "\n\n".join(paragraphs[i : i + paragraphs_per_chunk]).strip()
        if chunk:
            chunks.append(chunk)

    logger.info(
        "Text split into %d chunks (%d paragraphs/chunk)",
        len(chunks), paragraphs_per_chunk,
    )
    return chunks


def chunk_documents(
    documents: list[SourceDocument],
    strategy: str = "tokens",
    max_tokens: int = 1200,
    overlap: int = 100,
    estimate: TokenEstimator = estimate_tokens,
) -> list[ChunkResult]:
    """
    Chunk several documents and attach each chunk's storage payload.

    Documents with no text are skipped with a warning.

    Raises:
        ValueError: If `strategy` is unknown.
    """
    if strategy not in STRATEGIES:
        raise ValueError(
            f"Unknown chunking strategy '{strategy}'. Supported: {STRATEGIES}"
        )

    results: list[ChunkResult] = []

    for doc in documents:
        if not doc.text or not doc.text.strip():
            logger.warning("Skipping empty document '%s'", doc.title or doc.source_file)
            continue

        if strategy == "characters":
            pieces = chunk_by_characters(doc.text, max_tokens * 4, overlap)
        elif strategy == "paragraphs":
            pieces = chunk_by_paragraphs(doc.text)
        else:
            pieces = chunk_by_tokens(doc.text, max_tokens, overlap, estimate)

        for index, content in enumerate(pieces, 1):
            results.append(ChunkResult(
                content=content,
                chunk_index=index,
                total_chunks=len(pieces),
                token_count=estimate(content),
                payload={
                    "text": content,
                    "title": doc.title,
                    "author": doc.author,
                    "date": doc.date,
                    "category": doc.category,
                    "source": doc.source,
                    "source_file": doc.source_file,
                    "chunk_index": index,
                    "total_chunks": len(pieces),
                    "strategy": strategy,
                },
            ))

    total_tokens = sum(r.token_count for r in results)
    logger.info(
        "%d document(s) split into %d chunk(s), %d tokens total",
        len(documents), len(results), total_tokens,
    )
    return results


def needs_chunking(
    text: str,
    max_tokens: int = 1500,
    estimate: TokenEstimator = estimate_tokens,
) -> bool:
    """True when `text` is over the per-chunk token cap."""
    return estimate(text or "") > max_tokens


def chunk_statistics(
    chunks: list[str],
    estimate: TokenEstimator = estimate_tokens,
    warn_above: int = 1500,
) -> dict:
    """Token and word statistics over a list of chunk texts."""
    if not chunks:
        return {"total_chunks": 0, "total_tokens": 0, "warning": "OK"}

    sizes = [estimate(c) for c in chunks]
    words = [len(_WHITESPACE_RE.split(c)) for c in chunks]

    return {
        "total_chunks": len(chunks),
        "total_tokens": sum(sizes),
        "avg_tokens": round(sum(sizes) / len(sizes), 2),
        "min_tokens": min(sizes),
        "max_tokens": max(sizes),
        "avg_words": round(sum(words) / len(words), 2),
        "min_words": min(words),
        "max_words": max(words),
        "warning": (
            f"Some chunks exceed {warn_above} tokens"
            if any(s > warn_above for s in sizes)
            else "OK"
        ),
    }


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _require_text(text: str) -> None:
    if not text or not isinstance(text, str):
        raise ValueError("Text must be a non-empty string")


def _add_to_chunks(
    chunks: list[str],
    piece: str,
    max_tokens: int,
    overlap_tokens: int,
    estimate: TokenEstimator,
) -> None:
    """Merge `piece` into the last chunk, or start a new (overlapped) chunk."""
    if not chunks:
        chunks.append(piece)
        return

    last = chunks[-1]
    merged = f"{last} {piece}"
    if estimate(merged) <= max_tokens:
        chunks[-1] = merged
        return

    if overlap_tokens > 0 and estimate(last) > overlap_tokens:
        overlapped = f"{_extract_overlap(last, overlap_tokens, estimate)} {piece}"
        if estimate(overlapped) <= max_tokens:
            chunks.append(overlapped)
            return

    chunks.append(piece)


def _split_long_sentence(
    sentence: str,
    max_tokens: int,
    estimate: TokenEstimator,
) -> list[str]:
    """Split a sentence over the cap on word boundaries."""
    pieces: list[str] = []
    current = ""

    for word in sentence.split():
        if estimate(word) > max_tokens:
            if current:
                pieces.append(current)
                current = ""
            pieces.extend(_split_long_word(word, max_tokens, estimate))
            continue

        candidate = f"{current} {word}" if current else word
        if current and estimate(candidate) > max_tokens:
            pieces.append(current)
            current = word
        else:
            current = candidate

    if current:
        pieces.append(current)
    return pieces


def _split_long_word(word: str, max_tokens: int, estimate: TokenEstimator) -> list[str]:
    """Hard-split a single whitespace-free run that is over the cap."""
    size = max(1, max_tokens * 8 - 6)
    while size > 1:
        tokens = estimate(word[:size])
        if tokens <= max_tokens:
            break
        size = max(1, min(size - 1, size * max_tokens // tokens))
    return [word[i : i + size] for i in range(0, len(word), size)]


def _extract_overlap(text: str, target_tokens: int, estimate: TokenEstimator) -> str:
    """Take trailing words of `text` worth about `target_tokens` tokens."""
    words = text.split()
    overlap_words: list[str] = []
    overlap_tokens = 0

    for word in reversed(words):
        word_tokens = estimate(word)
        if overlap_tokens + word_tokens > target_tokens and overlap_words:
            break
        overlap_words.insert(0, word)
        overlap_tokens += word_tokens

    return " ".join(overlap_words)
