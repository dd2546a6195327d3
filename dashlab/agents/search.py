# =============================================================================
# Retrieval & Token Budget — From Question Vector to Prompt Context
# =============================================================================
#
# Two steps of the question pipeline live here:
#
# 1. RETRIEVE — vector search at the adaptive threshold for the question;
#    when nothing matches, exactly one retry at the lower fallback score.
#
# 2. BUDGET — fit the hits into the prompt:
#    a. a hit above the per-chunk cap is replaced by a truncated copy
#    b. hits are taken in rank order while the running total stays within
#       the context budget; the first hit that would overflow stops the scan
#    c. if context + question still exceed the hard ceiling, the
#       lowest-ranked hit is dropped until it fits (one hit is always kept)
#
# DESIGN DECISION: Truncation returns new values.
# RetrievedChunk is frozen; truncated copies are made with
# dataclasses.replace(), so search results are never edited in place.
#
# DESIGN DECISION: The estimator is a parameter.
# Every function takes `estimate` (heuristic by default, tiktoken by
# configuration) so all budgets are measured in the same unit.
# =============================================================================

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace

from dashlab.config import MIN_CHUNK_TOKENS, Settings
from dashlab.services.tokens import TokenEstimator, estimate_tokens
from dashlab.services.vectorstore import (
    RetrievedChunk,
    VectorStore,
    get_adaptive_threshold,
)

logger = logging.getLogger(__name__)

CONTINUATION_MARKER = " [suite...]"
CONTEXT_SEPARATOR = "\n\n---\n\n"
_SENTENCE_ENDS = (".", "!", "?", "\n")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class RetrievalResult:
    """Hits from the search step, with the threshold that produced them."""

    chunks: list[RetrievedChunk]
    threshold: float
    used_fallback: bool = False


@dataclass
class BudgetedContext:
    """Chunks that fit the ceiling and the context string built from them."""

    chunks: list[RetrievedChunk]
    context: str
    total_tokens: int
    reduced: bool = False


@dataclass
class Source:
    """A cited source as shown to the user."""

    title: str
    author: str
    date: str
    score: int  # similarity × 100, rounded


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


async def retrieve(
    vector: list[float],
    question: str,
    vector_store: VectorStore,
    settings: Settings,
) -> RetrievalResult:
    """
    Search at the adaptive threshold, retrying once at `fallback_score`.

    Args:
        vector: Embedding of the (possibly rewritten) question.
        question: The original question, used for the threshold word count.
        vector_store: Backend to search.
        settings: Threshold and limit configuration.
    """
    threshold = get_adaptive_threshold(
        question,
        base=settings.min_score,
        floor=settings.threshold_floor,
        cap=settings.threshold_cap,
    )
    limit = settings.max_chunks_to_retrieve

    chunks = await vector_store.search(vector, limit=limit, score_threshold=threshold)
    logger.info("Search at threshold %.4f: %d hits", threshold, len(chunks))

    if chunks or threshold <= settings.fallback_score:
        return RetrievalResult(chunks=chunks, threshold=threshold)

    logger.warning(
        "No hits at threshold %.4f, retrying at fallback score %.4f",
        threshold, settings.fallback_score,
    )
    chunks = await vector_store.search(
        vector, limit=limit, score_threshold=settings.fallback_score,
    )
    logger.info("Fallback search: %d hits", len(chunks))
    return RetrievalResult(
        chunks=chunks,
        threshold=settings.fallback_score,
        used_fallback=True,
    )


# ---------------------------------------------------------------------------
# Token Budget
# ---------------------------------------------------------------------------


def truncate_chunk(
    text: str,
    max_tokens: int,
    estimate: TokenEstimator = estimate_tokens,
) -> str:
    """
    Shorten `text` so that, marker included, it estimates at ≤ `max_tokens`.

    The cut window starts at max_tokens × 4 characters. The cut lands on
    the last sentence end (. ! ? or newline) when that lies in the final
    20% of the window, otherwise exactly at the window edge. The window
    shrinks until the result fits.
    """
    if max_tokens < MIN_CHUNK_TOKENS:
        raise ValueError(f"max_tokens must be at least {MIN_CHUNK_TOKENS}, got {max_tokens}")
    if estimate(text) <= max_tokens:
        return text

    window = max_tokens * 4
    result = CONTINUATION_MARKER.lstrip()
    while window > 0:
        result = _cut_at_sentence(text, window) + CONTINUATION_MARKER
        if estimate(result) <= max_tokens:
            return result
        window = int(window * 0.9)
    return result


def _cut_at_sentence(text: str, window: int) -> str:
    truncated = text[:window]
    last_end = max(truncated.rfind(mark) for mark in _SENTENCE_ENDS)
    if last_end > window * 0.8:
        return truncated[: last_end + 1]
    return truncated


def filter_results_by_token_limit(
    chunks: list[RetrievedChunk],
    max_chunk_tokens: int,
    max_context_tokens: int,
    estimate: TokenEstimator = estimate_tokens,
) -> list[RetrievedChunk]:
    """
    Keep hits, in rank order, while the running token total fits the budget.

    Oversized hits are replaced by truncated copies first. The scan stops
    at the first hit that would overflow; later, smaller hits are not
    considered.
    """
    kept: list[RetrievedChunk] = []
    total = 0

    for chunk in chunks:
        text = chunk.payload.text
        tokens = estimate(text)

        if tokens > max_chunk_tokens:
            logger.warning(
                "Chunk %s too long (%d tokens), truncating to %d",
                chunk.chunk_id, tokens, max_chunk_tokens,
            )
            text = truncate_chunk(text, max_chunk_tokens, estimate)
            chunk = replace(chunk, payload=replace(chunk.payload, text=text))
            tokens = estimate(text)

        if total + tokens > max_context_tokens:
            break
        kept.append(chunk)
        total += tokens

    logger.info("Chunks kept: %d/%d, tokens: %d", len(kept), len(chunks), total)
    return kept


def build_context(chunks: list[RetrievedChunk]) -> str:
    """Number the hits as [Source N] blocks separated by ---."""
    return CONTEXT_SEPARATOR.join(
        f"[Source {i}]\n{chunk.payload.text}" for i, chunk in enumerate(chunks, 1)
    )


def reduce_to_ceiling(
    chunks: list[RetrievedChunk],
    question: str,
    ceiling: int,
    estimate: TokenEstimator = estimate_tokens,
) -> BudgetedContext:
    """
    Drop the lowest-ranked hit until context + question fit `ceiling`.

    At least one hit is always kept, even if it alone is over the ceiling.
    """
    context = build_context(chunks)
    total = estimate(context + question)
    reduced = False

    while total > ceiling and len(chunks) > 1:
        chunks = chunks[:-1]
        context = build_context(chunks)
        total = estimate(context + question)
        reduced = True
        logger.warning(
            "Context over ceiling, reduced to %d chunks (%d tokens, ceiling %d)",
            len(chunks), total, ceiling,
        )

    return BudgetedContext(chunks=chunks, context=context, total_tokens=total, reduced=reduced)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


def format_sources(chunks: list[RetrievedChunk]) -> list[Source]:
    """
    Cited sources, one per (title, author), in first-seen order.

    Score is similarity × 100 rounded half up.
    """
    unique: dict[tuple[str, str], Source] = {}
    for chunk in chunks:
        payload = chunk.payload
        key = (payload.title, payload.author)
        if key in unique:
            continue
        unique[key] = Source(
            title=payload.title or "Document",
            author=payload.author or "Inconnu",
            date=payload.date or "Date inconnue",
            score=math.floor(chunk.score * 100 + 0.5),
        )
    return list(unique.values())
