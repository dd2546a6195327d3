# =============================================================================
# Token Estimation — Heuristic Counter with Optional tiktoken Backend
# =============================================================================
#
# Every budget in the pipeline (per-chunk cap, context budget, hard ceiling)
# is measured with the same estimator so the numbers stay comparable.
#
# HEURISTIC (default):
#   tokens = ceil((word_count * 1.3 + char_count / 4) / 2)
# where word_count is the number of pieces produced by splitting on runs of
# whitespace (a leading or trailing run yields an empty piece, which counts).
# It is an approximation, not a tokenizer.
#
# TIKTOKEN (token_estimator="tiktoken"):
#   exact cl100k_base counts, for deployments whose limits are enforced on
#   real token counts. The surrounding control flow is unchanged.
# =============================================================================

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable

import tiktoken

logger = logging.getLogger(__name__)

TokenEstimator = Callable[[str], int]

_WHITESPACE_RE = re.compile(r"\s+")


def estimate_tokens(text: str | None) -> int:
    """Approximate token count of `text` (0 for empty or None)."""
    if not text:
        return 0
    words = len(_WHITESPACE_RE.split(text))
    chars = len(text)
    return math.ceil((words * 1.3 + chars / 4) / 2)


def count_words(text: str) -> int:
    """Number of non-empty whitespace-separated words."""
    return len([w for w in _WHITESPACE_RE.split(text) if w])


# ---------------------------------------------------------------------------
# tiktoken Encoder — Cached Singleton
# ---------------------------------------------------------------------------
# Loading the encoder reads a ~1.7MB BPE file from disk, so it is created
# once per process.
# ---------------------------------------------------------------------------

_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Lazily initialize and cache the tiktoken encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def count_tiktoken_tokens(text: str | None) -> int:
    """Exact cl100k_base token count."""
    if not text:
        return 0
    return len(_get_encoder().encode(text))


def get_token_estimator(kind: str = "heuristic") -> TokenEstimator:
    """
    Return the estimator function for a `token_estimator` setting value.

    Raises:
        ValueError: If `kind` is not "heuristic" or "tiktoken".
    """
    if kind == "heuristic":
        return estimate_tokens
    if kind == "tiktoken":
        logger.info("Using tiktoken (cl100k_base) for token budgets")
        return count_tiktoken_tokens
    raise ValueError(
        f"Unknown token_estimator '{kind}'. Expected 'heuristic' or 'tiktoken'."
    )
