# =============================================================================
# Embedding Service — Query and Batch Vector Generation
# =============================================================================
#
# Generates vector embeddings using any OpenAI-compatible embedding API
# (OpenAI, Alibaba Cloud DashScope, local gateways exposing /v1/embeddings).
#
# Request:  {model, input}
# Response: {data: [{index, embedding}], usage}
#
# DESIGN DECISION: No retry logic in the embedder. A failed embedding call
# propagates to the caller unchanged; the question pipeline has no answer
# to give without a query vector.
#
# TOKEN LIMITS (batch indexing):
# - Each text: max 8,191 tokens
# - We batch at 100 texts per API call (configurable via settings)
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Sequence

from openai import AsyncOpenAI

from dashlab.config import settings

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """
    Async wrapper around the embeddings endpoint.

    One instance is shared by all requests; AsyncOpenAI manages its own
    connection pool and timeouts.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        dimensions: int | None = None,
        batch_size: int | None = None,
    ) -> None:
        # API key resolution order: explicit → OPENAI_API_KEY → LLM_API_KEY
        resolved_key = api_key or settings.openai_api_key or settings.llm_api_key
        if not resolved_key:
            raise ValueError(
                "No API key configured for embeddings. "
                "Set OPENAI_API_KEY or LLM_API_KEY in .env"
            )

        resolved_base_url = base_url or settings.embedding_base_url
        client_kwargs: dict = {"api_key": resolved_key}
        if resolved_base_url:
            client_kwargs["base_url"] = resolved_base_url

        self._client = AsyncOpenAI(**client_kwargs)
        self.model = model or settings.embedding_model
        self._dimensions = dimensions or settings.embedding_dimensions
        self._batch_size = batch_size or settings.embedding_batch_size

        logger.info(
            "Initialized embedding client (model=%s, base_url=%s)",
            self.model,
            resolved_base_url or "https://api.openai.com/v1",
        )

    async def embed_query(self, text: str) -> list[float]:
        """
        Generate the embedding of a single question.

        Raises:
            openai.APIError: If the API call fails.
        """
        response = await self._client.embeddings.create(**self._create_kwargs(text))
        return response.data[0].embedding

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Generate embeddings for many texts, in sub-batches.

        Returns embeddings in the SAME ORDER as the input texts.
        """
        if not texts:
            return []

        all_embeddings: list[list[float]] = [[] for _ in texts]

        for i in range(0, len(texts), self._batch_size):
            batch = list(texts[i : i + self._batch_size])
            logger.info(
                "Embedding batch %d–%d of %d texts (model=%s)",
                i + 1, min(i + self._batch_size, len(texts)), len(texts), self.model,
            )

            response = await self._client.embeddings.create(**self._create_kwargs(batch))

            # Items carry their position in the batch
            for item in sorted(response.data, key=lambda x: x.index):
                all_embeddings[i + item.index] = item.embedding

        logger.info("Generated %d embeddings (model=%s)", len(texts), self.model)
        return all_embeddings

    def _create_kwargs(self, payload: str | list[str]) -> dict:
        kwargs: dict = {"model": self.model, "input": payload}
        if self._dimensions:
            kwargs["dimensions"] = self._dimensions
        return kwargs


# ---------------------------------------------------------------------------
# Factory — Lazy Singleton
# ---------------------------------------------------------------------------
# Lazy initialization avoids import-time failures when the key isn't set.
# ---------------------------------------------------------------------------

_client: EmbeddingClient | None = None


def get_embedder() -> EmbeddingClient:
    """Return the process-wide embedding client, creating it on first use."""
    global _client
    if _client is None:
        _client = EmbeddingClient()
    return _client
