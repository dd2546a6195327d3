# =============================================================================
# Vector Store Abstraction — Pluggable Backend Protocol
# =============================================================================
#
# Provides a common interface for vector similarity search, with concrete
# implementations for Qdrant and ChromaDB, plus the adaptive similarity
# threshold used by the question pipeline.
#
# Search contract (both backends):
#   {vector, limit, with_payload: true, score_threshold} → ordered hits,
#   each hit = {score, payload}; score is a similarity (higher = better).
#
# DESIGN DECISION: Mixed sync/async interface.
# - add_chunks() is sync → called by the indexing script
# - search() is async → called by the question pipeline
# Both client SDKs are synchronous, so search() runs them in
# asyncio.to_thread() to keep the FastAPI event loop free.
#
# ARCHITECTURE:
#   VectorStore (Protocol)
#   ├── QdrantVectorStore  — Qdrant server (query_points with score_threshold)
#   └── ChromaVectorStore  — ChromaDB (in-process or client/server);
#                            threshold applied after the query
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, fields
from typing import Protocol

import chromadb
from qdrant_client import QdrantClient
from qdrant_client.models import Distance, PointStruct, VectorParams

from dashlab.config import settings
from dashlab.services.tokens import count_words

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChunkPayload:
    """Fields stored next to each vector."""

    text: str = ""
    title: str = ""
    author: str = ""
    date: str = ""
    category: str = ""
    source: str = ""
    source_file: str = ""

    @classmethod
    def from_dict(cls, data: dict | None) -> ChunkPayload:
        """Build a payload from a raw store dict, ignoring unknown keys."""
        data = data or {}
        known = {f.name for f in fields(cls)}
        return cls(**{
            key: "" if value is None else str(value)
            for key, value in data.items()
            if key in known
        })


@dataclass(frozen=True)
class RetrievedChunk:
    """
    A single hit from vector search.

    Frozen: the pipeline derives truncated copies with dataclasses.replace()
    instead of editing hits in place.
    """

    chunk_id: str
    score: float  # similarity, 0.0–1.0 for cosine (higher = more relevant)
    payload: ChunkPayload


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class VectorStore(Protocol):
    """Protocol defining the vector store interface."""

    def add_chunks(
        self,
        contents: list[str],
        embeddings: list[list[float]],
        payloads: list[dict],
    ) -> list[str]:
        """
        Store chunks with their embeddings. Sync (indexing script).

        Returns:
            IDs of the stored points.
        """
        ...

    async def search(
        self,
        vector: list[float],
        limit: int = 4,
        score_threshold: float = 0.6,
    ) -> list[RetrievedChunk]:
        """
        Find the chunks most similar to `vector`. Async (question pipeline).

        Returns:
            At most `limit` hits scoring at least `score_threshold`,
            highest score first.
        """
        ...

    async def check_connection(self) -> bool:
        """True when the backend answers."""
        ...


# ---------------------------------------------------------------------------
# Adaptive Threshold
# ---------------------------------------------------------------------------


def get_adaptive_threshold(
    question: str,
    base: float | None = None,
    floor: float | None = None,
    cap: float | None = None,
) -> float:
    """
    Similarity threshold for a question, by its word count.

        ≤3 words  → max(floor, base - 0.10)
        ≤6 words  → max(floor + 0.05, base - 0.05)
        ≤12 words → base
        >12 words → min(cap, base + 0.05)

    Short questions are keyword-like and need looser matching; long ones
    are precise enough for a stricter cut.
    """
    base = settings.min_score if base is None else base
    floor = settings.threshold_floor if floor is None else floor
    cap = settings.threshold_cap if cap is None else cap

    word_count = count_words(question)

    if word_count <= 3:
        threshold = max(floor, base - 0.10)
    elif word_count <= 6:
        threshold = max(floor + 0.05, base - 0.05)
    elif word_count <= 12:
        threshold = base
    else:
        threshold = min(cap, base + 0.05)

    return round(threshold, 4)


# ---------------------------------------------------------------------------
# Implementation 1: Qdrant
# ---------------------------------------------------------------------------


class QdrantVectorStore:
    """
    Qdrant-backed vector store.

    Similarity filtering happens server-side through `score_threshold`.
    The collection is created on first use with cosine distance.
    """

    def __init__(
        self,
        url: str | None = None,
        collection_name: str | None = None,
        api_key: str | None = None,
        vector_size: int | None = None,
        client: QdrantClient | None = None,
    ) -> None:
        self._url = url or settings.qdrant_url
        self._client = client or QdrantClient(
            url=self._url,
            api_key=api_key or settings.qdrant_api_key,
        )
        self.collection_name = collection_name or settings.collection_name
        self._vector_size = vector_size or settings.vector_size
        logger.debug("Qdrant client connected to %s", self._url)

    def ensure_collection(self) -> str:
        """Create the collection if missing. Safe to call repeatedly."""
        if not self._client.collection_exists(self.collection_name):
            self._client.create_collection(
                collection_name=self.collection_name,
                vectors_config=VectorParams(
                    size=self._vector_size,
                    distance=Distance.COSINE,
                ),
            )
            logger.info(
                "Created Qdrant collection '%s' (%d dims, cosine)",
                self.collection_name, self._vector_size,
            )
        return self.collection_name

    def add_chunks(
        self,
        contents: list[str],
        embeddings: list[list[float]],
        payloads: list[dict],
    ) -> list[str]:
        """Upsert chunks as points with random UUID ids."""
        self.ensure_collection()

        points = []
        for content, embedding, payload in zip(contents, embeddings, payloads, strict=True):
            points.append(PointStruct(
                id=str(uuid.uuid4()),
                vector=embedding,
                payload={**payload, "text": content},
            ))

        self._client.upsert(collection_name=self.collection_name, points=points)

        logger.info(
            "Stored %d chunks in Qdrant collection '%s'",
            len(points), self.collection_name,
        )
        return [str(p.id) for p in points]

    async def search(
        self,
        vector: list[float],
        limit: int = 4,
        score_threshold: float = 0.6,
    ) -> list[RetrievedChunk]:
        """Similarity search with a server-side score threshold."""

        def _sync_search() -> list[RetrievedChunk]:
            result = self._client.query_points(
                collection_name=self.collection_name,
                query=vector,
                limit=limit,
                with_payload=True,
                score_threshold=score_threshold,
            )
            return [
                RetrievedChunk(
                    chunk_id=str(point.id),
                    score=float(point.score),
                    payload=ChunkPayload.from_dict(point.payload),
                )
                for point in result.points
            ]

        hits = await asyncio.to_thread(_sync_search)
        logger.debug(
            "Qdrant search returned %d hits (limit=%d, threshold=%.2f)",
            len(hits), limit, score_threshold,
        )
        return hits

    async def check_connection(self) -> bool:
        try:
            await asyncio.to_thread(self._client.get_collections)
        except Exception as e:
            logger.error("Qdrant unreachable at %s: %s", self._url, e)
            return False
        return True


# ---------------------------------------------------------------------------
# Implementation 2: ChromaDB
# ---------------------------------------------------------------------------


class ChromaVectorStore:
    """
    ChromaDB-backed vector store.

    ChromaDB supports both in-process and client/server modes:
    - In-process (default): No extra infra, data stored in memory
    - Client/server: Set CHROMA_URL for Docker deployment

    Chroma returns cosine distances in [0, 2]; they are converted to
    similarities (1 - distance) and filtered against the threshold here.
    """

    def __init__(self, collection_name: str | None = None) -> None:
        if settings.chroma_url:
            self._client = chromadb.HttpClient(host=settings.chroma_url)
        else:
            self._client = chromadb.Client()

        self.collection_name = collection_name or settings.collection_name
        self._collection = self._client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def add_chunks(
        self,
        contents: list[str],
        embeddings: list[list[float]],
        payloads: list[dict],
    ) -> list[str]:
        """Store chunks; the text goes in `documents`, the rest in metadata."""
        ids = [str(uuid.uuid4()) for _ in contents]

        # ChromaDB metadata values must be str, int, float or bool
        metadatas = [
            _sanitise_chroma_metadata({k: v for k, v in payload.items() if k != "text"})
            for payload in payloads
        ]

        self._collection.add(
            ids=ids,
            documents=contents,
            embeddings=embeddings,
            metadatas=metadatas,
        )

        logger.info(
            "Stored %d chunks in ChromaDB collection '%s'",
            len(ids), self.collection_name,
        )
        return ids

    async def search(
        self,
        vector: list[float],
        limit: int = 4,
        score_threshold: float = 0.6,
    ) -> list[RetrievedChunk]:
        """Similarity search; hits below `score_threshold` are dropped."""

        def _sync_search() -> list[RetrievedChunk]:
            results = self._collection.query(
                query_embeddings=[vector],
                n_results=limit,
                include=["documents", "metadatas", "distances"],
            )

            hits: list[RetrievedChunk] = []
            if not (results and results["ids"] and results["ids"][0]):
                return hits

            for i, chroma_id in enumerate(results["ids"][0]):
                distance = results["distances"][0][i] if results["distances"] else 0.0
                similarity = round(1.0 - distance, 4)
                if similarity < score_threshold:
                    continue

                metadata = dict(results["metadatas"][0][i] or {}) if results["metadatas"] else {}
                metadata["text"] = results["documents"][0][i] if results["documents"] else ""

                hits.append(RetrievedChunk(
                    chunk_id=chroma_id,
                    score=similarity,
                    payload=ChunkPayload.from_dict(metadata),
                ))

            hits.sort(key=lambda h: h.score, reverse=True)
            return hits

        return await asyncio.to_thread(_sync_search)

    async def check_connection(self) -> bool:
        try:
            await asyncio.to_thread(self._client.heartbeat)
        except Exception as e:
            logger.error("ChromaDB unreachable: %s", e)
            return False
        return True


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

_store: QdrantVectorStore | ChromaVectorStore | None = None


def get_vector_store(
    override_type: str | None = None,
) -> QdrantVectorStore | ChromaVectorStore:
    """
    Return the configured vector store backend.

    Reads `vectorstore_type` from settings:
    - "qdrant" → QdrantVectorStore (default)
    - "chroma" → ChromaVectorStore

    The configured backend is cached; `override_type` always builds a
    fresh instance.
    """
    global _store

    if override_type is None and _store is not None:
        return _store

    store_type = override_type or settings.vectorstore_type
    if store_type == "chroma":
        logger.info("Using ChromaDB vector store")
        store = ChromaVectorStore()
    elif store_type == "qdrant":
        logger.info("Using Qdrant vector store")
        store = QdrantVectorStore()
    else:
        raise ValueError(
            f"Unknown vectorstore_type '{store_type}'. Expected 'qdrant' or 'chroma'."
        )

    if override_type is None:
        _store = store
    return store


# ---------------------------------------------------------------------------
# Internal Helpers
# ---------------------------------------------------------------------------


def _sanitise_chroma_metadata(metadata: dict) -> dict:
    """
    Sanitise metadata for ChromaDB compatibility.

    - list → comma-separated string
    - None → empty string
    """
    sanitised = {}
    for key, value in metadata.items():
        if value is None:
            sanitised[key] = ""
        elif isinstance(value, list):
            sanitised[key] = ",".join(str(v) for v in value)
        elif isinstance(value, (str, int, float, bool)):
            sanitised[key] = value
        else:
            sanitised[key] = str(value)
    return sanitised
