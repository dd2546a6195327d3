#!/usr/bin/env python3
"""
Index a folder of text files into the configured vector store.

Reads .txt, .md and .json files, chunks them, embeds the chunks in
batches and upserts them with their payload (text, title, author, date,
category, source, source_file).

JSON files hold one document object or a list of them:
    {"text": "...", "title": "...", "author": "...", "date": "...", "category": "..."}
("content" is accepted in place of "text").

Usage:
    python scripts/build_index.py data/corpus
    python scripts/build_index.py data/corpus --strategy paragraphs --store chroma
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from dashlab.config import settings
from dashlab.services.chunker import (
    STRATEGIES,
    SourceDocument,
    chunk_documents,
    chunk_statistics,
    needs_chunking,
)
from dashlab.services.embedder import get_embedder
from dashlab.services.tokens import get_token_estimator
from dashlab.services.vectorstore import get_vector_store

logger = logging.getLogger("build_index")

SUPPORTED_SUFFIXES = (".txt", ".md", ".json")


def load_documents(folder: Path) -> list[SourceDocument]:
    """Read every supported file under `folder`, recursively, sorted by path."""
    documents: list[SourceDocument] = []
    for path in sorted(folder.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in SUPPORTED_SUFFIXES:
            continue
        if path.suffix.lower() == ".json":
            documents.extend(_load_json(path))
        else:
            documents.append(SourceDocument(
                text=path.read_text(encoding="utf-8"),
                title=path.stem.replace("_", " "),
                source=str(path.relative_to(folder)),
                source_file=path.name,
            ))
    return documents


def _load_json(path: Path) -> list[SourceDocument]:
    data = json.loads(path.read_text(encoding="utf-8"))
    records = data if isinstance(data, list) else [data]
    documents = []
    for record in records:
        if not isinstance(record, dict):
            logger.warning("Skipping non-object entry in %s", path.name)
            continue
        documents.append(SourceDocument(
            text=str(record.get("text") or record.get("content") or ""),
            title=str(record.get("title") or path.stem),
            author=str(record.get("author") or ""),
            date=str(record.get("date") or ""),
            category=str(record.get("category") or ""),
            source=str(record.get("source") or path.name),
            source_file=path.name,
        ))
    return documents


async def build_index(folder: Path, strategy: str, store_type: str | None) -> int:
    documents = load_documents(folder)
    if not documents:
        logger.warning("No .txt/.md/.json files found in %s", folder)
        return 0

    estimate = get_token_estimator(settings.token_estimator)
    oversized = sum(needs_chunking(d.text, settings.chunk_size, estimate) for d in documents)
    logger.info("%d of %d document(s) exceed %d tokens", oversized, len(documents), settings.chunk_size)

    chunks = chunk_documents(
        documents,
        strategy=strategy,
        max_tokens=settings.chunk_size,
        overlap=settings.chunk_overlap,
        estimate=estimate,
    )
    if not chunks:
        return 0

    stats = chunk_statistics(
        [c.content for c in chunks], estimate, warn_above=settings.max_chunk_tokens,
    )
    logger.info(
        "Chunk sizes: avg %.1f, min %d, max %d tokens",
        stats["avg_tokens"], stats["min_tokens"], stats["max_tokens"],
    )
    if stats["warning"] != "OK":
        logger.warning("%s; they will be truncated at query time", stats["warning"])

    embeddings = await get_embedder().embed_batch([c.content for c in chunks])
    store = get_vector_store(store_type)
    ids = store.add_chunks(
        [c.content for c in chunks],
        embeddings,
        [c.payload for c in chunks],
    )
    logger.info("Indexed %d chunks from %d documents", len(ids), len(documents))
    return len(ids)


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("folder", type=Path, help="Folder with .txt/.md/.json files")
    parser.add_argument("--strategy", choices=STRATEGIES, default="tokens")
    parser.add_argument(
        "--store", choices=("qdrant", "chroma"), default=None,
        help="Override VECTORSTORE_TYPE",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.folder.is_dir():
        parser.error(f"{args.folder} is not a directory")

    asyncio.run(build_index(args.folder, args.strategy, args.store))


if __name__ == "__main__":
    main()
