# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""Query -> top-K documents from the similarity store -> CodeChunks."""
from typing import Optional

from .cancellation import CancellationToken, is_cancelled
from .chunker import CodeChunk, document_to_chunk
from .config import TOP_K_RANGE, clamp
from .indexer import IndexState


def find_top_chunks(
    index: IndexState,
    query: str,
    top_k: int,
    cancellation: Optional[CancellationToken] = None,
) -> list[CodeChunk]:
    """Return up to top_k chunks, best match first. Stops early (partial
    result) once cancellation fires."""
    results = index.store.similarity_search(query, clamp(top_k, TOP_K_RANGE))

    chunks: list[CodeChunk] = []
    for doc in results:
        if is_cancelled(cancellation):
            break
        chunks.append(document_to_chunk(doc))
    return chunks
