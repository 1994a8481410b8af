# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
In-memory similarity store backed by an ephemeral ChromaDB collection
(cosine space). A store is built once from the full document set and is
never patched; the index manager builds a new one whenever documents
change and closes the old one.
"""
import uuid
from typing import Optional

import chromadb

from .chunker import Document
from .embeddings import EmbeddingClient

_ADD_BATCH_SIZE = 5000


class SimilarityStore:
    def __init__(self, client: EmbeddingClient, name: Optional[str] = None):
        self._embedder = client
        self._chroma = chromadb.EphemeralClient()
        self._name = name or f"chunks-{uuid.uuid4().hex}"
        self.collection = self._chroma.create_collection(
            self._name,
            embedding_function=None,
            metadata={"hnsw:space": "cosine"},
        )
        self.documents: list[Document] = []

    @classmethod
    def from_documents(cls, documents: list[Document], client: EmbeddingClient) -> "SimilarityStore":
        """Embed every document (through the client's retry wrapper) and
        load the vectors into a fresh collection."""
        vectors = client.embed([d.page_content for d in documents]) if documents else []
        store = cls(client)
        try:
            for i in range(0, len(documents), _ADD_BATCH_SIZE):
                end = i + _ADD_BATCH_SIZE
                batch = documents[i:end]
                store.collection.add(
                    ids=[d.id for d in batch],
                    embeddings=vectors[i:end],
                    documents=[d.page_content for d in batch],
                    metadatas=[dict(d.metadata) for d in batch],
                )
        except Exception:
            store.close()
            raise
        store.documents = list(documents)
        return store

    def __len__(self) -> int:
        return len(self.documents)

    def similarity_search(self, query: str, k: int) -> list[Document]:
        """Return up to k documents nearest to query, best first."""
        count = self.collection.count()
        if count == 0 or k <= 0:
            return []
        query_vector = self._embedder.embed_query(query)
        results = self.collection.query(
            query_embeddings=[query_vector],
            n_results=min(k, count),
            include=["documents", "metadatas", "distances"],
        )
        if not results["documents"] or not results["documents"][0]:
            return []
        return [
            Document(page_content=doc, metadata=dict(meta))
            for doc, meta in zip(results["documents"][0], results["metadatas"][0])
        ]

    def close(self):
        """Drop the backing collection. Ephemeral clients share one
        in-process system, so dropped stores must release their data."""
        try:
            self._chroma.delete_collection(self._name)
        except Exception:
            pass
