# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Workspace files -> line chunks -> Documents -> Embeddings -> SimilarityStore

One IndexManager owns the live index of one workspace:

- build_or_get_index(): in-memory hit, else hydrate from the disk cache,
  else full rebuild. A new state is staged and swapped in only once its
  store has been built, so a failed rebuild keeps the previous index.
- incremental_reindex(): drop the chunks of the changed files, re-chunk the
  ones that still exist, rebuild the store from the full chunk list and
  swap in a new state. A batch that changes nothing rebuilds nothing.

Files over the size limit, or that do not fit under the chunk cap, are
left out whole and fingerprinted in skipped_files, so they are not
reported as stale again until they change.

Writers are serialized by a per-manager lock.
"""
import os
import sys
import threading
from dataclasses import dataclass, field
from enum import Enum
from itertools import groupby
from pathlib import Path
from typing import Iterable, Optional

from .cancellation import CancellationToken, is_cancelled
from .chunker import CodeChunk, chunk_by_lines, chunk_to_document, document_to_chunk, path_to_uri
from .config import Config
from .embeddings import EmbeddingClient, EmbeddingFunction
from .persistence import (
    FileMetadata,
    IndexPersistence,
    compute_content_hash,
    get_file_mtime,
    has_file_changed,
)
from .store import SimilarityStore
from .workspace import Workspace, iter_workspace_files


class IndexStatus(str, Enum):
    EMPTY = "empty"
    BUILDING = "building"
    READY = "ready"
    REBUILDING = "rebuilding"
    UPDATING = "updating"


class IndexBuildError(Exception):
    pass


class IndexingCancelled(Exception):
    pass


@dataclass
class IndexState:
    store: SimilarityStore
    chunks: list[CodeChunk]
    workspace_key: str
    file_metadata: dict[str, FileMetadata]
    skipped_files: dict[str, FileMetadata] = field(default_factory=dict)

    @property
    def documents(self):
        return self.store.documents


class IndexManager:
    def __init__(
        self,
        config: Config,
        workspace: Workspace,
        embedding_fn: Optional[EmbeddingFunction] = None,
    ):
        self.config = config
        self._embedder = EmbeddingClient.from_config(config, embedding_fn)
        self._lock = threading.Lock()
        self._state: Optional[IndexState] = None
        self._status = IndexStatus.EMPTY
        self._retired: list[SimilarityStore] = []
        self.workspace = workspace

    @property
    def workspace(self) -> Workspace:
        return self._workspace

    @workspace.setter
    def workspace(self, workspace: Workspace):
        self._workspace = workspace
        root = workspace.primary_root
        self.persistence = IndexPersistence(root) if root is not None else None

    @property
    def state(self) -> Optional[IndexState]:
        return self._state

    @property
    def status(self) -> IndexStatus:
        return self._status

    # ── Build / hydrate ──────────────────────────────

    def build_or_get_index(
        self, force: bool = False, cancellation: Optional[CancellationToken] = None,
    ) -> IndexState:
        with self._lock:
            self._release_retired()
            key = self._workspace.key
            state = self._state

            if not force and state is not None and state.workspace_key == key:
                return state

            if not force:
                hydrated = self._hydrate(key)
                if hydrated is not None:
                    self._adopt(hydrated)
                    print(f"[index] Loaded {len(hydrated.chunks)} chunks from disk cache", file=sys.stderr)
                    return hydrated

            return self._full_rebuild(key, cancellation)

    def _hydrate(self, key: str) -> Optional[IndexState]:
        if self.persistence is None or not self.persistence.exists():
            return None
        loaded = self.persistence.load()
        if loaded is None:
            return None
        try:
            print(f"[index] Rebuilding vector store from {len(loaded.documents)} cached documents...", file=sys.stderr)
            store = SimilarityStore.from_documents(loaded.documents, self._embedder)
        except Exception as e:
            print(f"[index] Warning: Failed to rebuild vector store from cache: {e}", file=sys.stderr)
            return None
        return IndexState(
            store=store,
            chunks=[document_to_chunk(d) for d in loaded.documents],
            workspace_key=key,
            file_metadata=loaded.file_metadata,
            skipped_files=loaded.skipped_files,
        )

    def _full_rebuild(self, key: str, cancellation: Optional[CancellationToken]) -> IndexState:
        previous_status = self._status
        self._status = IndexStatus.REBUILDING if self._state is not None else IndexStatus.BUILDING
        try:
            print("[index] Performing full index rebuild...", file=sys.stderr)
            chunk_lines = self.config.effective_chunk_lines
            overlap_lines = self.config.effective_overlap_lines

            chunks: list[CodeChunk] = []
            file_metadata: dict[str, FileMetadata] = {}
            skipped: dict[str, FileMetadata] = {}
            files_seen = 0
            for path in iter_workspace_files(self._workspace, self.config.max_files, cancellation):
                if is_cancelled(cancellation):
                    break
                files_seen += 1
                try:
                    file_chunks, meta = self._read_and_chunk(str(path), chunk_lines, overlap_lines)
                except Exception as e:
                    print(f"[index] Warning: Skipping unreadable file {path}: {e}", file=sys.stderr)
                    continue
                if file_chunks is None:
                    skipped[meta.file_path] = meta
                    continue
                chunks.extend(file_chunks)
                file_metadata[meta.file_path] = meta
                if len(file_metadata) % 50 == 0:
                    print(f"[index] Processed {len(file_metadata)} files, {len(chunks)} chunks so far", file=sys.stderr)

            if is_cancelled(cancellation):
                print("[index] Cancelled", file=sys.stderr)
                raise IndexingCancelled("Indexing cancelled")

            chunks = self._cap_chunks(chunks, file_metadata, skipped)
            documents = [chunk_to_document(c) for c in chunks]
            print(f"[index] Creating vector store with {len(documents)} documents from {files_seen} files...", file=sys.stderr)
            try:
                store = SimilarityStore.from_documents(documents, self._embedder)
            except Exception as e:
                print(f"[index] Failed to create vector store: {e}", file=sys.stderr)
                raise IndexBuildError(f"Failed to create embeddings: {e}") from e
        except Exception:
            self._status = previous_status
            raise

        state = IndexState(
            store=store,
            chunks=chunks,
            workspace_key=key,
            file_metadata=file_metadata,
            skipped_files=skipped,
        )
        self._adopt(state)
        self._persist(state)
        print(f"[index] Build complete: {len(chunks)} chunks, {len(file_metadata)} files", file=sys.stderr)
        return state

    # ── Incremental update ───────────────────────────

    def incremental_reindex(
        self, changed_paths: Iterable[str], cancellation: Optional[CancellationToken] = None,
    ) -> Optional[dict]:
        """Re-index only the given files. None when there is no live index
        or the batch leaves the index unchanged."""
        with self._lock:
            self._release_retired()
            state = self._state
            if state is None:
                return None

            paths = sorted({
                os.path.abspath(p) for p in changed_paths
                if self._workspace.is_indexable(p) and not os.path.isdir(p)
            })
            if not paths:
                return None

            print(f"[index] Incrementally re-indexing {len(paths)} file(s)...", file=sys.stderr)
            self._status = IndexStatus.UPDATING
            try:
                changed = set(paths)
                chunks = [c for c in state.chunks if c.file_path not in changed]
                removed = len(state.chunks) - len(chunks)
                file_metadata = dict(state.file_metadata)
                skipped = dict(state.skipped_files)
                chunk_lines = self.config.effective_chunk_lines
                overlap_lines = self.config.effective_overlap_lines

                for path in paths:
                    if is_cancelled(cancellation):
                        raise IndexingCancelled("Incremental reindex cancelled")
                    file_metadata.pop(path, None)
                    skipped.pop(path, None)
                    if not os.path.exists(path):
                        continue
                    try:
                        file_chunks, meta = self._read_and_chunk(path, chunk_lines, overlap_lines)
                    except Exception as e:
                        print(f"[index] Warning: Skipping unreadable file {path}: {e}", file=sys.stderr)
                        continue
                    if file_chunks is None:
                        skipped[path] = meta
                        continue
                    chunks.extend(file_chunks)
                    file_metadata[path] = meta

                chunks = self._cap_chunks(chunks, file_metadata, skipped)
                if len(chunks) == len(state.chunks) and set(chunks) == set(state.chunks):
                    if file_metadata == state.file_metadata and skipped == state.skipped_files:
                        print("[index] No indexed content changed", file=sys.stderr)
                        return None
                    store, chunks = state.store, state.chunks
                else:
                    documents = [chunk_to_document(c) for c in chunks]
                    store = SimilarityStore.from_documents(documents, self._embedder)
            finally:
                self._status = IndexStatus.READY

            updated = IndexState(
                store=store,
                chunks=chunks,
                workspace_key=state.workspace_key,
                file_metadata=file_metadata,
                skipped_files=skipped,
            )
            self._adopt(updated)
            self._persist(updated)

        result = {
            "files": len(paths),
            "chunks_removed": removed,
            "chunks_total": len(chunks),
        }
        print(f"[index] Incremental reindex done: {result}", file=sys.stderr)
        return result

    # ── Clear / stale detection / stats ──────────────

    def clear_index(self):
        with self._lock:
            if self._state is not None:
                self._retired.append(self._state.store)
            self._state = None
            self._status = IndexStatus.EMPTY
            self._release_retired()
            if self.persistence is not None:
                self.persistence.delete()

    def find_stale_files(self, cancellation: Optional[CancellationToken] = None) -> list[str]:
        """Paths whose content changed since they were indexed or skipped,
        new paths, and known paths that no longer exist."""
        state = self._state
        if state is None:
            return []
        known = {**state.skipped_files, **state.file_metadata}
        stale: list[str] = []
        seen: set[str] = set()
        for path in iter_workspace_files(self._workspace, self.config.max_files, cancellation):
            p = str(path)
            seen.add(p)
            try:
                text = path.read_bytes().decode("utf-8")
            except Exception:
                continue
            if has_file_changed(known.get(p), get_file_mtime(p), compute_content_hash(text)):
                stale.append(p)
        stale.extend(p for p in sorted(known) if p not in seen and not os.path.exists(p))
        return stale

    @property
    def stats(self) -> dict:
        state = self._state
        return {
            "status": self._status.value,
            "total_chunks": len(state.chunks) if state else 0,
            "files_indexed": len(state.file_metadata) if state else 0,
            "files_skipped": len(state.skipped_files) if state else 0,
            "workspace_key": self._workspace.key,
            "cache_path": str(self.persistence.index_path) if self.persistence else None,
            "embedding_provider": self.config.embedding_provider,
            "embedding_model": self.config.active_embedding_model,
            "chunk_lines": self.config.effective_chunk_lines,
            "chunk_overlap_lines": self.config.effective_overlap_lines,
        }

    # ── Helpers ──────────────────────────────────────

    def _read_and_chunk(
        self, path: str, chunk_lines: int, overlap_lines: int,
    ) -> tuple[Optional[list[CodeChunk]], FileMetadata]:
        """Chunk one file. Chunks are None when the file is above the size
        ceiling; the metadata is returned either way."""
        text = Path(path).read_bytes().decode("utf-8")
        meta = FileMetadata(
            file_path=path,
            mtime=get_file_mtime(path),
            content_hash=compute_content_hash(text),
        )
        if len(text) > self.config.max_file_chars:
            return None, meta
        return chunk_by_lines(path_to_uri(path), text, chunk_lines, overlap_lines), meta

    def _cap_chunks(
        self,
        chunks: list[CodeChunk],
        file_metadata: dict[str, FileMetadata],
        skipped: dict[str, FileMetadata],
    ) -> list[CodeChunk]:
        """Keep whole files while they fit under max_chunks. A file that
        does not fit is left out entirely and moves to skipped."""
        limit = self.config.max_chunks
        if len(chunks) <= limit:
            return chunks
        kept: list[CodeChunk] = []
        for path, group in groupby(chunks, key=lambda c: c.file_path):
            file_chunks = list(group)
            if len(kept) + len(file_chunks) <= limit:
                kept.extend(file_chunks)
                continue
            meta = file_metadata.pop(path, None)
            if meta is not None:
                skipped[path] = meta
        print(f"[index] Limiting to {len(kept)} chunks (was {len(chunks)}), {len(skipped)} file(s) skipped", file=sys.stderr)
        return kept

    def _adopt(self, state: IndexState):
        if self._state is not None and self._state.store is not state.store:
            self._retired.append(self._state.store)
        self._state = state
        self._status = IndexStatus.READY

    def _release_retired(self):
        """Close stores replaced by an earlier write."""
        while self._retired:
            self._retired.pop().close()

    def _persist(self, state: IndexState):
        if self.persistence is None:
            return
        try:
            self.persistence.save(state.file_metadata, state.documents, state.skipped_files)
            print(f"[index] Saved index to {self.persistence.index_path}", file=sys.stderr)
        except Exception as e:
            print(f"[index] Warning: Failed to persist index: {e}", file=sys.stderr)
