# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
MCP Server factory – creates a FastMCP instance with tools
that share the index manager from the main process.

Tools:
  - search_code: Semantic search over the workspace, returns line ranges
  - get_index_stats: Index statistics
  - reindex: Refresh changed files, or rebuild everything with force=True
  - clear_index: Drop the in-memory index and the disk cache
"""
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from .chunker import CodeChunk
from .config import Config, TOP_K_RANGE, clamp
from .embeddings import EmbeddingProviderError
from .health import HealthTracker
from .indexer import IndexBuildError, IndexingCancelled, IndexManager
from .search import find_top_chunks

_INDEX_ERRORS = (IndexBuildError, IndexingCancelled, EmbeddingProviderError)


def create_mcp_server(
    config: Config,
    manager: IndexManager,
    health: HealthTracker | None = None,
) -> FastMCP:
    """Factory: returns a configured FastMCP server bound to one index manager."""

    mcp = FastMCP(
        "strata",
        instructions=(
            "Semantic search over the code in the open workspace.\n\n"
            "WORKFLOW for the agent:\n"
            "1. search_code() with a natural-language question about the code\n"
            "2. Open the returned file:line ranges for full context\n"
            "3. Prefer 2-3 targeted searches over one vague query\n"
            "4. reindex(force=True) only if results look outdated"
        ),
    )

    def _location(chunk: CodeChunk) -> str:
        path = Path(chunk.file_path)
        root = manager.workspace.root_for(path)
        shown = path.relative_to(root).as_posix() if root else str(path)
        return f"{shown}:{chunk.start_line0 + 1}-{chunk.end_line0 + 1}"

    @mcp.tool()
    def search_code(query: str, top_k: int = 0) -> str:
        """Semantic search over the files of the workspace.
        Returns the most relevant line ranges, best match first.

        Args:
            query: What you want to find (natural language, be specific)
            top_k: Number of results (default: configured top_k, max 20)

        Returns:
            Matching code passages with file path and 1-based line range
        """
        k = clamp(top_k, TOP_K_RANGE) if top_k else config.effective_top_k
        try:
            index = manager.build_or_get_index()
            chunks = find_top_chunks(index, query, k)
        except _INDEX_ERRORS as e:
            return f"Index unavailable: {e}"

        if health:
            health.record_search(bool(chunks))

        if not chunks:
            return "No relevant code found. Try a different or more specific query."

        output = []
        for chunk in chunks:
            output.append(f"**{_location(chunk)}**\n\n```\n{chunk.text}\n```\n\n---")
        return "\n".join(output)

    @mcp.tool()
    def get_index_stats() -> str:
        """Show statistics about the current code index."""
        stats = manager.stats
        return (
            f"**Index Statistics**\n\n"
            f"- **Status:** {stats['status']}\n"
            f"- **Chunks total:** {stats['total_chunks']}\n"
            f"- **Files indexed:** {stats['files_indexed']}\n"
            f"- **Files skipped:** {stats['files_skipped']} (size limit or chunk cap)\n"
            f"- **Workspace:** {stats['workspace_key']}\n"
            f"- **Embedding:** {stats['embedding_provider']} ({stats['embedding_model']})\n"
            f"- **Chunking:** {stats['chunk_lines']} lines, {stats['chunk_overlap_lines']} overlap"
        )

    @mcp.tool()
    def reindex(force: bool = False) -> str:
        """Re-index the workspace. By default only changed, new and deleted
        files are refreshed. Set force=True to drop the cache and rebuild
        all embeddings from scratch.

        Args:
            force: If True, rebuild everything (default: False)
        """
        try:
            if force:
                manager.clear_index()
                state = manager.build_or_get_index(force=True)
                if health:
                    health.record_index(ok=True, chunks=len(state.chunks), files=len(state.file_metadata))
                return (
                    f"Full re-index complete!\n"
                    f"  Files: {len(state.file_metadata)}\n"
                    f"  Chunks: {len(state.chunks)}"
                )

            manager.build_or_get_index()
            stale = manager.find_stale_files()
            if not stale:
                return "Index is up to date."
            result = manager.incremental_reindex(stale)
        except _INDEX_ERRORS as e:
            if health:
                health.record_index(ok=False, error=str(e))
            return f"Re-index failed: {e}"

        if result is None:
            return "Index is up to date."
        if health:
            health.record_reindex(ok=True, files=result["files"], chunks=result["chunks_total"])
        return (
            f"Re-index complete!\n"
            f"  Files refreshed: {result['files']}\n"
            f"  Chunks removed: {result['chunks_removed']}\n"
            f"  Chunks total: {result['chunks_total']}"
        )

    @mcp.tool()
    def clear_index() -> str:
        """Drop the in-memory index and delete the on-disk cache."""
        manager.clear_index()
        return "Index cleared. The next search rebuilds it."

    return mcp
