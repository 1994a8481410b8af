# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Unified entry point: python -m strata [workspace_root ...]

Loads (or builds) the index, starts the file watcher, and serves the MCP
tools over stdio or SSE from a single process with shared state.
"""
import sys
from pathlib import Path

import uvicorn

from .config import Config
from .health import HealthTracker
from .indexer import IndexManager
from .server import create_mcp_server
from .watcher import ReindexScheduler, WorkspaceWatcher
from .workspace import Workspace


def _run_mcp_sse(mcp_server, host: str, port: int):
    """Run MCP server via SSE, compatible with both old and new mcp SDK versions."""
    try:
        sse_app = mcp_server.sse_app()
        uvicorn.run(sse_app, host=host, port=port, log_level="warning")
    except AttributeError:
        mcp_server.settings.host = host
        mcp_server.settings.port = port
        mcp_server.run(transport="sse")


def main(argv: list[str] | None = None):
    args = sys.argv[1:] if argv is None else argv
    roots = [Path(a) for a in args]

    config = Config.load(roots[0] if roots else None)
    if not roots:
        roots = [Path(r) for r in config.workspace_roots] or [Path.cwd()]

    workspace = Workspace(roots=roots, exclude_globs=config.exclude_globs)
    health = HealthTracker()
    manager = IndexManager(config, workspace)

    print(f"Loading index for {workspace.key} ...", file=sys.stderr)
    try:
        state = manager.build_or_get_index()
        health.record_index(ok=True, chunks=len(state.chunks), files=len(state.file_metadata))
        stale = manager.find_stale_files()
        if stale:
            print(f"{len(stale)} file(s) changed since the cache was written", file=sys.stderr)
            result = manager.incremental_reindex(stale)
            if result:
                health.record_reindex(ok=True, files=result["files"], chunks=result["chunks_total"])
    except Exception as e:
        health.record_index(ok=False, error=str(e))
        print(f"Warning: Initial indexing failed: {e}", file=sys.stderr)

    scheduler = ReindexScheduler(manager, delay=config.reindex_debounce_seconds, health=health)
    watcher = WorkspaceWatcher(workspace, scheduler)
    if config.watch:
        watcher.start()

    mcp_server = create_mcp_server(config, manager, health)

    print(f"MCP server starting ({config.transport} transport)...", file=sys.stderr)
    try:
        if config.transport == "sse":
            _run_mcp_sse(mcp_server, "0.0.0.0", config.sse_port)
        else:
            mcp_server.run(transport="stdio")
    finally:
        watcher.stop()


if __name__ == "__main__":
    main()
