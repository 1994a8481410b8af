# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Centralized health/status tracker – shared across indexer callers,
reindex scheduler and the MCP tools.
Thread-safe, no external dependencies.
"""
import threading
from datetime import datetime, timezone


class HealthTracker:
    def __init__(self):
        self._lock = threading.Lock()
        self._data = {
            "last_index_at": None,
            "last_index_ok": False,
            "last_index_chunks": 0,
            "last_index_files": 0,
            "last_index_error": None,

            "last_reindex_at": None,
            "last_reindex_ok": False,
            "last_reindex_files": 0,
            "last_reindex_chunks": 0,
            "last_reindex_error": None,
            "reindex_runs": 0,

            "started_at": datetime.now(timezone.utc).isoformat(),

            "searches_total": 0,
            "searches_hits": 0,
            "searches_misses": 0,
            "last_search_at": None,
        }

    def record_index(self, ok: bool, chunks: int = 0, files: int = 0, error: str | None = None):
        with self._lock:
            self._data["last_index_at"] = datetime.now(timezone.utc).isoformat()
            self._data["last_index_ok"] = ok
            self._data["last_index_chunks"] = chunks
            self._data["last_index_files"] = files
            self._data["last_index_error"] = error

    def record_reindex(self, ok: bool, files: int = 0, chunks: int = 0, error: str | None = None):
        with self._lock:
            self._data["last_reindex_at"] = datetime.now(timezone.utc).isoformat()
            self._data["last_reindex_ok"] = ok
            self._data["last_reindex_files"] = files
            self._data["last_reindex_chunks"] = chunks
            self._data["last_reindex_error"] = error
            self._data["reindex_runs"] += 1

    def record_search(self, hit: bool):
        with self._lock:
            self._data["searches_total"] += 1
            if hit:
                self._data["searches_hits"] += 1
            else:
                self._data["searches_misses"] += 1
            self._data["last_search_at"] = datetime.now(timezone.utc).isoformat()

    @property
    def status(self) -> dict:
        with self._lock:
            return dict(self._data)

    @property
    def is_healthy(self) -> bool:
        with self._lock:
            return self._data["last_index_ok"]
