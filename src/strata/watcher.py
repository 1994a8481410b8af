# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Change tracking – filesystem events -> debounced incremental reindex.

  - WorkspaceWatcher: background daemon thread running watchfiles over the
    workspace roots, forwarding indexable paths to the scheduler
  - ReindexScheduler: collects changed paths; every notification restarts
    the debounce timer, and when it finally fires the union of pending
    paths goes to IndexManager.incremental_reindex() in one call
"""
import os
import sys
import threading
from typing import Iterable

from watchfiles import Change, watch

from .health import HealthTracker
from .indexer import IndexManager
from .workspace import Workspace


class ReindexScheduler:
    def __init__(
        self,
        manager: IndexManager,
        delay: float = 1.0,
        health: HealthTracker | None = None,
    ):
        self.manager = manager
        self.delay = delay
        self.health = health
        self._pending: set[str] = set()
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    @property
    def pending(self) -> set[str]:
        with self._lock:
            return set(self._pending)

    def notify(self, paths: Iterable[str]):
        with self._lock:
            self._pending.update(str(p) for p in paths)
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.delay, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def flush(self):
        with self._lock:
            if not self._pending:
                return
            files = sorted(self._pending)
            self._pending.clear()
            if self._timer is threading.current_thread():
                self._timer = None

        print(f"[reindex] Updating {len(files)} changed file(s)...", file=sys.stderr)
        try:
            result = self.manager.incremental_reindex(files)
        except Exception as e:
            if self.health:
                self.health.record_reindex(ok=False, files=len(files), error=str(e))
            print(f"[reindex] Warning: Incremental reindex failed: {e}", file=sys.stderr)
            return
        if result is None:
            return
        if self.health:
            self.health.record_reindex(ok=True, files=result["files"], chunks=result["chunks_total"])
        print("[reindex] Done", file=sys.stderr)


class WorkspaceWatcher:
    def __init__(self, workspace: Workspace, scheduler: ReindexScheduler):
        self.workspace = workspace
        self.scheduler = scheduler
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def accepts(self, change: Change, path: str) -> bool:
        return self.workspace.is_indexable(path) and not os.path.isdir(path)

    def start(self):
        if not self.workspace.roots:
            print("[watch] No workspace roots, watcher disabled", file=sys.stderr)
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._watch_loop, daemon=True, name="strata-watch")
        self._thread.start()
        print(f"[watch] Watching {len(self.workspace.roots)} workspace root(s)", file=sys.stderr)

    def stop(self):
        self._stop.set()
        self.scheduler.cancel()

    def _watch_loop(self):
        try:
            for changes in watch(
                *self.workspace.roots,
                watch_filter=self.accepts,
                stop_event=self._stop,
            ):
                self.scheduler.notify(path for _, path in changes)
        except Exception as e:
            print(f"[watch] Warning: File watcher stopped: {e}", file=sys.stderr)
