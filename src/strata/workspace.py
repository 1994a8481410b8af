# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Workspace roots and file discovery.

The workspace key ("|"-joined root URIs) identifies which set of roots an
index was built for. Discovery prunes VCS metadata, dependency/output
directories and our own cache directory, and drops binary-looking files.
"""
import fnmatch
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

from .cancellation import CancellationToken, is_cancelled
from .persistence import INDEX_DIR

CACHE_DIR = INDEX_DIR
NO_WORKSPACE_KEY = "no-workspace"

EXCLUDED_DIRS: frozenset[str] = frozenset({
    ".git", "node_modules", "out", "dist", ".vscode-test", CACHE_DIR,
})

BINARY_EXTENSIONS: frozenset[str] = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".ico", ".zip", ".pdf",
})


@dataclass
class Workspace:
    roots: list[Path] = field(default_factory=list)
    exclude_globs: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.roots = [Path(r).resolve() for r in self.roots]

    @property
    def key(self) -> str:
        if not self.roots:
            return NO_WORKSPACE_KEY
        return "|".join(r.as_uri() for r in self.roots)

    @property
    def primary_root(self) -> Path | None:
        return self.roots[0] if self.roots else None

    def root_for(self, path: str | Path) -> Path | None:
        p = Path(os.path.abspath(path))
        for root in self.roots:
            if p.is_relative_to(root):
                return root
        return None

    def is_indexable(self, path: str | Path) -> bool:
        """True for paths inside a root that discovery would pick up."""
        root = self.root_for(path)
        if root is None:
            return False
        rel = Path(os.path.abspath(path)).relative_to(root)
        if any(part in EXCLUDED_DIRS for part in rel.parts[:-1]):
            return False
        if not is_probably_text_file(rel):
            return False
        return not self.matches_exclude_glob(rel.as_posix())

    def matches_exclude_glob(self, rel_posix: str) -> bool:
        return any(fnmatch.fnmatch(rel_posix, pat) for pat in self.exclude_globs)


def is_probably_text_file(path: str | Path) -> bool:
    return Path(path).suffix.lower() not in BINARY_EXTENSIONS


def iter_workspace_files(
    workspace: Workspace,
    max_files: int = 10_000,
    cancellation: CancellationToken | None = None,
) -> Iterator[Path]:
    """Yield indexable files under every root in a stable order.
    Stops early once max_files were yielded or cancellation fires."""
    yielded = 0
    for root in workspace.roots:
        if not root.is_dir():
            continue
        for dirpath, dirnames, filenames in os.walk(root):
            if is_cancelled(cancellation):
                return
            dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
            base = Path(dirpath)
            for name in sorted(filenames):
                path = base / name
                if not is_probably_text_file(path):
                    continue
                if workspace.matches_exclude_glob(path.relative_to(root).as_posix()):
                    continue
                yield path
                yielded += 1
                if yielded >= max_files:
                    return
