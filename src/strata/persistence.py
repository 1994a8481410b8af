# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Disk cache for the index: <workspace>/.strata/index.json

    { "version": 1, "timestamp": <epoch ms>,
      "fileMetadata": { "<abs path>": {"filePath", "mtime", "contentHash"} },
      "documents": [ {"pageContent", "metadata": {"uri", "startLine0", "endLine0"}} ],
      "skippedFiles": { "<abs path>": {"filePath", "mtime", "contentHash"} } }

skippedFiles fingerprints files left out on purpose (size limit, chunk cap)
so they are not reported as changed until they actually change.
Only documents are stored; vectors are recomputed on load. A cache with a
different version, a parse error or a missing file all load as None.
"""
import hashlib
import json
import os
import sys
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .chunker import Document

INDEX_DIR = ".strata"
INDEX_FILE = "index.json"
INDEX_VERSION = 1


@dataclass
class FileMetadata:
    file_path: str
    mtime: float
    content_hash: str

    def to_dict(self) -> dict:
        return {"filePath": self.file_path, "mtime": self.mtime, "contentHash": self.content_hash}

    @classmethod
    def from_dict(cls, data: dict) -> "FileMetadata":
        return cls(
            file_path=str(data["filePath"]),
            mtime=float(data["mtime"]),
            content_hash=str(data["contentHash"]),
        )


@dataclass
class PersistedIndex:
    version: int
    timestamp: int
    file_metadata: dict[str, FileMetadata] = field(default_factory=dict)
    documents: list[Document] = field(default_factory=list)
    skipped_files: dict[str, FileMetadata] = field(default_factory=dict)


def compute_content_hash(content: str) -> str:
    return hashlib.md5(content.encode()).hexdigest()


def get_file_mtime(file_path: str | Path) -> float:
    """Modification time in epoch milliseconds, 0 if the file can't be stat'ed."""
    try:
        return os.stat(file_path).st_mtime_ns / 1_000_000
    except OSError:
        return 0


def has_file_changed(old: Optional[FileMetadata], new_mtime: float, new_content_hash: str) -> bool:
    if old is None:
        return True
    return old.mtime != new_mtime or old.content_hash != new_content_hash


class IndexPersistence:
    def __init__(self, workspace_path: str | Path):
        self.index_path = Path(workspace_path) / INDEX_DIR / INDEX_FILE

    def exists(self) -> bool:
        return self.index_path.exists()

    def save(
        self,
        file_metadata: dict[str, FileMetadata],
        documents: list[Document],
        skipped_files: Optional[dict[str, FileMetadata]] = None,
    ):
        """Write the cache via a temp file + rename so readers never see a
        partial file. Errors are reported and re-raised."""
        payload = {
            "version": INDEX_VERSION,
            "timestamp": int(time.time() * 1000),
            "fileMetadata": {path: meta.to_dict() for path, meta in file_metadata.items()},
            "documents": [d.to_dict() for d in documents],
            "skippedFiles": {path: meta.to_dict() for path, meta in (skipped_files or {}).items()},
        }
        tmp_name = None
        try:
            self.index_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{INDEX_FILE}.", suffix=".tmp", dir=self.index_path.parent,
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_name, self.index_path)
        except Exception as e:
            print(f"[persist] Failed to save index to {self.index_path}: {e}", file=sys.stderr)
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise

    def load(self) -> Optional[PersistedIndex]:
        if not self.index_path.exists():
            return None
        try:
            parsed = json.loads(self.index_path.read_text(encoding="utf-8"))
            version = parsed.get("version")
            if version != INDEX_VERSION:
                print(f"[persist] Ignoring index cache with version {version} (expected {INDEX_VERSION})", file=sys.stderr)
                return None
            file_metadata = {
                path: FileMetadata.from_dict(meta)
                for path, meta in (parsed.get("fileMetadata") or {}).items()
            }
            documents = [Document.from_dict(d) for d in parsed.get("documents") or []]
            skipped_files = {
                path: FileMetadata.from_dict(meta)
                for path, meta in (parsed.get("skippedFiles") or {}).items()
            }
            return PersistedIndex(
                version=version,
                timestamp=int(parsed.get("timestamp") or 0),
                file_metadata=file_metadata,
                documents=documents,
                skipped_files=skipped_files,
            )
        except Exception as e:
            print(f"[persist] Failed to load index from {self.index_path}: {e}", file=sys.stderr)
            return None

    def delete(self):
        try:
            self.index_path.unlink(missing_ok=True)
        except OSError as e:
            print(f"[persist] Failed to delete index {self.index_path}: {e}", file=sys.stderr)
