import hashlib
import re

import pytest

from strata.config import Config
from strata.health import HealthTracker
from strata.indexer import IndexManager
from strata.workspace import Workspace


class HashingEmbedder:
    """Deterministic bag-of-words embedding: each token is hashed into one
    of DIM buckets. A constant trailing component keeps every vector
    non-zero so cosine distance is always defined."""

    DIM = 64

    def __init__(self):
        self.calls = 0
        self.texts_embedded = 0
        self.fail_with: Exception | None = None

    def __call__(self, texts):
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.texts_embedded += len(texts)
        return [self.vector(t) for t in texts]

    @classmethod
    def vector(cls, text: str) -> list[float]:
        vec = [0.0] * cls.DIM
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % cls.DIM
            vec[bucket] += 1.0
        vec.append(0.1)
        return vec


@pytest.fixture
def embedder():
    return HashingEmbedder()


@pytest.fixture
def tmp_workspace(tmp_path):
    """A small workspace with source files plus content discovery must skip."""
    ws = (tmp_path / "ws").resolve()
    ws.mkdir()
    (ws / "auth.py").write_text(
        "def login(user, password):\n"
        "    return check_password(user, password)"
    )
    (ws / "db.py").write_text(
        "def connect(database_url):\n"
        "    return open_connection(database_url)"
    )
    (ws / "notes.md").write_text("Release notes for the billing invoice export")
    (ws / "node_modules").mkdir()
    (ws / "node_modules" / "lib.js").write_text("module.exports = login password")
    (ws / ".git").mkdir()
    (ws / ".git" / "config").write_text("[core] login password")
    (ws / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n")
    return ws


@pytest.fixture
def config(tmp_workspace):
    return Config(
        workspace_roots=[str(tmp_workspace)],
        chunk_lines=20,
        chunk_overlap_lines=5,
        embedding_max_retries=1,
    )


@pytest.fixture
def workspace(tmp_workspace):
    return Workspace(roots=[tmp_workspace])


@pytest.fixture
def manager(config, workspace, embedder):
    return IndexManager(config, workspace, embedding_fn=embedder)


@pytest.fixture
def health():
    return HealthTracker()
